"""Unit tests for output-contract extraction and validation."""

from __future__ import annotations

import pytest

from schemas.orchestrator import (
    StructureElement,
    TransformOutputContract,
    ViolationSeverity,
    ViolationType,
)
from services.orchestrator.output_contract import (
    build_contract_instruction,
    build_enforcement_instruction,
    count_words,
    detect_structure,
    extract_output_contract,
    validate_output_contract,
)


SOURCE = " ".join(["từ"] * 50)


class TestExtractOutputContract:
    """Word-count phrasings, tried range -> minimum -> maximum -> approximate."""

    def test_approximate_vietnamese(self) -> None:
        contract = extract_output_contract("viết khoảng 200 từ", SOURCE)
        assert contract.required_min_words == 190
        assert contract.required_max_words == 210
        assert contract.is_strict is True

    def test_approximate_english(self) -> None:
        contract = extract_output_contract("about 300 words please", SOURCE)
        assert (contract.required_min_words, contract.required_max_words) == (285, 315)

    def test_range_not_swallowed_by_approximate(self) -> None:
        contract = extract_output_contract("viết từ 100 đến 200 từ", SOURCE)
        assert (contract.required_min_words, contract.required_max_words) == (100, 200)

    def test_english_range(self) -> None:
        contract = extract_output_contract("make it 50 to 80 words", SOURCE)
        assert (contract.required_min_words, contract.required_max_words) == (50, 80)

    def test_minimum(self) -> None:
        contract = extract_output_contract("at least 50 words", SOURCE)
        assert contract.required_min_words == 50
        assert contract.required_max_words is None

    def test_vietnamese_minimum(self) -> None:
        contract = extract_output_contract("ít nhất 120 từ", SOURCE)
        assert contract.required_min_words == 120

    def test_maximum(self) -> None:
        contract = extract_output_contract("không quá 80 từ", SOURCE)
        assert contract.required_min_words is None
        assert contract.required_max_words == 80

    def test_relative_to_source(self) -> None:
        contract = extract_output_contract("viết dài gấp 2 lần", SOURCE)
        assert contract.required_min_words == 100
        assert contract.required_max_words is None
        assert contract.is_strict

    def test_no_bounds_is_not_strict(self) -> None:
        contract = extract_output_contract("viết lại cho hay", SOURCE)
        assert contract.is_strict is False
        assert contract.required_min_words is None
        assert build_contract_instruction(contract) == ""

    @pytest.mark.parametrize(
        ("text", "tone"),
        [
            ("viết chuyên nghiệp hơn", "professional"),
            ("giọng thân thiện", "friendly"),
            ("make it casual", "casual"),
            ("giọng GenZ nhé", "genz"),
        ],
    )
    def test_tone(self, text: str, tone: str) -> None:
        assert extract_output_contract(text, SOURCE).required_tone == tone

    def test_derived_from_truncated(self) -> None:
        contract = extract_output_contract("x" * 150, SOURCE)
        assert contract.derived_from == "x" * 100


class TestCountWords:
    def test_ignores_markdown_and_code(self) -> None:
        text = "```\nprint(1)\n```\n`inline` [link](http://example.com) **bold** # title"
        assert count_words(text) == 3

    def test_plain(self) -> None:
        assert count_words("một hai  ba\nbốn") == 4


class TestDetectStructure:
    def test_hook_cta_list(self) -> None:
        text = (
            "🔥 Bạn đã thử cà phê muối chưa?\n\n"
            "- Vị mặn nhẹ\n- Béo ngậy\n\n"
            "Liên hệ hotline: 0909 123 456"
        )
        structure = detect_structure(text)
        assert StructureElement.HOOK in structure
        assert StructureElement.CTA in structure
        assert StructureElement.LIST in structure
        assert StructureElement.BODY not in structure

    def test_heading_and_body(self) -> None:
        text = "# Tiêu đề\n" + "nội dung " * 40
        structure = detect_structure(text)
        assert StructureElement.HEADING in structure
        assert StructureElement.BODY in structure


class TestValidateOutputContract:
    def test_too_short_is_hard_violation(self) -> None:
        contract = extract_output_contract("viết khoảng 200 từ", SOURCE)
        validation = validate_output_contract("ngắn " * 100, contract)
        assert validation.passed is False
        assert validation.can_retry is True
        assert validation.word_count == 100
        [violation] = validation.violations
        assert violation.type is ViolationType.LENGTH
        assert violation.severity is ViolationSeverity.HARD
        assert violation.expected == "≥ 190 từ"
        assert violation.actual == "100 từ"

    def test_too_long(self) -> None:
        contract = extract_output_contract("không quá 10 từ", SOURCE)
        validation = validate_output_contract("dài " * 20, contract)
        assert validation.violations[0].expected == "≤ 10 từ"

    def test_within_bounds_passes(self) -> None:
        contract = extract_output_contract("viết khoảng 200 từ", SOURCE)
        validation = validate_output_contract("vừa " * 200, contract)
        assert validation.passed is True
        assert validation.violations == []
        assert validation.can_retry is False

    def test_structure_violation_is_soft(self) -> None:
        contract = TransformOutputContract(required_structure=[StructureElement.CTA])
        validation = validate_output_contract("Không có lời kêu gọi nào ở đây.", contract)
        assert validation.passed is True
        assert validation.violations[0].severity is ViolationSeverity.SOFT


class TestInstructions:
    def test_enforcement_lists_hard_violations(self) -> None:
        contract = extract_output_contract("viết khoảng 200 từ", SOURCE)
        instruction = build_enforcement_instruction(
            validate_output_contract("ngắn " * 10, contract)
        )
        assert "INVALID" in instruction
        assert "Output length was 10 từ but MUST be ≥ 190 từ" in instruction

    def test_enforcement_empty_without_hard_violations(self) -> None:
        contract = extract_output_contract("viết khoảng 200 từ", SOURCE)
        assert build_enforcement_instruction(
            validate_output_contract("vừa " * 200, contract)
        ) == ""

    def test_contract_instruction(self) -> None:
        contract = extract_output_contract("khoảng 200 từ, giọng thân thiện", SOURCE)
        instruction = build_contract_instruction(contract)
        assert "Minimum 190 words" in instruction
        assert "Maximum 210 words" in instruction
        assert "Tone: friendly" in instruction
