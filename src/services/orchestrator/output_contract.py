"""Hard output requirements parsed from the user's instruction.

The contract is derived from the instruction text alone (plus the source for
relative lengths) and is independent of the locked context. Only word-count
bounds make a contract strict; tone and structure are advisory.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from dataclasses import dataclass

from schemas.orchestrator import (
    ContractValidation,
    ContractViolation,
    StructureElement,
    TransformOutputContract,
    ViolationSeverity,
    ViolationType,
)


APPROXIMATE_TOLERANCE_PERCENT = 5
DERIVED_FROM_LENGTH = 100

Bounds = tuple[int | None, int | None]


def _approximate(count: int) -> Bounds:
    # Integer arithmetic keeps 200 -> (190, 210) exact
    low = count * (100 - APPROXIMATE_TOLERANCE_PERCENT) // 100
    high = -(-count * (100 + APPROXIMATE_TOLERANCE_PERCENT) // 100)
    return low, high


@dataclass(frozen=True)
class WordCountRule:
    pattern: re.Pattern[str]
    extract: Callable[[re.Match[str], int], Bounds]


def _rule(pattern: str, extract: Callable[[re.Match[str], int], Bounds]) -> WordCountRule:
    return WordCountRule(re.compile(pattern, re.IGNORECASE), extract)


# Ranges and one-sided bounds are tried before the approximate forms, which
# would otherwise capture the trailing "200 từ" of "từ 100 đến 200 từ".
WORD_COUNT_RULES: tuple[WordCountRule, ...] = (
    # "từ X đến Y từ" / "X-Y từ"
    _rule(
        r"(?:từ\s+)?(\d+)\s*(?:đến|-)\s*(\d+)\s*(?:từ|chữ|word)",
        lambda m, _: (int(m.group(1)), int(m.group(2))),
    ),
    # "X to Y words" / "X-Y words"
    _rule(
        r"(\d+)\s*(?:to|-)\s*(\d+)\s*words?",
        lambda m, _: (int(m.group(1)), int(m.group(2))),
    ),
    # "ít nhất X từ"
    _rule(r"ít\s+nhất\s+(\d+)\s*(?:từ|chữ|word)", lambda m, _: (int(m.group(1)), None)),
    # "at least X words" / "minimum X words"
    _rule(r"(?:at\s+least|minimum)\s+(\d+)\s*words?", lambda m, _: (int(m.group(1)), None)),
    # "tối đa X từ" / "không quá X từ" / "dưới X từ"
    _rule(
        r"(?:tối\s+đa|không\s+quá|dưới)\s+(\d+)\s*(?:từ|chữ|word)",
        lambda m, _: (None, int(m.group(1))),
    ),
    # "at most X words" / "maximum X words" / "no more than X words"
    _rule(
        r"(?:at\s+most|maximum|no\s+more\s+than|under)\s+(\d+)\s*words?",
        lambda m, _: (None, int(m.group(1))),
    ),
    # "khoảng X từ" / "X từ"
    _rule(
        r"(?:dài|khoảng|tầm|chừng|độ)?\s*(\d+)\s*(?:từ|chữ|word)",
        lambda m, _: _approximate(int(m.group(1))),
    ),
    # "about X words"
    _rule(
        r"(?:about|around|approximately)?\s*(\d+)\s*words?",
        lambda m, _: _approximate(int(m.group(1))),
    ),
    # "dài gấp 2 lần" / "dài hơn 1.5 lần": relative to the source length
    _rule(
        r"dài\s+(?:hơn|gấp)\s*(\d+(?:\.\d+)?)\s*(?:lần)?",
        lambda m, source_words: (
            math.floor(source_words * float(m.group(1))) or None,
            None,
        ),
    ),
)

TONE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(p, re.IGNORECASE), tone)
    for p, tone in (
        (r"chuyên\s*nghiệp", "professional"),
        (r"thân\s*thiện", "friendly"),
        (r"hài\s*hước", "humorous"),
        (r"nghiêm\s*túc", "serious"),
        (r"trẻ\s*trung", "youthful"),
        (r"trang\s*trọng", "formal"),
        (r"giọng\s+(GenZ|gen\s*z)", "genz"),
        (r"\bprofessional\b", "professional"),
        (r"\bfriendly\b", "friendly"),
        (r"\bhumorous\b", "humorous"),
        (r"\bserious\b", "serious"),
        (r"\bformal\b", "formal"),
        (r"\bcasual\b", "casual"),
    )
)

_HOOK_EMOJI = re.compile(r"^[🎯🔥💡✨⚡👉🚀]")
_HOOK_QUESTION = re.compile(r"bạn\s+(có|đã|từng)", re.IGNORECASE)
_CTA_VERB = re.compile(
    r"(?:liên\s*hệ|đăng\s*ký|mua\s*ngay|click|inbox|comment|share|follow|subscribe)",
    re.IGNORECASE,
)
_CTA_CHANNEL = re.compile(
    r"(?:hotline|sdt|điện\s*thoại|zalo|facebook|website)[\s:]+", re.IGNORECASE
)
_HEADING = re.compile(r"^#{1,3}\s+", re.MULTILINE)
_CAPS_HEADING = re.compile(r"^[A-Z][A-Z\s]+:?\n", re.MULTILINE)
_BULLET = re.compile(r"^[-*•]\s+", re.MULTILINE)
_NUMBERED = re.compile(r"^\d+[.)]\s+", re.MULTILINE)


def detect_structure(content: str) -> list[StructureElement]:
    """Detect HOOK/BODY/CTA/HEADING/LIST elements present in `content`."""
    elements: list[StructureElement] = []

    first_paragraph = content.split("\n\n")[0]
    if 20 < len(first_paragraph) < 300 and (
        "?" in first_paragraph
        or _HOOK_EMOJI.search(first_paragraph)
        or _HOOK_QUESTION.search(first_paragraph)
    ):
        elements.append(StructureElement.HOOK)

    if len(content) > 200:
        elements.append(StructureElement.BODY)

    if _CTA_VERB.search(content) or _CTA_CHANNEL.search(content):
        elements.append(StructureElement.CTA)

    if _HEADING.search(content) or _CAPS_HEADING.search(content):
        elements.append(StructureElement.HEADING)

    if _BULLET.search(content) or _NUMBERED.search(content):
        elements.append(StructureElement.LIST)

    return elements


def count_words(content: str) -> int:
    """Whitespace word count after stripping code, link targets and markdown symbols."""
    cleaned = re.sub(r"```[\s\S]*?```", "", content)
    cleaned = re.sub(r"`[^`]+`", "", cleaned)
    cleaned = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", cleaned)
    cleaned = re.sub(r"[#*_~`]", "", cleaned).strip()
    return len(cleaned.split())


def extract_output_contract(user_input: str, source_content: str) -> TransformOutputContract:
    """Parse word-count bounds and tone from the instruction.

    Args:
        user_input: The user's transform instruction.
        source_content: Source text, used only for relative lengths.

    Returns:
        An immutable contract; `is_strict` is True only when a word bound was found.
    """
    min_words: int | None = None
    max_words: int | None = None
    source_words = count_words(source_content) if source_content else 0

    for rule in WORD_COUNT_RULES:
        m = rule.pattern.search(user_input)
        if m:
            low, high = rule.extract(m, source_words)
            min_words = low if low and low > 0 else None
            max_words = high
            break

    required_tone = next(
        (tone for pattern, tone in TONE_PATTERNS if pattern.search(user_input)), None
    )

    return TransformOutputContract(
        required_min_words=min_words,
        required_max_words=max_words,
        required_tone=required_tone,
        # Structure is only enforced when explicitly requested
        required_structure=[],
        is_strict=min_words is not None or max_words is not None,
        derived_from=user_input[:DERIVED_FROM_LENGTH],
    )


def validate_output_contract(
    output: str, contract: TransformOutputContract
) -> ContractValidation:
    """Check `output` against `contract`; LENGTH violations are HARD, STRUCTURE SOFT."""
    violations: list[ContractViolation] = []
    word_count = count_words(output)
    structure = detect_structure(output)

    if contract.required_min_words is not None and word_count < contract.required_min_words:
        violations.append(
            ContractViolation(
                type=ViolationType.LENGTH,
                expected=f"≥ {contract.required_min_words} từ",
                actual=f"{word_count} từ",
                severity=ViolationSeverity.HARD,
            )
        )
    if contract.required_max_words is not None and word_count > contract.required_max_words:
        violations.append(
            ContractViolation(
                type=ViolationType.LENGTH,
                expected=f"≤ {contract.required_max_words} từ",
                actual=f"{word_count} từ",
                severity=ViolationSeverity.HARD,
            )
        )

    for required in contract.required_structure:
        if required not in structure:
            violations.append(
                ContractViolation(
                    type=ViolationType.STRUCTURE,
                    expected=required.value,
                    actual=", ".join(s.value for s in structure) or "none",
                    severity=ViolationSeverity.SOFT,
                )
            )

    has_hard = any(v.severity is ViolationSeverity.HARD for v in violations)
    return ContractValidation(
        passed=not has_hard,
        violations=violations,
        word_count=word_count,
        structure_detected=structure,
        can_retry=has_hard,
    )


def _describe_violation(v: ContractViolation) -> str:
    if v.type is ViolationType.LENGTH:
        return f"Output length was {v.actual} but MUST be {v.expected}"
    if v.type is ViolationType.STRUCTURE:
        return f"Missing required structure: {v.expected}"
    if v.type is ViolationType.TONE:
        return f"Tone was {v.actual} but MUST be {v.expected}"
    return f"Topic drifted: {v.actual}"


def build_enforcement_instruction(validation: ContractValidation) -> str:
    """Retry instruction listing the HARD violations of the previous attempt."""
    reasons = [
        _describe_violation(v)
        for v in validation.violations
        if v.severity is ViolationSeverity.HARD
    ]
    if not reasons:
        return ""
    listed = "\n".join(f"- {r}" for r in reasons)
    return (
        "\n⚠️ CRITICAL: Your previous output was INVALID.\n\n"
        f"VIOLATIONS:\n{listed}\n\n"
        "YOU MUST:\n"
        "- Fix ALL violations listed above\n"
        "- Meet the EXACT requirements\n"
        "- Do NOT provide a shorter/different version\n"
        "- Do NOT explain or apologize - just output the correct content\n\n"
        "This is your FINAL attempt. Failure will result in rejection.\n"
    )


def build_contract_instruction(contract: TransformOutputContract) -> str:
    """System-prompt section stating the contract; empty for non-strict contracts."""
    if not contract.is_strict:
        return ""

    requirements: list[str] = []
    if contract.required_min_words is not None:
        requirements.append(f"Minimum {contract.required_min_words} words")
    if contract.required_max_words is not None:
        requirements.append(f"Maximum {contract.required_max_words} words")
    if contract.required_tone:
        requirements.append(f"Tone: {contract.required_tone}")
    if contract.required_structure:
        requirements.append(
            "Must include: " + ", ".join(s.value for s in contract.required_structure)
        )

    listed = "\n".join(f"- {r}" for r in requirements)
    return (
        "\n# 📏 OUTPUT CONTRACT (MANDATORY)\n\n"
        f"Your output MUST meet these EXACT requirements:\n{listed}\n\n"
        "⚠️ Outputs that do not meet these requirements will be REJECTED.\n"
        "Do NOT provide a shorter version. Do NOT summarize.\n"
    )
