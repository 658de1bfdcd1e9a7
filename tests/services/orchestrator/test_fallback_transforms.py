"""Unit tests for the rule-based fallback transforms."""

from __future__ import annotations

from dataclasses import fields

import pytest

from schemas.orchestrator import ActionType
from services.orchestrator.exceptions import EmptySourceError, FallbackUnavailableError
from services.orchestrator.fallback_transforms import (
    DEFAULT_CLOSING_LINE,
    TONE_TEMPLATES,
    ContentStructure,
    ToneTemplate,
    apply_fallback_transform,
    detect_tone,
    extract_anchor_terms,
    extract_structure,
    recompose_with_tone,
)


SOURCE = (
    "Bạn có biết quán cà phê Muối vừa khai trương?\n"
    "Giảm 20% cho mọi đồ uống trong tuần đầu. Không gian rộng rãi và thoáng mát. "
    "Nhân viên thân thiện.\n"
    "Đăng ký ngay để nhận voucher."
)


class TestHelpers:
    def test_anchor_terms_numbers_first(self) -> None:
        anchors = extract_anchor_terms(SOURCE)
        assert anchors[0] == "20%"
        assert "Muối" in anchors
        assert len(anchors) <= 5

    def test_structure_three_lines(self) -> None:
        structure = extract_structure("a\nb\nc\nd")
        assert structure == ContentStructure(hook="a", body="b\nc", cta="d")

    def test_structure_short_inputs(self) -> None:
        assert extract_structure("a") == ContentStructure(hook="a")
        assert extract_structure("a\n\nb") == ContentStructure(hook="a", body="b")
        assert extract_structure("") == ContentStructure()

    @pytest.mark.parametrize(
        ("text", "tone"),
        [
            ("Kính gửi quý khách, chúng tôi xin thông báo", "professional"),
            ("Hey bạn ơi, siêu sale nè", "friendly"),
            ("Quý khách ơi, mình có ưu đãi nhé", "friendly"),
            ("Không có tín hiệu nào", "friendly"),
        ],
    )
    def test_detect_tone(self, text: str, tone: str) -> None:
        assert detect_tone(text) == tone

    def test_recompose_professional(self) -> None:
        structure = ContentStructure(hook="Bạn ơi, siêu sale", body="Mình giảm giá quá mạnh")
        result = recompose_with_tone(structure, "professional")
        assert "quý khách" in result
        assert "vô cùng" in result
        assert "chúng tôi" in result
        # No CTA in the source: the template's first CTA is appended
        assert result.endswith("Liên hệ với chúng tôi để được tư vấn.")

    def test_recompose_friendly(self) -> None:
        structure = ContentStructure(
            hook="Kính gửi quý khách", body="Chúng tôi giảm giá đặc biệt"
        )
        result = recompose_with_tone(structure, "friendly")
        assert result.split("\n\n") == [
            "Kính gửi bạn",
            "mình giảm giá siêu",
            "Inbox mình ngay nhé!",
        ]

    def test_recompose_keeps_existing_cta(self) -> None:
        structure = ContentStructure(hook="Chào quý khách", cta="Quý khách liên hệ ngay")
        result = recompose_with_tone(structure, "friendly")
        assert result == "Chào bạn\n\nbạn liên hệ ngay"

    def test_tone_templates_only_carry_used_fields(self) -> None:
        assert [f.name for f in fields(ToneTemplate)] == [
            "cta_patterns",
            "pronouns",
            "modifiers",
        ]
        for template in TONE_TEMPLATES.values():
            assert template.cta_patterns


class TestApplyFallbackTransform:
    """Every action except translate produces non-empty text that differs from the source."""

    @pytest.mark.parametrize(
        "action",
        [
            ActionType.REWRITE,
            ActionType.OPTIMIZE,
            ActionType.SHORTEN,
            ActionType.EXPAND,
            ActionType.CHANGE_TONE,
            ActionType.FORMAT_CONVERT,
            ActionType.EVALUATE,
        ],
    )
    def test_differs_from_source(self, action: ActionType) -> None:
        result = apply_fallback_transform(action, SOURCE)
        assert result
        assert result != SOURCE

    def test_shorten_keeps_anchored_sentences(self) -> None:
        result = apply_fallback_transform(ActionType.SHORTEN, SOURCE)
        assert "Giảm 20% cho mọi đồ uống trong tuần đầu" in result
        assert "Nhân viên thân thiện" not in result
        assert len(result) < len(SOURCE)

    def test_shorten_single_long_line(self) -> None:
        text = " ".join(f"từ{i}" for i in range(20))
        result = apply_fallback_transform(ActionType.SHORTEN, text)
        assert len(result.split()) == 12

    def test_short_unchanged_text_gets_closing_line(self) -> None:
        result = apply_fallback_transform(ActionType.SHORTEN, "Giảm 20% hôm nay")
        assert result == f"Giảm 20% hôm nay\n\n{DEFAULT_CLOSING_LINE}"

    def test_expand_adds_grounded_sentences(self) -> None:
        result = apply_fallback_transform(ActionType.EXPAND, SOURCE)
        assert "Con số 20% này" in result
        assert len(result) > len(SOURCE)

    def test_expand_without_cta_uses_closing_line(self) -> None:
        result = apply_fallback_transform(ActionType.EXPAND, "Một dòng duy nhất")
        assert result.endswith(DEFAULT_CLOSING_LINE)

    def test_rewrite_swaps_hook_and_cta(self) -> None:
        result = apply_fallback_transform(ActionType.REWRITE, SOURCE)
        assert result.startswith("Đã bao giờ bạn tự hỏi quán cà phê Muối")
        assert "Bắt đầu ngay hôm nay để nhận voucher." in result

    def test_change_tone_to_professional(self) -> None:
        result = apply_fallback_transform(ActionType.CHANGE_TONE, SOURCE)
        assert "quý khách" in result

    def test_format_convert_bullets(self) -> None:
        result = apply_fallback_transform(ActionType.FORMAT_CONVERT, SOURCE)
        assert result.count("• ") == 3
        assert result.endswith("Đăng ký ngay để nhận voucher.")

    def test_format_convert_single_line_splits_on_commas(self) -> None:
        result = apply_fallback_transform(ActionType.FORMAT_CONVERT, "cà phê, trà, bánh ngọt")
        assert result.endswith("• cà phê\n• trà\n• bánh ngọt")

    def test_optimize_adds_urgency(self) -> None:
        text = "Tiêu đề\nNội dung chính của bài viết.\nGhé cửa hàng."
        result = apply_fallback_transform(ActionType.OPTIMIZE, text)
        assert result.endswith("Ghé cửa hàng ngay hôm nay.")

    def test_translate_unavailable(self) -> None:
        with pytest.raises(FallbackUnavailableError):
            apply_fallback_transform(ActionType.TRANSLATE, SOURCE)

    def test_blank_source(self) -> None:
        with pytest.raises(EmptySourceError):
            apply_fallback_transform(ActionType.REWRITE, "   ")
