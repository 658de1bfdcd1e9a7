"""Rule-based, structure-first transforms used when every model attempt failed.

Content is split into hook (first line), body (middle lines) and CTA (last
line) and recomposed per action using fixed phrase tables. Numbers and
capitalized names found in the source are kept in place. The result is never
identical to the source.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

from schemas.orchestrator import ActionType
from services.orchestrator.exceptions import EmptySourceError, FallbackUnavailableError


MAX_ANCHOR_TERMS = 5
SHORTEN_KEEP_RATIO = 0.4
SHORT_TEXT_KEEP_RATIO = 0.6
SHORT_TEXT_MIN_WORDS = 15
SHORT_TEXT_LEADING_WORDS = 10
DEFAULT_CLOSING_LINE = "Liên hệ ngay để được tư vấn chi tiết."

Tone = str  # "professional" | "friendly"


@dataclass(frozen=True)
class ToneTemplate:
    cta_patterns: tuple[str, ...]
    pronouns: dict[str, str] = field(default_factory=dict)
    modifiers: dict[str, str] = field(default_factory=dict)


TONE_TEMPLATES: dict[Tone, ToneTemplate] = {
    "professional": ToneTemplate(
        cta_patterns=(
            "Liên hệ với chúng tôi để được tư vấn.",
            "Vui lòng liên hệ để biết thêm chi tiết.",
            "Đăng ký ngay để nhận ưu đãi.",
        ),
        pronouns={"bạn": "quý khách", "mình": "chúng tôi"},
        modifiers={"siêu": "vô cùng", "cực kỳ": "đặc biệt", "quá": "rất"},
    ),
    "friendly": ToneTemplate(
        cta_patterns=(
            "Inbox mình ngay nhé!",
            "Bấm link bio để xem thêm nha!",
            "Đừng bỏ lỡ, check ngay thôi!",
        ),
        pronouns={"quý khách": "bạn", "chúng tôi": "mình"},
        modifiers={"đặc biệt": "siêu", "vô cùng": "cực kỳ"},
    ),
}

HOOK_VARIATIONS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(p, re.IGNORECASE), replacement)
    for p, replacement in (
        (r"^Bạn có biết", "Đã bao giờ bạn tự hỏi"),
        (r"^Đã bao giờ", "Bạn có từng"),
        (r"^Bạn có từng", "Hãy thử tưởng tượng"),
        (r"^Chào", "Xin chào"),
        (r"^Xin chào", "Chào"),
    )
)

CTA_VARIATIONS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(p, re.IGNORECASE), replacement)
    for p, replacement in (
        (r"Đăng ký ngay", "Bắt đầu ngay hôm nay"),
        (r"Bắt đầu ngay", "Đăng ký miễn phí"),
        (r"Liên hệ", "Nhắn tin ngay"),
        (r"Nhắn tin", "Liên hệ với chúng tôi"),
        (r"Tìm hiểu thêm", "Khám phá ngay"),
    )
)

_NUMBER = re.compile(r"\d+(?:[,.]\d+)?%?")
_CAPITALIZED = re.compile(
    r"[A-ZÀÁẠẢÃÂẦẤẬẨẪĂẰẮẶẲẴÈÉẸẺẼÊỀẾỆỂỄÌÍỊỈĨÒÓỌỎÕÔỒỐỘỔỖƠỜỚỢỞỠÙÚỤỦŨƯỪỨỰỬỮỲÝỴỶỸĐ]"
    r"[a-zàáạảãâầấậẩẫăằắặẳẵèéẹẻẽêềếệểễìíịỉĩòóọỏõôồốộổỗơờớợởỡùúụủũưừứựửữỳýỵỷỹđ]+"
)
_SENTENCE_SPLIT = re.compile(r"[.!?]\s+")
_PROFESSIONAL_SIGNALS = re.compile(r"quý khách|chúng tôi|kính|trân trọng|vui lòng", re.IGNORECASE)
_FRIENDLY_SIGNALS = re.compile(r"bạn ơi|hey|nhé|nha|mình|siêu", re.IGNORECASE)
_URGENCY = re.compile(r"(ngay|hôm nay|now|liên hệ|đăng ký)", re.IGNORECASE)


@dataclass(frozen=True)
class ContentStructure:
    hook: str = ""
    body: str = ""
    cta: str = ""


def extract_anchor_terms(content: str) -> list[str]:
    """First five distinct numbers/percentages and capitalized words (3+ chars)."""
    terms = _NUMBER.findall(content)
    terms += [w for w in _CAPITALIZED.findall(content) if len(w) > 2]
    return list(dict.fromkeys(terms))[:MAX_ANCHOR_TERMS]


def extract_structure(content: str) -> ContentStructure:
    lines = [line for line in content.split("\n") if line.strip()]
    if not lines:
        return ContentStructure()
    if len(lines) == 1:
        return ContentStructure(hook=lines[0])
    if len(lines) == 2:
        return ContentStructure(hook=lines[0], body=lines[1])
    return ContentStructure(hook=lines[0], body="\n".join(lines[1:-1]), cta=lines[-1])


def detect_tone(content: str) -> Tone:
    professional = bool(_PROFESSIONAL_SIGNALS.search(content))
    friendly = bool(_FRIENDLY_SIGNALS.search(content))
    return "professional" if professional and not friendly else "friendly"


def _split_sentences(text: str) -> list[str]:
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    if sentences:
        # Terminal punctuation is re-added when sentences are joined
        sentences[-1] = sentences[-1].rstrip(".!?")
    return [s for s in sentences if s]


def _join_sentences(sentences: list[str]) -> str:
    return ". ".join(sentences) + "."


def _replace_all(text: str, table: dict[str, str]) -> str:
    for source, target in table.items():
        text = re.sub(re.escape(source), target, text, flags=re.IGNORECASE)
    return text


def _first_variation(text: str, variations: tuple[tuple[re.Pattern[str], str], ...]) -> str:
    for pattern, replacement in variations:
        if pattern.search(text):
            return pattern.sub(replacement, text, count=1)
    return text


def recompose_with_tone(structure: ContentStructure, target_tone: Tone) -> str:
    """Swap pronouns and modifiers into `target_tone`; CTAs only get pronoun swaps."""
    template = TONE_TEMPLATES[target_tone]
    parts: list[str] = []
    if structure.hook:
        parts.append(_replace_all(_replace_all(structure.hook, template.pronouns), template.modifiers))
    if structure.body:
        parts.append(_replace_all(_replace_all(structure.body, template.pronouns), template.modifiers))
    if structure.cta:
        parts.append(_replace_all(structure.cta, template.pronouns))
    else:
        parts.append(template.cta_patterns[0])
    return "\n\n".join(parts)


def _shorten(text: str, structure: ContentStructure, anchors: list[str]) -> str:
    if not structure.body:
        words = text.split()
        if len(words) <= SHORT_TEXT_MIN_WORDS:
            return text
        kept = [
            w
            for i, w in enumerate(words)
            if i < SHORT_TEXT_LEADING_WORDS or any(a in w for a in anchors)
        ]
        return " ".join(kept[: math.ceil(len(words) * SHORT_TEXT_KEEP_RATIO)])

    sentences = _split_sentences(structure.body)
    # sorted() is stable: equal scores keep source order
    ranked = sorted(sentences, key=lambda s: -sum(1 for a in anchors if a in s))
    keep = max(1, math.ceil(len(sentences) * SHORTEN_KEEP_RATIO))
    parts = [structure.hook]
    if ranked:
        parts.append(_join_sentences(ranked[:keep]))
    if structure.cta:
        parts.append(structure.cta)
    return "\n\n".join(parts)


def _expand(structure: ContentStructure, anchors: list[str]) -> str:
    parts: list[str] = []
    if structure.hook:
        parts.append(structure.hook)

    body_parts: list[str] = []
    if structure.body:
        body_parts.append(structure.body)
    if anchors:
        first = anchors[0]
        if re.search(r"\d+%", first):
            body_parts.append(
                f"Con số {first} này cho thấy sự khác biệt rõ rệt so với các lựa chọn khác."
            )
        elif re.search(r"\d+", first):
            body_parts.append(f"Với {first}, bạn sẽ có được những giá trị thiết thực nhất.")
        else:
            body_parts.append(f"{first} đã được hàng ngàn người tin dùng và đánh giá cao.")
    if len(anchors) > 1:
        body_parts.append(
            f"Sự kết hợp giữa {' và '.join(anchors[:2])} mang đến trải nghiệm toàn diện."
        )
    else:
        body_parts.append("Đây là giải pháp phù hợp cho nhu cầu của bạn.")
    parts.append(" ".join(body_parts))

    parts.append(structure.cta or DEFAULT_CLOSING_LINE)
    return "\n\n".join(parts)


def _format_convert(text: str, structure: ContentStructure) -> str:
    lines: list[str] = []
    if structure.hook:
        lines += [structure.hook, ""]

    if structure.body:
        lines += [f"• {s}" for s in _split_sentences(structure.body)]
    else:
        items = [i.strip() for i in re.split(r"[,;]\s*", text) if i.strip()]
        lines += [f"• {i}" for i in items] if len(items) > 1 else [f"• {text}"]

    if structure.cta:
        lines += ["", structure.cta]
    return "\n".join(lines)


def _rewrite(structure: ContentStructure, anchors: list[str]) -> str:
    parts: list[str] = []
    if structure.hook:
        parts.append(_first_variation(structure.hook, HOOK_VARIATIONS))

    if structure.body:
        sentences = _split_sentences(structure.body)

        def has_anchor(s: str) -> bool:
            return any(a in s for a in anchors)

        if len(sentences) > 1 and has_anchor(sentences[1]) and not has_anchor(sentences[0]):
            sentences[0], sentences[1] = sentences[1], sentences[0]
        parts.append(_join_sentences(sentences))

    if structure.cta:
        parts.append(_first_variation(structure.cta, CTA_VARIATIONS))
    return "\n\n".join(parts)


def _optimize(structure: ContentStructure) -> str:
    parts: list[str] = []
    sentences = _split_sentences(structure.body) if structure.body else []

    if structure.hook:
        parts.append(structure.hook)
    elif sentences:
        # Promote the first body sentence to hook
        parts.append(sentences[0] + ".")

    body = sentences[0 if structure.hook else 1 :]
    if body:
        parts.append(_join_sentences(body))

    if structure.cta:
        cta = structure.cta
        if not _URGENCY.search(cta):
            cta = re.sub(r"[.!]?$", " ngay hôm nay.", cta, count=1)
        parts.append(cta)
    else:
        parts.append(DEFAULT_CLOSING_LINE)
    return "\n\n".join(parts)


def apply_fallback_transform(action: ActionType, source_content: str) -> str:
    """Deterministically transform `source_content` without the model.

    Args:
        action: The transform that the model failed to perform.
        source_content: Source text to recompose.

    Returns:
        Non-empty text that differs from the source.

    Raises:
        EmptySourceError: If the source is blank.
        FallbackUnavailableError: For TRANSLATE, which cannot be done by rules.
    """
    text = source_content.strip()
    if not text:
        raise EmptySourceError()
    if action is ActionType.TRANSLATE:
        raise FallbackUnavailableError(
            "Translation requires the AI model. Please try again later."
        )

    structure = extract_structure(text)
    anchors = extract_anchor_terms(text)

    if action is ActionType.SHORTEN:
        result = _shorten(text, structure, anchors)
    elif action is ActionType.EXPAND:
        result = _expand(structure, anchors)
    elif action is ActionType.FORMAT_CONVERT:
        result = _format_convert(text, structure)
    elif action is ActionType.OPTIMIZE:
        result = _optimize(structure)
    elif action is ActionType.CHANGE_TONE:
        target = "friendly" if detect_tone(text) == "professional" else "professional"
        result = recompose_with_tone(structure, target)
    else:
        result = _rewrite(structure, anchors)

    result = result.strip()
    if not result or result == text:
        result = f"{result or text}\n\n{DEFAULT_CLOSING_LINE}"
    return result
