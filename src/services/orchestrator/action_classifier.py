"""Map free-text instructions (Vietnamese and English) to action intents.

Classification runs an ordered table of `SignalRule` entries against the
trimmed, lower-cased input. Every rule with at least one matching pattern
becomes a candidate. Candidates whose weights differ by more than
`WEIGHT_TIE_TOLERANCE` are ranked by weight; closer weights count as a tie,
broken by the number of matched signals and then by table order. Input
that matches nothing is assigned `UNCLASSIFIED_DEFAULT`.

Transform intents also carry a transform mode: a single strong directive
(audience, style, emphasis, add/remove) makes the request DIRECTED, as do two
or more weak directives (bare style adjectives, "...hơn" comparatives).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import cmp_to_key

from schemas.orchestrator import (
    ACTION_CATEGORIES,
    SOURCE_REQUIRED_ACTIONS,
    ActionCategory,
    ActionClassification,
    ActionType,
    TransformMode,
)


logger = logging.getLogger(__name__)

IMPLICIT_REFERENCE_BOOST = 0.1
# Weights this close are treated as equal when ranking candidates
WEIGHT_TIE_TOLERANCE = 0.05

# ASCII word class; keeps "\w"-style directive patterns from spanning
# Vietnamese words with diacritics.
_W = r"[A-Za-z0-9_]"


def _compile(*patterns: str, flags: int = re.IGNORECASE) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, flags) for p in patterns)


@dataclass(frozen=True)
class SignalRule:
    """One row of the classification table."""

    action: ActionType
    patterns: tuple[re.Pattern[str], ...]
    weight: float

    def match(self, text: str) -> list[str]:
        """Return the literal substrings matched by each pattern, in order."""
        signals: list[str] = []
        for pattern in self.patterns:
            m = pattern.search(text)
            if m:
                signals.append(m.group(0))
        return signals


SIGNAL_RULES: tuple[SignalRule, ...] = (
    # Generation
    SignalRule(
        ActionType.CREATE_CONTENT,
        _compile(
            r"^(viết|tạo|soạn|làm)\s+(cho\s+)?(tôi|mình)?\s*(một|1)?\s*(bài|nội dung|post|content)",
            r"^(write|create|draft|compose)\s+(a|an|the)?\s*(post|content|article)",
            r"viết\s+(về|cho)",
            r"tạo\s+nội\s+dung",
        ),
        0.85,
    ),
    SignalRule(
        ActionType.BRAINSTORM,
        _compile(
            r"brainstorm",
            r"ý\s*tưởng",
            r"(cho|gợi|đề)\s*(ý|xuất)",
            r"ideas?\s+(for|about)",
            r"suggest\s+(some|a\s+few)?\s*(ideas?|topics?)",
        ),
        0.8,
    ),
    SignalRule(
        ActionType.OUTLINE,
        _compile(
            r"outline",
            r"dàn\s*(ý|bài)",
            r"cấu\s*trúc",
            r"khung\s*(bài|nội\s*dung)",
            r"structure\s+(for|of)",
        ),
        0.8,
    ),
    # Transform
    SignalRule(
        ActionType.REWRITE,
        _compile(
            r"viết\s+lại",
            r"rewrite",
            r"sửa\s+lại",
            r"chỉnh\s+lại",
            r"làm\s+lại",
            r"revise",
            r"rephrase",
        ),
        0.9,
    ),
    SignalRule(
        ActionType.OPTIMIZE,
        _compile(
            r"tối\s*ưu",
            r"optimize",
            r"cải\s*thiện",
            r"improve",
            r"enhance",
            r"nâng\s*cao",
            r"làm\s+(cho\s+)?(tốt|hay)\s+hơn",
        ),
        0.85,
    ),
    SignalRule(
        ActionType.SHORTEN,
        _compile(
            r"rút\s*gọn",
            r"ngắn\s*(gọn|lại|hơn)",
            r"shorten",
            r"shorter",
            r"concise",
            r"brief(er)?",
            r"summarize",
            r"tóm\s*tắt",
            r"cô\s*đọng",
        ),
        0.9,
    ),
    SignalRule(
        ActionType.EXPAND,
        _compile(
            r"mở\s*rộng",
            r"expand",
            r"dài\s*hơn",
            r"longer",
            r"elaborate",
            r"chi\s*tiết\s*hơn",
            r"thêm\s+(nội\s*dung|chi\s*tiết)",
            r"add\s+more\s+(detail|content)",
        ),
        0.9,
    ),
    SignalRule(
        ActionType.CHANGE_TONE,
        _compile(
            r"đổi\s*giọng",
            r"thay\s*(đổi\s*)?(giọng|tone)",
            r"change\s*(the\s*)?tone",
            r"make\s+it\s+(more\s+)?(formal|casual|friendly|professional)",
            r"chuyên\s*nghiệp\s*hơn",
            r"thân\s*thiện\s*hơn",
            r"trang\s*trọng\s*hơn",
        ),
        0.9,
    ),
    SignalRule(
        ActionType.TRANSLATE,
        _compile(
            r"dịch\s*(sang|ra|qua)",
            r"translate\s+(to|into)",
            r"chuyển\s*(ngữ|sang)",
            r"sang\s+(tiếng\s*)?(anh|việt|english|vietnamese)",
        ),
        0.95,
    ),
    SignalRule(
        ActionType.FORMAT_CONVERT,
        _compile(
            r"đổi\s*(sang\s*)?(format|định\s*dạng)",
            r"chuyển\s*(sang|thành)\s*(list|bullet|số|heading)",
            r"convert\s+(to|into)\s*(list|bullet|numbered|heading)",
            r"format\s+as",
            r"make\s+it\s+(a\s+)?(list|bullets?|numbered)",
            r"thành\s+(danh\s*sách|list)",
        ),
        0.9,
    ),
    # Evaluation
    SignalRule(
        ActionType.EVALUATE,
        _compile(
            r"đánh\s*giá",
            r"evaluate",
            r"review",
            r"analyze",
            r"phân\s*tích",
            r"check\s+(the\s+)?(quality|content)",
            r"kiểm\s*tra",
            r"nhận\s*xét",
        ),
        0.85,
    ),
    SignalRule(
        ActionType.QA_FIX,
        _compile(
            r"sửa\s*(lỗi|bug|error)",
            r"fix\s+(the\s+)?(error|issue|problem)",
            r"correct",
            r"chỉnh\s*sửa",
            r"fix\s+it",
            r"khắc\s*phục",
        ),
        0.85,
    ),
    # Meta
    SignalRule(
        ActionType.SELECT_SOURCE,
        _compile(
            r"dùng\s+(bài|nội\s*dung)\s+(này|trên|đó)",
            r"use\s+(this|that)\s+(one|content|post)",
            r"lấy\s+(cái\s*)?(này|đó)",
            r"chọn\s+(bài|cái)\s+(này|đó|trên)",
        ),
        0.85,
    ),
    SignalRule(
        ActionType.CLARIFY,
        _compile(
            r"\?\s*$",
            r"là\s+gì",
            r"what\s+(is|are|do)",
            r"how\s+(do|can|to)",
            r"có\s+thể\s+không",
            r"nghĩa\s+là",
            r"explain",
            r"giải\s*thích",
        ),
        0.6,  # questions could be anything
    ),
)

IMPLICIT_REFERENCE_PATTERNS = _compile(
    r"bài\s+(trên|này|đó|vừa\s*rồi)",
    r"nội\s*dung\s+(trên|này|đó|vừa)",
    r"cái\s+(này|đó|trên)",
    r"vừa\s*(rồi|nãy)",
    r"ở\s+trên",
    r"the\s+(above|previous)\s+(one|content|post)",
    r"that\s+one",
    r"this\s+(one|content)",
)

# Returned when no rule matches: treat the input as a fresh generation request.
UNCLASSIFIED_DEFAULT = ActionClassification(
    type=ActionType.CREATE_CONTENT,
    category=ActionCategory.GENERATION,
    confidence=0.5,
    signals=[],
    requires_source=False,
)


# ============================================================================
# New-create detection
# ============================================================================

NEW_CREATE_SIGNALS = _compile(
    # Vietnamese
    r"viết\s+(một\s+)?bài\s+mới",
    r"tạo\s+(một\s+)?bài\s+(mới|khác)",
    r"chủ\s+đề\s+(khác|mới)",
    r"một\s+bài\s+(khác|mới)\s+(về|cho)",
    r"nội\s+dung\s+(mới|khác)",
    r"làm\s+(bài|cái)\s+(mới|khác)",
    r"bắt\s+đầu\s+(lại|mới)",
    r"topic\s+(mới|khác)",
    r"về\s+chủ\s+đề\s+(khác|mới)",
    r"chuyển\s+sang\s+(chủ\s+đề|topic)\s+(khác|mới)",
    # English
    r"new\s+(post|content|article)",
    r"different\s+(topic|subject)",
    r"start\s+(fresh|over|anew)",
    r"write\s+(about\s+)?(something|a)\s+(different|else|new)",
    r"create\s+(a\s+)?(new|different)",
    r"another\s+(post|article|piece)\s+(about|on)",
    r"change\s+(the\s+)?topic",
    r"switch\s+to\s+(a\s+)?(new|different)",
)


def detect_new_create(text: str) -> bool:
    """True when the user explicitly asks for new content rather than a transform."""
    normalized = text.strip()
    return any(p.search(normalized) for p in NEW_CREATE_SIGNALS)


def get_new_create_signals(text: str) -> list[str]:
    normalized = text.strip()
    return [m.group(0) for p in NEW_CREATE_SIGNALS if (m := p.search(normalized))]


# ============================================================================
# Topic drift between instruction and source
# ============================================================================

KEEP_SOURCE_SIGNALS = _compile(
    r"giữ\s+(nguyên\s+)?(nội\s+dung|bài|ý)",
    r"dựa\s+trên\s+(bài|nội\s+dung)\s+(trên|này|cũ)",
    r"từ\s+(bài|nội\s+dung)\s+(trên|này|cũ)",
    r"keep\s+(the\s+)?(content|same|original)",
    r"based\s+on\s+(this|the\s+above)",
)

COMMON_CAPITALIZED_WORDS: frozenset[str] = frozenset(
    {
        "the", "and", "for", "with", "this", "that", "from", "your", "our",
        "new", "best", "top", "all", "any", "get", "now", "how", "why",
        "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
        "january", "february", "march", "april", "may", "june", "july",
        "august", "september", "october", "november", "december",
    }
)  # fmt: skip

_CAPITALIZED_PHRASE = re.compile(
    r"\b([A-Z][a-zA-Z]*(?:\s+[A-Z][a-zA-Z]*)*)\b", re.ASCII
)
_QUOTED_NAME = re.compile(r"[\"'「『«]([^\"'」』»]+)[\"'」』»]")
_BRAND_INDICATOR = re.compile(
    r"(?:dự\s*án|quán|thương\s*hiệu|brand|công\s*ty|shop)\s+([A-Za-zÀ-ỹ][A-Za-zÀ-ỹ\s]*)",
    re.IGNORECASE,
)


def extract_topic_anchors(text: str) -> set[str]:
    """Lower-cased brand/project names found in `text`.

    Anchors come from capitalized phrases, quoted names, and names following
    a brand indicator ("dự án Sunrise", "quán Cà Phê ABC").
    """
    anchors: set[str] = set()

    for m in _CAPITALIZED_PHRASE.finditer(text):
        anchor = m.group(1).lower()
        if len(anchor) >= 3 and anchor not in COMMON_CAPITALIZED_WORDS:
            anchors.add(anchor)

    for m in _QUOTED_NAME.finditer(text):
        anchor = m.group(1).lower().strip()
        if 2 <= len(anchor) <= 50:
            anchors.add(anchor)

    for m in _BRAND_INDICATOR.finditer(text):
        anchor = m.group(1).lower().strip()
        if len(anchor) >= 2:
            anchors.add(anchor)

    return anchors


def detect_topic_drift(user_input: str, source_content: str) -> bool:
    """True when the instruction names entities and none of them appear in the source."""
    if any(p.search(user_input) for p in KEEP_SOURCE_SIGNALS):
        return False

    input_anchors = extract_topic_anchors(user_input)
    if not input_anchors:
        return False
    source_anchors = extract_topic_anchors(source_content)
    if not source_anchors:
        return False

    shared = input_anchors & source_anchors
    drifted = not shared
    if drifted:
        logger.debug(
            "Topic drift: %d new anchors, none shared with source", len(input_anchors)
        )
    return drifted


# ============================================================================
# Transform mode
# ============================================================================

STRONG_DIRECTIVE_SIGNALS = _compile(
    # Vietnamese: target audience
    rf"dành\s+cho\s+{_W}+",
    r"cho\s+(đối\s+tượng|nhóm|khách\s+hàng)",
    rf"hướng\s+(đến|tới)\s+{_W}+",
    # Vietnamese: style / tone
    r"theo\s+(phong\s+cách|kiểu|style)",
    r"theo\s+hướng",
    r"giọng\s+(văn\s+)?(chuyên\s+nghiệp|thân\s+thiện|hài\s+hước|nghiêm\s+túc|trẻ\s+trung|tự\s*nhiên)",
    rf"phong\s+cách\s+{_W}+",
    # Vietnamese: emphasis
    r"nhấn\s+mạnh\s+(vào\s+)?",
    r"tập\s+trung\s+(vào\s+)?",
    r"làm\s+nổi\s+bật",
    r"highlight",
    # Vietnamese: add / remove
    r"thêm\s+(phần|mục|chi\s+tiết|ví\s+dụ|số\s+liệu)",
    r"bổ\s+sung",
    r"bỏ\s+(phần|đoạn|câu)",
    r"loại\s+bỏ",
    # Vietnamese: keep
    r"giữ\s+(nguyên\s+)?(ý|nội\s+dung|cấu\s+trúc)",
    r"không\s+(đổi|thay\s+đổi)\s+(ý|nghĩa)",
    # English: audience
    r"for\s+(GenZ|millennials|professionals|executives|teenagers)",
    rf"targeting\s+{_W}+",
    # English: style
    r"in\s+(a|the)\s+(style|tone|voice)\s+of",
    r"make\s+it\s+(sound\s+)?(more\s+)?(professional|casual|friendly|formal)",
    r"with\s+(a\s+)?(professional|casual|humorous|serious)\s+tone",
    # English: emphasis
    r"emphasize\s+(the\s+)?",
    r"focus\s+on\s+(the\s+)?",
    r"highlight\s+(the\s+)?",
    # English: add / remove
    r"add\s+(more\s+)?(examples?|details?|statistics?|data)",
    r"include\s+(more\s+)?",
    r"remove\s+(the\s+)?",
    r"keep\s+(the\s+)?(meaning|structure|format)",
    # "giọng X hơn" / "viết X hơn" / "câu X hơn"
    rf"giọng\s+{_W}+\s+hơn",
    rf"viết\s+{_W}+\s+hơn",
    rf"câu\s+{_W}+\s+hơn",
)

WEAK_DIRECTIVE_SIGNALS = _compile(
    # Vietnamese adjectives
    r"chuyên\s+nghiệp",
    r"thân\s+thiện",
    r"ngắn\s+gọn",
    r"súc\s+tích",
    r"dễ\s+hiểu",
    r"hấp\s+dẫn",
    r"cuốn\s+hút",
    r"mạnh\s+mẽ",
    r"nhẹ\s+nhàng",
    r"trẻ\s+trung",
    r"hiện\s+đại",
    r"tự\s*nhiên",
    # Vietnamese comparatives
    r"hơn\s*$",
    r"hơn\s+nữa",
    r"nhiều\s+hơn",
    r"ít\s+hơn",
    # English
    r"professional",
    r"friendly",
    r"concise",
    r"engaging",
    r"compelling",
    r"punchy",
    r"modern",
    r"casual",
    r"formal",
    rf"more\s+{_W}+",
    rf"less\s+{_W}+",
    r"better",
)

STRONG_DIRECTIVE_THRESHOLD = 1
WEAK_DIRECTIVE_THRESHOLD = 2


def _matches(patterns: tuple[re.Pattern[str], ...], text: str) -> list[str]:
    return [m.group(0) for p in patterns if (m := p.search(text))]


def detect_transform_mode(text: str) -> TransformMode:
    """Two-tier threshold: one strong directive, or two weak ones, make it DIRECTED."""
    normalized = text.strip()
    if len(_matches(STRONG_DIRECTIVE_SIGNALS, normalized)) >= STRONG_DIRECTIVE_THRESHOLD:
        return TransformMode.DIRECTED_TRANSFORM
    if len(_matches(WEAK_DIRECTIVE_SIGNALS, normalized)) >= WEAK_DIRECTIVE_THRESHOLD:
        return TransformMode.DIRECTED_TRANSFORM
    return TransformMode.PURE_TRANSFORM


def get_directive_signals(text: str) -> list[str]:
    """Strong then weak directive matches, without duplicates."""
    normalized = text.strip()
    signals = _matches(STRONG_DIRECTIVE_SIGNALS, normalized)
    for weak in _matches(WEAK_DIRECTIVE_SIGNALS, normalized):
        if weak not in signals:
            signals.append(weak)
    return signals


# ============================================================================
# Classifier
# ============================================================================


def has_implicit_reference(text: str) -> bool:
    """True for phrases like "bài này" / "that one" that point at prior output."""
    normalized = text.strip().lower()
    return any(p.search(normalized) for p in IMPLICIT_REFERENCE_PATTERNS)


def requires_source(action: ActionType) -> bool:
    return action in SOURCE_REQUIRED_ACTIONS


def get_action_category(action: ActionType) -> ActionCategory:
    return ACTION_CATEGORIES[action]


_Candidate = tuple[int, SignalRule, list[str]]


def _compare_candidates(a: _Candidate, b: _Candidate) -> float:
    weight_diff = b[1].weight - a[1].weight
    if abs(weight_diff) > WEIGHT_TIE_TOLERANCE:
        return weight_diff
    if len(a[2]) != len(b[2]):
        return len(b[2]) - len(a[2])
    return a[0] - b[0]


def classify_action(text: str) -> ActionClassification:
    """Classify user input into an action intent.

    Args:
        text: Raw user instruction.

    Returns:
        The best-ranked classification, or `UNCLASSIFIED_DEFAULT` when no
        rule matches.
    """
    normalized = text.strip().lower()

    candidates: list[_Candidate] = []
    for order, rule in enumerate(SIGNAL_RULES):
        signals = rule.match(normalized)
        if signals:
            candidates.append((order, rule, signals))

    if not candidates:
        return UNCLASSIFIED_DEFAULT

    candidates.sort(key=cmp_to_key(_compare_candidates))
    _, best, signals = candidates[0]

    category = ACTION_CATEGORIES[best.action]
    confidence = best.weight
    if category is ActionCategory.TRANSFORM and has_implicit_reference(normalized):
        confidence = min(1.0, confidence + IMPLICIT_REFERENCE_BOOST)

    transform_mode: TransformMode | None = None
    directive_signals: list[str] | None = None
    if category is ActionCategory.TRANSFORM:
        # Mode detection sees the original casing ("GenZ")
        transform_mode = detect_transform_mode(text)
        directive_signals = get_directive_signals(text) or None

    return ActionClassification(
        type=best.action,
        category=category,
        confidence=confidence,
        signals=signals,
        requires_source=best.action in SOURCE_REQUIRED_ACTIONS,
        transform_mode=transform_mode,
        directive_signals=directive_signals,
    )
