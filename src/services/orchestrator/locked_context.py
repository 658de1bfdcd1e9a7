"""Extract the locked context (entities, topic, format, key facts) of a source text.

A locked context is extracted from the current source snapshot for every
transform and never reused across different source texts.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime

from schemas.orchestrator import (
    ContentFormat,
    LockedContext,
    LockedEntity,
    LockedEntityType,
)


ENTITY_CONTEXT_CHARS = 30
MAX_KEYWORDS = 20
MAX_SUMMARY_LENGTH = 150
MAX_MUST_KEEP = 5
MAX_MUST_KEEP_HEADINGS = 3
MUST_KEEP_SENTENCE_LENGTH = 100
MIN_LIST_LINES = 3
MIN_LIST_RATIO = 0.5
MIN_HEADING_LINES = 2

_VI_UPPER = "A-ZÀÁẢÃẠĂẰẮẲẴẶÂẦẤẨẪẬÈÉẺẼẸÊỀẾỂỄỆÌÍỈĨỊÒÓỎÕỌÔỒỐỔỖỘƠỜỚỞỠỢÙÚỦŨỤƯỪỨỬỮỰỲÝỶỸỴĐ"
_VI_LOWER = "a-zàáảãạăằắẳẵặâầấẩẫậèéẻẽẹêềếểễệìíỉĩịòóỏõọôồốổỗộơờớởỡợùúủũụưừứửữựỳýỷỹỵđ"
_VI_NAME = rf"[{_VI_UPPER}][{_VI_LOWER}]+(?:\s+[{_VI_UPPER}][{_VI_LOWER}]+)*"


@dataclass(frozen=True)
class EntityFamily:
    """A typed battery of patterns; `critical` applies to every match of the family."""

    type: LockedEntityType
    patterns: tuple[re.Pattern[str], ...]
    critical: bool


ENTITY_FAMILIES: tuple[EntityFamily, ...] = (
    EntityFamily(
        LockedEntityType.PERCENTAGE,
        (
            re.compile(r"\d+(?:\.\d+)?%"),
            re.compile(r"\d+(?:\.\d+)?\s*phần\s*trăm", re.IGNORECASE),
            re.compile(r"\d+(?:\.\d+)?\s*percent", re.IGNORECASE),
        ),
        critical=True,
    ),
    EntityFamily(
        LockedEntityType.NUMBER,
        (
            re.compile(
                r"\b\d{1,3}(?:[,.\s]\d{3})+(?:\.\d+)?\s*(VND|USD|đồng|triệu|tỷ|nghìn|k|K|M|B)?\b"
            ),
            re.compile(
                r"\b\d+(?:\.\d+)?\s*(triệu|tỷ|nghìn|million|billion|thousand)\b",
                re.IGNORECASE,
            ),
        ),
        critical=True,
    ),
    EntityFamily(
        LockedEntityType.PRICE,
        (
            re.compile(r"\$\d+(?:[,.\s]\d{3})*(?:\.\d{2})?"),
            re.compile(r"\d+(?:[,.\s]\d{3})*\s*(?:VND|vnđ|đ|đồng)", re.IGNORECASE),
            re.compile(r"giá\s*(?:chỉ|từ|còn)?\s*\d+", re.IGNORECASE),
        ),
        critical=True,
    ),
    EntityFamily(
        LockedEntityType.DATE,
        (
            re.compile(r"\d{1,2}/\d{1,2}/\d{2,4}"),
            re.compile(r"\d{1,2}-\d{1,2}-\d{2,4}"),
            re.compile(r"(?:ngày|tháng|năm)\s*\d+", re.IGNORECASE),
            re.compile(
                r"\d{1,2}\s*(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)",
                re.IGNORECASE,
            ),
            re.compile(
                r"(?:January|February|March|April|May|June|July|August|September|"
                r"October|November|December)\s*\d{1,2}",
                re.IGNORECASE,
            ),
        ),
        critical=True,
    ),
    EntityFamily(
        LockedEntityType.BRAND,
        (
            # ALL-CAPS words are likely brands
            re.compile(r"\b[A-Z][A-Z0-9]{2,}(?:\s+[A-Z][A-Z0-9]+)?\b", re.ASCII),
            re.compile(
                r"\b(?:MIK|GẠO VINA|VINAMILK|VIETTEL|FPT|VNG|VNPay|Momo|Grab|Shopee|Lazada|Tiki)\b",
                re.IGNORECASE,
            ),
        ),
        critical=True,
    ),
    EntityFamily(
        LockedEntityType.PERSON,
        (re.compile(rf"(?:ông|bà|anh|chị|em|cô|chú|bác)\s+{_VI_NAME}"),),
        critical=False,
    ),
    EntityFamily(
        LockedEntityType.LOCATION,
        (
            re.compile(rf"(?:tại|ở|từ)\s+{_VI_NAME}"),
            re.compile(
                r"(?:Hà Nội|Sài Gòn|TP\.?\s*HCM|Đà Nẵng|Huế|Cần Thơ|Hải Phòng)",
                re.IGNORECASE,
            ),
        ),
        critical=False,
    ),
)

STOP_WORDS: frozenset[str] = frozenset(
    {
        "và", "hoặc", "nhưng", "mà", "nên", "vì", "để", "khi", "nếu", "thì",
        "của", "cho", "với", "trong", "ngoài", "trên", "dưới", "sau", "trước",
        "là", "có", "được", "không", "này", "đó", "những", "các", "một", "hai",
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "is", "are", "was", "were", "be", "been",
    }
)  # fmt: skip

IMPORTANCE_INDICATORS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"quan\s*trọng",
        r"chú\s*ý",
        r"lưu\s*ý",
        r"đặc\s*biệt",
        r"important",
        r"note",
        r"key",
        r"critical",
    )
)

_BULLET_LINE = re.compile(r"^\s*[-•*]\s+")
_NUMBERED_LINE = re.compile(r"^\s*\d+[.)]\s+")
_MARKDOWN_HEADING_LINE = re.compile(r"^#{1,6}\s+")
_LABEL_HEADING_LINE = re.compile(r"^[A-Z][^.!?]*:$")
_MARKDOWN_HEADING = re.compile(r"^#+\s+.+$", re.MULTILINE)
_NON_WORD = re.compile(r"[^\w\s]")
_FIRST_SENTENCE = re.compile(r"^[^.!?]+[.!?]")
_SENTENCE_SPLIT = re.compile(r"[.!?]\s+")
_PARAGRAPH_SPLIT = re.compile(r"\n\n+")


def _non_empty_lines(content: str) -> list[str]:
    return [line for line in content.split("\n") if line.strip()]


def detect_format(content: str) -> ContentFormat:
    """Classify text as bullet/numbered/heading/mixed/paragraph by line patterns.

    A list format needs at least 3 matching lines making up at least half of
    the non-empty lines; headings need 2 lines. Any list or heading line
    below those thresholds makes the text `mixed`.
    """
    lines = _non_empty_lines(content)
    if not lines:
        return ContentFormat.PARAGRAPH

    bullets = sum(1 for line in lines if _BULLET_LINE.match(line))
    if bullets >= MIN_LIST_LINES and bullets / len(lines) >= MIN_LIST_RATIO:
        return ContentFormat.BULLET_LIST

    numbered = sum(1 for line in lines if _NUMBERED_LINE.match(line))
    if numbered >= MIN_LIST_LINES and numbered / len(lines) >= MIN_LIST_RATIO:
        return ContentFormat.NUMBERED_LIST

    headings = sum(
        1
        for line in lines
        if _MARKDOWN_HEADING_LINE.match(line) or _LABEL_HEADING_LINE.match(line.strip())
    )
    if headings >= MIN_HEADING_LINES:
        return ContentFormat.HEADING_SECTIONS

    if bullets or numbered or headings:
        return ContentFormat.MIXED
    return ContentFormat.PARAGRAPH


def tokenize(content: str) -> list[str]:
    """Lower-cased word tokens of 3+ chars, diacritics preserved, stop words removed."""
    words = _NON_WORD.sub(" ", content.lower()).split()
    return [w for w in words if len(w) >= 3 and w not in STOP_WORDS]


def extract_keywords(content: str, max_keywords: int = MAX_KEYWORDS) -> list[str]:
    # Counter.most_common keeps first-seen order among equal counts
    return [word for word, _ in Counter(tokenize(content)).most_common(max_keywords)]


def extract_topic_summary(content: str, max_length: int = MAX_SUMMARY_LENGTH) -> str:
    paragraphs = [p for p in _PARAGRAPH_SPLIT.split(content) if p.strip()]
    if not paragraphs:
        return content[:max_length]

    first = paragraphs[0].strip()
    sentence = _FIRST_SENTENCE.match(first)
    if sentence and len(sentence.group(0)) <= max_length:
        return sentence.group(0)
    if len(first) <= max_length:
        return first
    return first[: max_length - 3] + "..."


def extract_must_keep(content: str, max_items: int = MAX_MUST_KEEP) -> list[str]:
    must_keep = [
        re.sub(r"^#+\s+", "", h).strip()
        for h in _MARKDOWN_HEADING.findall(content)[:MAX_MUST_KEEP_HEADINGS]
    ]
    for sentence in _SENTENCE_SPLIT.split(content):
        if len(must_keep) >= max_items:
            break
        if any(p.search(sentence) for p in IMPORTANCE_INDICATORS):
            must_keep.append(sentence[:MUST_KEEP_SENTENCE_LENGTH])
    return must_keep[:max_items]


def extract_entities(content: str) -> list[LockedEntity]:
    """Run every entity family over `content`; the first family to claim a value wins."""
    entities: list[LockedEntity] = []
    seen: set[str] = set()
    for family in ENTITY_FAMILIES:
        for pattern in family.patterns:
            for m in pattern.finditer(content):
                value = m.group(0).strip()
                if not value or value in seen:
                    continue
                seen.add(value)
                start = max(0, m.start() - ENTITY_CONTEXT_CHARS)
                end = m.start() + len(value) + ENTITY_CONTEXT_CHARS
                entities.append(
                    LockedEntity(
                        type=family.type,
                        value=value,
                        critical=family.critical,
                        context=content[start:end],
                    )
                )
    return entities


def extract_locked_context(source_content: str, source_message_id: str) -> LockedContext:
    """Build the locked context for one transform attempt.

    Args:
        source_content: The current source text snapshot.
        source_message_id: Id of the message the text came from.

    Returns:
        A fresh, immutable `LockedContext`.
    """
    return LockedContext(
        entities=extract_entities(source_content),
        topic_summary=extract_topic_summary(source_content),
        topic_keywords=extract_keywords(source_content),
        required_format=detect_format(source_content),
        must_keep=extract_must_keep(source_content),
        source_message_id=source_message_id,
        extracted_at=datetime.now(UTC),
    )


def get_critical_entities(context: LockedContext) -> list[LockedEntity]:
    return [e for e in context.entities if e.critical]


def get_entities_by_type(context: LockedContext, entity_type: LockedEntityType) -> list[str]:
    return [e.value for e in context.entities if e.type is entity_type]
