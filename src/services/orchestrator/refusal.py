"""Detection of model replies that are non-answers."""

from __future__ import annotations

import re


MIN_OUTPUT_LENGTH = 20

REFUSAL_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        # English
        r"I('m| am) sorry,? (but )?I (cannot|can't|won't|am unable to)",
        r"I('m| am) not able to",
        r"I (cannot|can't) (help|assist|fulfill|complete|do) (with )?(this|that|your)",
        r"As an AI,? I (cannot|can't|am unable to)",
        r"I('m| am) afraid I (cannot|can't)",
        r"Unfortunately,? I (cannot|can't|am unable to)",
        r"This (request|content) (is|seems|appears) (inappropriate|harmful|unsafe)",
        r"I don't have (enough|sufficient) (information|context)",
        # Vietnamese
        r"Xin lỗi,? (nhưng )?(tôi|mình) không thể",
        r"Tôi không thể (giúp|hỗ trợ|thực hiện|hoàn thành)",
        r"Rất tiếc,? (nhưng )?(tôi|mình) không thể",
        r"Tôi xin phép (từ chối|không thực hiện)",
        r"Mình không thể (giúp|làm|thực hiện)",
        r"Xin lỗi vì (tôi|mình) không thể",
        r"Không thể thực hiện (yêu cầu|việc) này",
        r"Tôi không có đủ (thông tin|dữ liệu|ngữ cảnh)",
    )
)


def is_refusal(output: str) -> bool:
    """True for apology/inability replies and anything under 20 characters."""
    trimmed = output.strip()
    if len(trimmed) < MIN_OUTPUT_LENGTH:
        return True
    return any(p.search(trimmed) for p in REFUSAL_PATTERNS)


def has_meaningful_content(output: str, source_content: str) -> bool:
    """Output must reach max(20, 20% of source) chars and differ from the source."""
    trimmed = output.strip()
    min_length = max(MIN_OUTPUT_LENGTH, int(len(source_content) * 0.2))
    if len(trimmed) < min_length:
        return False
    return trimmed != source_content.strip()
