"""Decide which previous assistant output a transform applies to.

Resolution priority, first match wins:
1. Explicit id selected in the UI (trusted even if it fails validity checks)
2. Quoted text from the instruction found inside an assistant message
3. Implicit reference ("bài này", "that one") -> last valid output
4. Several valid outputs and no other signal -> ambiguous, caller must ask
5. Exactly one valid output -> used by default
6. Nothing usable -> none
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from schemas.orchestrator import (
    ChatMessage,
    MessageRole,
    OutputReference,
    ResolutionStatus,
    SourceResolution,
)
from services.orchestrator.action_classifier import has_implicit_reference
from services.orchestrator.refusal import is_refusal


logger = logging.getLogger(__name__)

MIN_VALID_SOURCE_LENGTH = 30
MIN_FALLBACK_SOURCE_LENGTH = 50
MIN_QUOTE_LENGTH = 10
MAX_RECENT_OUTPUTS = 5
PREVIEW_LENGTH = 100

CONFIDENCE_EXPLICIT = 1.0
CONFIDENCE_QUOTED = 0.9
CONFIDENCE_IMPLICIT_REFERENCE = 0.8
CONFIDENCE_SINGLE_SOURCE = 0.7
CONFIDENCE_AMBIGUOUS = 0.5

QUOTE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r'"([^"]+)"'),
    re.compile(r"'([^']+)'"),
    re.compile(r"「([^」]+)」"),
    re.compile(r"『([^』]+)』"),
    re.compile(r"«([^»]+)»"),
)


def is_valid_source(message: ChatMessage) -> bool:
    """Assistant output with at least 30 chars that is not a refusal or short fallback."""
    if message.role is not MessageRole.ASSISTANT:
        return False
    content = message.content.strip()
    if len(content) < MIN_VALID_SOURCE_LENGTH:
        return False
    if is_refusal(content):
        return False
    if message.meta and message.meta.is_fallback and len(content) < MIN_FALLBACK_SOURCE_LENGTH:
        return False
    return True


def _extract_quoted_text(text: str) -> list[str]:
    quotes: list[str] = []
    for pattern in QUOTE_PATTERNS:
        for m in pattern.finditer(text):
            if len(m.group(1)) >= MIN_QUOTE_LENGTH:
                quotes.append(m.group(1))
    return quotes


def _find_message_by_quote(
    quote: str, messages: Sequence[ChatMessage]
) -> ChatMessage | None:
    needle = quote.lower().strip()
    for msg in messages:
        if msg.role is MessageRole.ASSISTANT and needle in msg.content.lower():
            return msg
    return None


def create_output_reference(message: ChatMessage) -> OutputReference:
    return OutputReference(
        message_id=message.id,
        content_preview=message.content[:PREVIEW_LENGTH],
        timestamp=message.timestamp,
        template_id=message.meta.template_id if message.meta else None,
    )


def get_recent_outputs(
    messages: Sequence[ChatMessage], limit: int = MAX_RECENT_OUTPUTS
) -> list[OutputReference]:
    """Last `limit` assistant messages, most recent first."""
    assistant = [m for m in messages if m.role is MessageRole.ASSISTANT]
    recent = assistant[-limit:] if limit > 0 else []
    return [create_output_reference(m) for m in reversed(recent)]


def resolve_source(
    text: str,
    messages: Sequence[ChatMessage],
    explicit_source_id: str | None = None,
) -> SourceResolution:
    """Resolve the source message for a transform.

    Args:
        text: The user's instruction.
        messages: The full conversation, oldest first.
        explicit_source_id: Message id picked in the UI, if any.

    Returns:
        A `SourceResolution`; `candidates` is set only when ambiguous.
    """
    valid_sources = [m for m in messages if is_valid_source(m)]
    assistant_messages = {
        m.id: m for m in messages if m.role is MessageRole.ASSISTANT
    }

    if explicit_source_id:
        explicit = assistant_messages.get(explicit_source_id)
        if explicit is not None:
            return SourceResolution(
                status=ResolutionStatus.EXPLICIT,
                source_message_id=explicit.id,
                source_content=explicit.content,
                confidence=CONFIDENCE_EXPLICIT,
            )
        logger.debug("Explicit source %s not found among outputs", explicit_source_id)

    for quote in _extract_quoted_text(text):
        quoted = _find_message_by_quote(quote, messages)
        if quoted is not None:
            return SourceResolution(
                status=ResolutionStatus.QUOTED,
                source_message_id=quoted.id,
                source_content=quoted.content,
                confidence=CONFIDENCE_QUOTED,
            )

    if has_implicit_reference(text) and valid_sources:
        last_valid = valid_sources[-1]
        return SourceResolution(
            status=ResolutionStatus.IMPLICIT,
            source_message_id=last_valid.id,
            source_content=last_valid.content,
            confidence=CONFIDENCE_IMPLICIT_REFERENCE,
        )

    if len(valid_sources) > 1:
        return SourceResolution(
            status=ResolutionStatus.AMBIGUOUS,
            candidates=get_recent_outputs(valid_sources, MAX_RECENT_OUTPUTS),
            confidence=CONFIDENCE_AMBIGUOUS,
        )

    if len(valid_sources) == 1:
        only = valid_sources[0]
        return SourceResolution(
            status=ResolutionStatus.IMPLICIT,
            source_message_id=only.id,
            source_content=only.content,
            confidence=CONFIDENCE_SINGLE_SOURCE,
        )

    return SourceResolution(status=ResolutionStatus.NONE, confidence=0.0)


def get_message_content(
    message_id: str, messages: Sequence[ChatMessage]
) -> str | None:
    for m in messages:
        if m.id == message_id:
            return m.content or None
    return None


def is_resolution_usable(resolution: SourceResolution) -> bool:
    """A resolution is usable when it names a source and is not waiting on the user."""
    return (
        resolution.source_message_id is not None
        and resolution.source_content is not None
        and resolution.status is not ResolutionStatus.AMBIGUOUS
    )


def needs_user_selection(resolution: SourceResolution) -> bool:
    return resolution.status is ResolutionStatus.AMBIGUOUS
