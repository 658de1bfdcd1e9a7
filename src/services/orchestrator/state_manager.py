"""Conversation state kept between sends in one client session.

The orchestrator reads and writes a single `ConversationState` through an
opaque `StateStore`. Stored values are plain JSON-compatible dicts; anything
written by an incompatible version is discarded on load.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from schemas.orchestrator import ChatMessage, ConversationState, LockedContext, OutputReference
from services.orchestrator.exceptions import StateVersionError
from services.orchestrator.interfaces import StateStore
from services.orchestrator.source_resolver import MAX_RECENT_OUTPUTS, get_recent_outputs


logger = logging.getLogger(__name__)

STATE_VERSION = 1
DEFAULT_STATE_KEY = "studio_orchestrator_state"


class InMemoryStateStore:
    """Dict-backed `StateStore` for tests and single-process use."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def clear(self, key: str) -> None:
        self._data.pop(key, None)


def _parse_state(raw: Any) -> ConversationState:
    if not isinstance(raw, dict):
        raise StateVersionError("Stored conversation state is not an object")
    version = raw.get("version")
    if version != STATE_VERSION:
        raise StateVersionError(
            f"Stored conversation state has version {version!r}, expected {STATE_VERSION}"
        )
    return ConversationState.model_validate(raw)


class OrchestratorStateManager:
    """Typed accessors over the persisted `ConversationState`."""

    def __init__(
        self,
        store: StateStore,
        key: str = DEFAULT_STATE_KEY,
        max_outputs: int = MAX_RECENT_OUTPUTS,
    ) -> None:
        self.store = store
        self.key = key
        self.max_outputs = max_outputs

    def load(self) -> ConversationState:
        """Return the stored state, or a fresh one when absent or unreadable."""
        raw = self.store.get(self.key)
        if raw is None:
            return ConversationState(version=STATE_VERSION)
        try:
            return _parse_state(raw)
        except StateVersionError as exc:
            logger.warning("Discarding stored state: %s", exc.message)
        except ValidationError as exc:
            logger.warning("Discarding malformed stored state: %d errors", exc.error_count())
        self.store.clear(self.key)
        return ConversationState(version=STATE_VERSION)

    def _save(self, state: ConversationState) -> ConversationState:
        stamped = state.model_copy(
            update={"version": STATE_VERSION, "updated_at": datetime.now(UTC)}
        )
        self.store.set(self.key, stamped.model_dump(mode="json"))
        return stamped

    def _update(self, **changes: Any) -> ConversationState:
        return self._save(self.load().model_copy(update=changes))

    def update_outputs(self, messages: Sequence[ChatMessage]) -> list[OutputReference]:
        """Remember the latest assistant outputs, most recent first."""
        outputs = get_recent_outputs(messages, self.max_outputs)
        self._update(last_outputs=outputs)
        return outputs

    def get_last_outputs(self) -> list[OutputReference]:
        return self.load().last_outputs

    def get_active_source_id(self) -> str | None:
        return self.load().active_source_id

    def set_active_source(self, message_id: str | None) -> None:
        self._update(active_source_id=message_id)

    def get_active_template_id(self) -> str | None:
        return self.load().active_template_id

    def set_active_template(self, template_id: str | None) -> None:
        self._update(active_template_id=template_id)

    def get_locked_context(self) -> LockedContext | None:
        return self.load().locked_context

    def set_locked_context(self, context: LockedContext | None) -> None:
        self._update(locked_context=context)

    def clear(self) -> None:
        self.store.clear(self.key)
        logger.debug("Cleared conversation state %s", self.key)
