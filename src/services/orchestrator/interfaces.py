"""Collaborator interfaces for the orchestrator.

These protocols keep the pipeline independent of how the model is reached
and where conversation state lives, so tests can pass plain stubs.
"""

from __future__ import annotations

from typing import Any, Protocol


class ModelCaller(Protocol):
    """Something that turns a constrained prompt pair into model text."""

    async def __call__(self, system_prompt: str, user_message: str) -> str:
        """Return the model reply, or raise `ModelCallError`."""
        ...


class StateStore(Protocol):
    """Opaque key-value persistence for conversation state."""

    def get(self, key: str) -> Any | None:
        """Return the stored value, or None when absent."""
        ...

    def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value under `key`."""
        ...

    def clear(self, key: str) -> None:
        """Remove `key` if present."""
        ...
