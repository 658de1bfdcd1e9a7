"""Domain exceptions for the transform orchestrator.

Pre-flight rejections and model-call failures are returned as data
(`GateDecision`, `NormalizeErr`, `ExecutionResult`). These exceptions cover
the seams where control flow must unwind instead: a model adapter that could
not obtain content, a transform with nothing to transform, an action with no
rule-based fallback, and persisted state from an incompatible version. Each
carries a stable `error_code` for log tagging.
"""

from __future__ import annotations

from dataclasses import dataclass

from schemas.execution import ReasonCode


@dataclass(slots=True)
class OrchestratorError(Exception):
    """Base class for orchestrator domain errors."""

    message: str
    error_code: str

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.error_code}: {self.message}"


class ModelCallError(OrchestratorError):
    """The model could not be reached or returned no usable reply."""

    def __init__(
        self,
        message: str = "Model call failed",
        reason_code: ReasonCode | str | None = None,
    ) -> None:
        super().__init__(message=message, error_code="model_call_failed")
        self.reason_code = reason_code


class EmptySourceError(OrchestratorError):
    def __init__(
        self,
        message: str = "Source content is empty. Please select a message to transform.",
    ) -> None:
        super().__init__(message=message, error_code="empty_source")


class FallbackUnavailableError(OrchestratorError):
    def __init__(
        self,
        message: str = "No rule-based fallback exists for this action",
    ) -> None:
        super().__init__(message=message, error_code="fallback_unavailable")


class StateVersionError(OrchestratorError):
    def __init__(
        self,
        message: str = "Stored conversation state has an incompatible version",
    ) -> None:
        super().__init__(message=message, error_code="state_version")
