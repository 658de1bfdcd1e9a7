"""Contracts for the execution gate and the single model call site.

The wire models (`StudioAIRequest`, `StudioAIResponse`) serialize with the
camelCase keys the model endpoint expects; Python code uses snake_case.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ReasonCode(str, Enum):
    """Stable codes for every way an action can fail to produce a model call or reply."""

    # Pre-flight rejections (never touch the network)
    UNKNOWN_ACTION_TYPE = "UNKNOWN_ACTION_TYPE"
    STALE_ACTION = "STALE_ACTION"
    DUPLICATE_EVENT = "DUPLICATE_EVENT"
    NO_VALID_INPUT = "NO_VALID_INPUT"
    EMPTY_USER_PROMPT = "EMPTY_USER_PROMPT"
    BINDING_MISMATCH = "BINDING_MISMATCH"
    REWRITE_NO_CONTEXT = "REWRITE_NO_CONTEXT"
    INVALID_TOKEN = "INVALID_TOKEN"
    ALREADY_IN_FLIGHT = "ALREADY_IN_FLIGHT"
    # Model-call failures
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"


UserActionType = Literal["send", "click", "auto", "unknown"]


# ============================================================================
# Gate
# ============================================================================


class ExecutionContext(BaseModel):
    """What the UI knows at the moment the user triggers an action."""

    user_action_type: UserActionType
    event_id: str
    action_timestamp: int = Field(..., description="Epoch milliseconds of the UI event")
    has_valid_input: bool
    source_message_id: str | None = None
    action_type: str | None = None

    model_config = ConfigDict(frozen=True)


class AuthorizationToken(BaseModel):
    """Short-lived proof that an event passed the gate."""

    type: Literal["GATE_PASS"] = "GATE_PASS"
    event_id: str
    issued_at: int
    expires_at: int
    user_action_type: UserActionType
    signature: str

    model_config = ConfigDict(frozen=True)


class GateDebugInfo(BaseModel):
    event_id: str
    timestamp: int
    decision: Literal["AUTHORIZED", "REJECTED"]
    reason: str

    model_config = ConfigDict(frozen=True)


class GateDecision(BaseModel):
    authorized: bool
    rejection_reason: ReasonCode | None = None
    rejection_message: str | None = Field(default=None, description="Human-readable reason")
    token: AuthorizationToken | None = None
    debug_info: GateDebugInfo

    model_config = ConfigDict(frozen=True)


# ============================================================================
# LLM request shapes
# ============================================================================


class RequestMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str

    model_config = ConfigDict(frozen=True)


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str

    model_config = ConfigDict(frozen=True)


class LLMRequestMeta(BaseModel):
    """Binding and tracing metadata attached to a request by the UI."""

    event_id: str | None = None
    fallback_allowed: bool = False
    ui_input_hash: str | None = None
    ui_input_length: int | None = None
    ui_final_prompt_hash: str | None = None
    ui_final_prompt_length: int | None = None

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow", frozen=True
    )


class AnswerContext(BaseModel):
    """Caller-supplied facts used by the rewrite-without-context guard."""

    has_active_draft: bool
    has_previous_messages: bool
    lang: Literal["vi", "en"] = "vi"

    model_config = ConfigDict(frozen=True)


class LLMRequest(BaseModel):
    """Heterogeneous request shape accepted by the executor before normalization."""

    messages: list[RequestMessage] = Field(default_factory=list)
    user_prompt: str | None = None
    template_system_message: str | None = None
    meta: LLMRequestMeta | None = None
    context: AnswerContext | None = None

    model_config = ConfigDict(frozen=True)


class StudioAIRequest(BaseModel):
    """Canonical wire request: ``{systemMessage, userPrompt, meta?, conversationHistory?}``."""

    system_message: str
    user_prompt: str
    meta: LLMRequestMeta | None = None
    conversation_history: list[ConversationTurn] | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class NormalizeOk(BaseModel):
    ok: Literal[True] = True
    normalized: StudioAIRequest
    used_fallback: bool = False

    model_config = ConfigDict(frozen=True)


class NormalizeErr(BaseModel):
    ok: Literal[False] = False
    error: str
    reason_code: ReasonCode

    model_config = ConfigDict(frozen=True)


NormalizeResult = NormalizeOk | NormalizeErr


# ============================================================================
# LLM response shapes
# ============================================================================


class LLMUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StudioAIResponseData(BaseModel):
    content: str
    usage: LLMUsage | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StudioAIResponse(BaseModel):
    """Wire response: ``{success, data?: {content, usage?}, error?, reasonCode?}``."""

    success: bool
    data: StudioAIResponseData | None = None
    error: str | None = None
    reason_code: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LLMResponse(BaseModel):
    success: bool
    content: str
    usage: LLMUsage | None = None

    model_config = ConfigDict(frozen=True)


class ExecutionDebugInfo(BaseModel):
    event_id: str
    request_time: int
    response_time: int
    duration: int
    token_valid: bool
    api_called: bool
    reason_code: str | None = None

    model_config = ConfigDict(frozen=True)


class ExecutionResult(BaseModel):
    success: bool
    response: LLMResponse | None = None
    error: str | None = None
    debug_info: ExecutionDebugInfo

    model_config = ConfigDict(frozen=True)
