"""The single call site to the text-generation endpoint.

`LLMExecutor.execute_llm` re-validates the gate token, refuses a second
concurrent call for the same event id, normalizes the heterogeneous request
into the canonical `StudioAIRequest` and performs exactly one POST. Every
failure comes back as an `ExecutionResult` carrying a `ReasonCode`.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence

import httpx
from pydantic import ValidationError

from core.config import get_settings
from core.error_handler import preview, set_correlation_id
from core.security import content_hash
from schemas.execution import (
    AnswerContext,
    AuthorizationToken,
    ConversationTurn,
    ExecutionContext,
    ExecutionDebugInfo,
    ExecutionResult,
    LLMRequest,
    LLMRequestMeta,
    LLMResponse,
    NormalizeErr,
    NormalizeOk,
    NormalizeResult,
    ReasonCode,
    RequestMessage,
    StudioAIRequest,
    StudioAIResponse,
    UserActionType,
)
from services.orchestrator.exceptions import ModelCallError
from services.orchestrator.execution_gate import ExecutionGate, now_ms


logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_MESSAGE = "You are a helpful content creation assistant."
EMPTY_USER_PROMPT_ERROR = (
    "Vui lòng nhập nội dung trước khi gửi. / Please enter content before sending."
)
BINDING_MISMATCH_ERROR = (
    "Request binding mismatch. Content may have been modified after Send."
)
REWRITE_NO_CONTEXT_ERROR: dict[str, str] = {
    "vi": "Bạn muốn viết lại bài nào? Hãy chọn bài trước.",
    "en": "Which post do you want to rewrite? Please select a draft first.",
}
INVALID_TOKEN_ERROR = "Invalid or expired authorization token"
ALREADY_IN_FLIGHT_ERROR = "Request with this eventId is already in progress"
TIMEOUT_ERROR = "Request timed out"

# ============================================================================
# Rewrite-of-existing-content detection
# ============================================================================

REWRITE_SCORE_THRESHOLD = 3

_VI_REWRITE_PATTERNS: tuple[tuple[re.Pattern[str], int], ...] = tuple(
    (re.compile(p, re.IGNORECASE), weight)
    for p, weight in (
        (r"viết\s*dài\s*(hơn|ra)", 5),
        (r"viết\s*chi\s*tiết\s*hơn", 5),
        (r"kéo\s*dài\s*(hơn|ra)", 4),
        (r"chuyên\s*nghiệp\s*hơn", 5),
        (r"hay\s*hơn", 4),
        (r"mượt\s*hơn", 4),
        (r"cuốn\s*hơn", 4),
        (r"hấp\s*dẫn\s*hơn", 4),
        (r"tốt\s*hơn", 3),
        (r"viết\s*lại\s*(cho\s*)?(tốt|hay|đẹp|mượt)\s*hơn", 6),
        (r"nâng\s*cấp\s*(bài|nội\s*dung)", 5),
        (r"tối\s*ưu\s*(bài|nội\s*dung)?", 4),
        (r"cải\s*thiện", 4),
        (r"làm\s*(cho\s*)?(hay|tốt|đẹp)\s*hơn", 4),
        (r"giữ\s*(ý|nội\s*dung).*viết\s*lại", 6),
        (r"giữ\s*(ý|nội\s*dung).*hay\s*hơn", 6),
        (r"viết\s*lại(?!\s*(từ\s*đầu|hoàn\s*toàn\s*mới))", 4),
        (r"rewrite", 4),
    )
)

_EN_REWRITE_PATTERNS: tuple[tuple[re.Pattern[str], int], ...] = tuple(
    (re.compile(p, re.IGNORECASE), weight)
    for p, weight in (
        (r"\bmake\s+(it\s+)?longer\b", 5),
        (r"\bexpand\s+(it|this)\b", 5),
        (r"\bmore\s+detail(ed|s)?\b", 5),
        (r"\badd\s+more\s+detail", 4),
        (r"\bmore\s+professional\b", 5),
        (r"\bmake\s+(it\s+)?better\b", 4),
        (r"\bimprove\s+(it|this)?\b", 5),
        (r"\bmore\s+engaging\b", 4),
        (r"\bmore\s+compelling\b", 4),
        (r"\bmore\s+polished\b", 4),
        (r"\brewrite\s+(to\s+be\s+)?(better|longer|more)", 6),
        (r"\bupgrade\s+(the\s+)?(post|content)\b", 5),
        (r"\benhance\b", 4),
        (r"\boptimize\b", 4),
        (r"\bpolish\b", 4),
        (r"\bkeep\s+(the\s+)?(idea|content).*rewrite\b", 6),
        (r"\bsame\s+(idea|topic).*better\b", 5),
        (r"\brewrite(?!\s+(from\s+scratch|completely|entirely))\b", 4),
    )
)

_QUESTION_MARKERS: dict[str, re.Pattern[str]] = {
    "vi": re.compile(r"\?|là\s*gì|tại\s*sao|vì\s*sao|bao\s*nhiêu|như\s*thế\s*nào|có\s*nên", re.IGNORECASE),
    "en": re.compile(r"\?|\b(what|why|how|when|which|should)\b", re.IGNORECASE),
}


def is_rewrite_request(user_prompt: str, lang: str = "vi") -> bool:
    """True when the prompt asks to rework existing content rather than ask or create."""
    text = user_prompt.strip().lower()
    if _QUESTION_MARKERS[lang].search(text):
        return False
    patterns = _VI_REWRITE_PATTERNS if lang == "vi" else _EN_REWRITE_PATTERNS
    score = sum(weight for pattern, weight in patterns if pattern.search(text))
    return score >= REWRITE_SCORE_THRESHOLD


# ============================================================================
# Normalization
# ============================================================================


def _resolve_user_prompt(request: LLMRequest) -> tuple[str, bool]:
    if request.user_prompt:
        return request.user_prompt.strip(), False
    if request.meta is not None and request.meta.fallback_allowed:
        for message in reversed(request.messages):
            if message.role == "user" and message.content:
                return message.content.strip(), True
    return "", False


def _binding_matches(user_prompt: str, meta: LLMRequestMeta | None) -> bool:
    if meta is None:
        return True
    # The final-prompt binding takes priority over the raw-input binding
    expected_hash = meta.ui_final_prompt_hash or meta.ui_input_hash
    expected_length = (
        meta.ui_final_prompt_length
        if meta.ui_final_prompt_length is not None
        else meta.ui_input_length
    )
    if not expected_hash or expected_length is None:
        return True
    return len(user_prompt) == expected_length and content_hash(user_prompt) == expected_hash


def _resolve_system_message(request: LLMRequest) -> str:
    if request.template_system_message and request.template_system_message.strip():
        return request.template_system_message.strip()
    for message in request.messages:
        if message.role == "system" and message.content.strip():
            return message.content.strip()
    return DEFAULT_SYSTEM_MESSAGE


def _conversation_history(
    messages: Sequence[RequestMessage], user_prompt: str
) -> list[ConversationTurn]:
    history = [
        ConversationTurn(role=m.role, content=m.content)
        for m in messages
        if m.role in ("user", "assistant")
    ]
    # The prompt itself is sent separately
    if history and history[-1].role == "user" and history[-1].content.strip() == user_prompt:
        history.pop()
    return history


def normalize_request(request: LLMRequest) -> NormalizeResult:
    """Turn any accepted request shape into the canonical `StudioAIRequest`.

    The user prompt must come from `user_prompt`; the last user message is
    used only when `meta.fallback_allowed` is set, and binding is not
    checked for such prompts.

    Args:
        request: Request as assembled by the caller.

    Returns:
        `NormalizeOk` with the canonical request, or `NormalizeErr` with a
        user-facing message and reason code.
    """
    user_prompt, used_fallback = _resolve_user_prompt(request)
    if not user_prompt:
        return NormalizeErr(error=EMPTY_USER_PROMPT_ERROR, reason_code=ReasonCode.EMPTY_USER_PROMPT)

    if not used_fallback and not _binding_matches(user_prompt, request.meta):
        logger.error(
            "Binding mismatch: prompt length %d, hash %s",
            len(user_prompt),
            content_hash(user_prompt),
        )
        return NormalizeErr(error=BINDING_MISMATCH_ERROR, reason_code=ReasonCode.BINDING_MISMATCH)

    context: AnswerContext | None = request.context
    if (
        context is not None
        and not (context.has_active_draft or context.has_previous_messages)
        and is_rewrite_request(user_prompt, context.lang)
    ):
        logger.warning("Rewrite requested without a draft: %s", preview(user_prompt))
        return NormalizeErr(
            error=REWRITE_NO_CONTEXT_ERROR[context.lang],
            reason_code=ReasonCode.REWRITE_NO_CONTEXT,
        )

    history = _conversation_history(request.messages, user_prompt)
    normalized = StudioAIRequest(
        system_message=_resolve_system_message(request),
        user_prompt=user_prompt,
        meta=request.meta,
        conversation_history=history or None,
    )
    logger.debug(
        "Normalized request: prompt=%d chars, system=%d chars, history=%d, fallback=%s",
        len(user_prompt),
        len(normalized.system_message),
        len(history),
        used_fallback,
    )
    return NormalizeOk(normalized=normalized, used_fallback=used_fallback)


# ============================================================================
# Executor
# ============================================================================


class LLMExecutor:
    """Performs authorized model calls for one client session."""

    def __init__(
        self,
        gate: ExecutionGate,
        *,
        endpoint: str | None = None,
        timeout: float | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        settings = get_settings()
        self.gate = gate
        self.endpoint = endpoint or settings.LLM_API_ENDPOINT
        self.timeout = timeout if timeout is not None else settings.LLM_REQUEST_TIMEOUT_SECONDS
        self._clock = clock
        self._in_flight: set[str] = set()

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def _result(
        self,
        event_id: str,
        request_time: int,
        *,
        token_valid: bool,
        api_called: bool,
        reason_code: ReasonCode | str | None = None,
        error: str | None = None,
        response: LLMResponse | None = None,
    ) -> ExecutionResult:
        response_time = self._clock()
        code = reason_code.value if isinstance(reason_code, ReasonCode) else reason_code
        return ExecutionResult(
            success=response is not None,
            response=response,
            error=error,
            debug_info=ExecutionDebugInfo(
                event_id=event_id,
                request_time=request_time,
                response_time=response_time,
                duration=response_time - request_time,
                token_valid=token_valid,
                api_called=api_called,
                reason_code=code,
            ),
        )

    async def execute_llm(
        self, token: AuthorizationToken | None, request: LLMRequest
    ) -> ExecutionResult:
        """Validate, normalize and send one request.

        Args:
            token: Authorization issued by the session's gate.
            request: Request in any accepted shape.

        Returns:
            An `ExecutionResult`; `debug_info.api_called` tells whether the
            network was touched.
        """
        request_time = self._clock()

        if not self.gate.validate_token(token):
            logger.error("Blocked: invalid or expired token")
            return self._result(
                token.event_id if token else "unknown",
                request_time,
                token_valid=False,
                api_called=False,
                reason_code=ReasonCode.INVALID_TOKEN,
                error=INVALID_TOKEN_ERROR,
            )

        event_id = token.event_id
        if event_id in self._in_flight:
            logger.warning("Blocked: request %s already in flight", event_id)
            return self._result(
                event_id,
                request_time,
                token_valid=True,
                api_called=False,
                reason_code=ReasonCode.ALREADY_IN_FLIGHT,
                error=ALREADY_IN_FLIGHT_ERROR,
            )

        self._in_flight.add(event_id)
        set_correlation_id(event_id)
        try:
            normalization = normalize_request(request)
            if isinstance(normalization, NormalizeErr):
                return self._result(
                    event_id,
                    request_time,
                    token_valid=True,
                    api_called=False,
                    reason_code=normalization.reason_code,
                    error=normalization.error,
                )
            return await self._send(event_id, request_time, normalization.normalized)
        finally:
            self._in_flight.discard(event_id)
            set_correlation_id(None)

    async def _send(
        self, event_id: str, request_time: int, normalized: StudioAIRequest
    ) -> ExecutionResult:
        logger.info(
            "Executing authorized request %s (prompt %d chars)",
            event_id,
            len(normalized.user_prompt),
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.endpoint,
                    json=normalized.to_wire(),
                    headers={"Content-Type": "application/json", "X-Event-Id": event_id},
                )
        except httpx.TimeoutException:
            logger.error("Request %s timed out after %.0fs", event_id, self.timeout)
            return self._result(
                event_id,
                request_time,
                token_valid=True,
                api_called=True,
                reason_code=ReasonCode.TIMEOUT,
                error=TIMEOUT_ERROR,
            )
        except httpx.HTTPError as exc:
            logger.error("Request %s failed: %s - %s", event_id, type(exc).__name__, exc)
            return self._result(
                event_id,
                request_time,
                token_valid=True,
                api_called=True,
                reason_code=ReasonCode.NETWORK_ERROR,
                error=str(exc) or type(exc).__name__,
            )
        data: StudioAIResponse | None
        try:
            data = StudioAIResponse.model_validate(response.json())
        except (ValueError, ValidationError):
            data = None

        if not response.is_success or data is None or not data.success or data.data is None:
            error = (data.error if data else None) or f"API error: {response.status_code}"
            reason = (data.reason_code if data else None) or ReasonCode.API_ERROR
            logger.error("API error for %s: %s", event_id, error)
            return self._result(
                event_id,
                request_time,
                token_valid=True,
                api_called=True,
                reason_code=reason,
                error=error,
            )

        logger.info(
            "Request %s succeeded (%d chars)", event_id, len(data.data.content)
        )
        return self._result(
            event_id,
            request_time,
            token_valid=True,
            api_called=True,
            response=LLMResponse(success=True, content=data.data.content, usage=data.data.usage),
        )


# ============================================================================
# Request builders and orchestrator adapter
# ============================================================================


def build_llm_request(
    system_prompt: str, user_message: str, meta: LLMRequestMeta | None = None
) -> LLMRequest:
    return LLMRequest(
        messages=[
            RequestMessage(role="system", content=system_prompt),
            RequestMessage(role="user", content=user_message),
        ],
        user_prompt=user_message,
        meta=meta,
    )


def build_transform_request(
    system_prompt: str,
    instruction: str,
    source_content: str,
    meta: LLMRequestMeta | None = None,
) -> LLMRequest:
    return build_llm_request(
        system_prompt, f"{instruction}\n\n---\nNỘI DUNG GỐC:\n{source_content}", meta
    )


class ExecutorModelCaller:
    """Adapter letting the transform orchestrator call the model via the executor.

    The token the user's own action earned covers the first call. Every
    further call (a retry attempt) is authorized as a separate gate event, so
    the executor's token, dedup and in-flight checks hold for each attempt.
    """

    def __init__(
        self,
        executor: LLMExecutor,
        user_action_type: UserActionType = "auto",
        action_type: str | None = None,
        token: AuthorizationToken | None = None,
    ) -> None:
        self.executor = executor
        self.user_action_type = user_action_type
        self.action_type = action_type
        self._pending_token = token
        self.calls = 0

    def _authorize(self, user_message: str) -> AuthorizationToken:
        gate = self.executor.gate
        context = ExecutionContext(
            user_action_type=self.user_action_type,
            event_id=gate.generate_event_id(),
            action_timestamp=gate.now(),
            has_valid_input=bool(user_message.strip()),
            action_type=self.action_type,
        )
        token = gate.create_authorization_token(context)
        if token is None:
            raise ModelCallError("Execution gate rejected the model call")
        return token

    async def __call__(self, system_prompt: str, user_message: str) -> str:
        token, self._pending_token = self._pending_token, None
        if token is None:
            token = self._authorize(user_message)

        self.calls += 1
        result = await self.executor.execute_llm(
            token, build_llm_request(system_prompt, user_message)
        )
        if not result.success or result.response is None:
            raise ModelCallError(
                result.error or "Model call failed", reason_code=result.debug_info.reason_code
            )
        return result.response.content
