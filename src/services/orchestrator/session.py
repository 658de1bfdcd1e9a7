"""Per-session facade that runs one user action end to end.

Control flow for a send: gate -> classify -> resolve source (for actions that
need one) -> transform with retries, or a single call for everything else ->
persist the active source and its locked context.

An explicit request for new content, or an instruction about a different
topic than the resolved source, is generated fresh instead of transformed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

from core.error_handler import preview, setup_logging
from schemas.execution import (
    AuthorizationToken,
    ExecutionContext,
    ReasonCode,
    UserActionType,
)
from schemas.orchestrator import (
    ActionCategory,
    ActionClassification,
    ActionType,
    ChatMessage,
    ResolutionStatus,
    SourceResolution,
    TransformRequest,
    TransformResult,
)
from services.orchestrator.action_classifier import (
    classify_action,
    detect_new_create,
    detect_topic_drift,
)
from services.orchestrator.execution_gate import ExecutionGate
from services.orchestrator.interfaces import StateStore
from services.orchestrator.llm_executor import ExecutorModelCaller, LLMExecutor
from services.orchestrator.source_resolver import (
    is_resolution_usable,
    needs_user_selection,
    resolve_source,
)
from services.orchestrator.state_manager import (
    DEFAULT_STATE_KEY,
    InMemoryStateStore,
    OrchestratorStateManager,
)
from services.orchestrator.transform_orchestrator import (
    execute_simple,
    execute_transform,
    get_locked_context,
    should_validate,
)


logger = logging.getLogger(__name__)

SELECT_SOURCE_ERROR = "Bạn muốn chỉnh sửa bài nào? Hãy chọn một bài trong danh sách."
NO_SOURCE_ERROR = "Chưa có nội dung để chỉnh sửa. Hãy tạo bài viết trước."


def _as_generation(classification: ActionClassification) -> ActionClassification:
    return classification.model_copy(
        update={
            "type": ActionType.CREATE_CONTENT,
            "category": ActionCategory.GENERATION,
            "requires_source": False,
            "transform_mode": None,
        }
    )


class SessionResponse(BaseModel):
    """Everything the UI needs to render the outcome of one action."""

    result: TransformResult
    classification: ActionClassification | None = None
    resolution: SourceResolution | None = None
    rejection_reason: ReasonCode | None = None

    model_config = ConfigDict(frozen=True)


class OrchestratorSession:
    """Owns the gate, executor and conversation state of one client session."""

    def __init__(
        self,
        *,
        gate: ExecutionGate | None = None,
        executor: LLMExecutor | None = None,
        store: StateStore | None = None,
        state_key: str | None = None,
    ) -> None:
        setup_logging()
        self.gate = gate or ExecutionGate()
        self.executor = executor or LLMExecutor(self.gate)
        if self.executor.gate is not self.gate:
            raise ValueError("Executor must share the session's execution gate")
        store = store if store is not None else InMemoryStateStore()
        self.state = OrchestratorStateManager(store, state_key or DEFAULT_STATE_KEY)

    async def handle_input(
        self,
        text: str,
        messages: Sequence[ChatMessage],
        *,
        user_action_type: UserActionType = "send",
        event_id: str | None = None,
        action_timestamp: int | None = None,
        explicit_source_id: str | None = None,
        template_system_prompt: str | None = None,
    ) -> SessionResponse:
        """Run one user action.

        Args:
            text: The user's instruction as typed.
            messages: Conversation so far, oldest first.
            user_action_type: How the action was triggered.
            event_id: UI event id; generated when omitted.
            action_timestamp: Epoch ms of the UI event; defaults to now.
            explicit_source_id: Message picked in the UI, if any.
            template_system_prompt: System prompt of the active template.

        Returns:
            A `SessionResponse`. Gate rejections, ambiguous sources and
            missing sources come back as explicit errors, never as empty
            results.
        """
        context = ExecutionContext(
            user_action_type=user_action_type,
            event_id=event_id or self.gate.generate_event_id(),
            action_timestamp=(
                action_timestamp if action_timestamp is not None else self.gate.now()
            ),
            has_valid_input=bool(text.strip()),
            source_message_id=explicit_source_id,
        )
        decision = self.gate.can_execute(context)
        if not decision.authorized or decision.token is None:
            return SessionResponse(
                result=TransformResult(success=False, error=decision.rejection_message),
                rejection_reason=decision.rejection_reason,
            )

        classification = classify_action(text)
        self.state.update_outputs(messages)
        logger.info(
            "Classified %s as %s (%.2f)",
            preview(text),
            classification.type.value,
            classification.confidence,
        )

        needs_source = (
            classification.requires_source
            or classification.type is ActionType.SELECT_SOURCE
        )
        if (
            needs_source
            and classification.type is not ActionType.SELECT_SOURCE
            and detect_new_create(text)
        ):
            logger.info("Explicit new-content request, skipping source resolution")
            classification = _as_generation(classification)
            needs_source = False

        if not needs_source:
            return await self._generate(
                text, classification, decision.token, template_system_prompt
            )

        resolution = resolve_source(text, messages, explicit_source_id)
        if needs_user_selection(resolution):
            return SessionResponse(
                result=TransformResult(success=False, error=SELECT_SOURCE_ERROR),
                classification=classification,
                resolution=resolution,
            )
        if not is_resolution_usable(resolution):
            return SessionResponse(
                result=TransformResult(success=False, error=NO_SOURCE_ERROR),
                classification=classification,
                resolution=resolution,
            )

        source_id = resolution.source_message_id or ""
        source_content = resolution.source_content or ""
        if (
            classification.type is not ActionType.SELECT_SOURCE
            and resolution.status is not ResolutionStatus.EXPLICIT
            and detect_topic_drift(text, source_content)
        ):
            logger.info("Topic drift from source %s, generating new content", source_id)
            return await self._generate(
                text,
                _as_generation(classification),
                decision.token,
                template_system_prompt,
            )

        caller = ExecutorModelCaller(
            self.executor,
            action_type=classification.type.value,
            token=decision.token,
        )
        if classification.type is ActionType.SELECT_SOURCE:
            self._remember_source(source_id, source_content)
            return SessionResponse(
                result=TransformResult(success=True, content=source_content),
                classification=classification,
                resolution=resolution,
            )

        request = TransformRequest(
            action=classification.type,
            source_message_id=source_id,
            source_content=source_content,
            user_instruction=text,
            template_system_prompt=template_system_prompt,
        )
        if should_validate(classification.type):
            result = await execute_transform(request, caller)
        else:
            result = await execute_simple(request, caller)

        if result.success:
            self._remember_source(source_id, source_content)
        return SessionResponse(
            result=result, classification=classification, resolution=resolution
        )

    async def _generate(
        self,
        text: str,
        classification: ActionClassification,
        token: AuthorizationToken,
        template_system_prompt: str | None,
    ) -> SessionResponse:
        caller = ExecutorModelCaller(
            self.executor, action_type=classification.type.value, token=token
        )
        request = TransformRequest(
            action=classification.type,
            user_instruction=text,
            template_system_prompt=template_system_prompt,
        )
        return SessionResponse(
            result=await execute_simple(request, caller),
            classification=classification,
        )

    def _remember_source(self, source_id: str, source_content: str) -> None:
        if not source_id or not source_content:
            return
        self.state.set_active_source(source_id)
        self.state.set_locked_context(get_locked_context(source_content, source_id))

    def reset(self) -> None:
        """Forget processed events and stored state."""
        self.gate.reset()
        self.state.clear()
