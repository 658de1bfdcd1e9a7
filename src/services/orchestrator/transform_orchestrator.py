"""Retry/escalation state machine for transform actions.

Flow per request: extract the locked context from the current source,
then walk NORMAL -> STRICT -> RELAXED with one model call per state. Refusals
and meaningless replies advance the state without validation. Validated
replies either succeed, advance (recoverable failure) or come back for user
confirmation. When every state is used up, a rule-based fallback transform
produces the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from schemas.orchestrator import (
    ActionType,
    ContractValidation,
    EntityPresenceCheck,
    FormatComplianceCheck,
    LockedContext,
    LockMode,
    TopicDriftCheck,
    TopicLockValidation,
    TransformMode,
    TransformRequest,
    TransformResult,
)
from services.orchestrator.action_classifier import detect_transform_mode
from services.orchestrator.constraint_injector import build_source_reference, inject_constraints
from services.orchestrator.exceptions import (
    EmptySourceError,
    FallbackUnavailableError,
    ModelCallError,
)
from services.orchestrator.fallback_transforms import apply_fallback_transform
from services.orchestrator.interfaces import ModelCaller
from services.orchestrator.locked_context import extract_locked_context
from services.orchestrator.output_contract import (
    build_contract_instruction,
    build_enforcement_instruction,
    extract_output_contract,
    validate_output_contract,
)
from services.orchestrator.refusal import has_meaningful_content, is_refusal
from services.orchestrator.topic_lock import is_recoverable, validate_topic_lock


logger = logging.getLogger(__name__)

DEFAULT_TRANSFORM_SYSTEM_PROMPT = (
    "Bạn là trợ lý viết nội dung chuyên nghiệp. Hãy hoàn thành yêu cầu của người dùng."
)
DEFAULT_SIMPLE_SYSTEM_PROMPT = "Bạn là trợ lý viết nội dung chuyên nghiệp."
VALIDATION_FAILED_ERROR = "Validation failed. Please review the output."
REFUSAL_ERROR = "AI could not complete this request. Please try again."

SHORTEN_MAX_RATIO = 0.9
EXPAND_MIN_RATIO = 1.1


# ============================================================================
# Labels and quick actions
# ============================================================================

ACTION_LABELS: dict[ActionType, str] = {
    ActionType.CREATE_CONTENT: "Tạo nội dung",
    ActionType.BRAINSTORM: "Brainstorm ý tưởng",
    ActionType.OUTLINE: "Tạo dàn bài",
    ActionType.REWRITE: "Viết lại",
    ActionType.OPTIMIZE: "Tối ưu",
    ActionType.SHORTEN: "Rút gọn",
    ActionType.EXPAND: "Mở rộng",
    ActionType.CHANGE_TONE: "Đổi giọng",
    ActionType.TRANSLATE: "Dịch",
    ActionType.FORMAT_CONVERT: "Đổi định dạng",
    ActionType.EVALUATE: "Đánh giá",
    ActionType.QA_FIX: "Sửa lỗi",
    ActionType.SELECT_SOURCE: "Chọn nguồn",
    ActionType.CLARIFY: "Làm rõ",
}


def get_action_label(action: ActionType) -> str:
    return ACTION_LABELS.get(action, action.value)


@dataclass(frozen=True)
class QuickAction:
    """One-click transform offered next to an assistant message."""

    id: ActionType
    label: str
    icon: str
    tooltip: str


QUICK_ACTIONS: tuple[QuickAction, ...] = (
    QuickAction(ActionType.OPTIMIZE, "Tối ưu", "sparkles", "Tối ưu hóa nội dung"),
    QuickAction(ActionType.REWRITE, "Viết lại", "refresh", "Viết lại với phong cách khác"),
    QuickAction(ActionType.SHORTEN, "Rút gọn", "arrowDown", "Rút gọn nội dung"),
    QuickAction(ActionType.CHANGE_TONE, "Đổi giọng", "edit", "Thay đổi giọng văn"),
    QuickAction(ActionType.FORMAT_CONVERT, "Đổi format", "grid", "Chuyển đổi định dạng"),
)


# ============================================================================
# Instructions
# ============================================================================

ACTION_INSTRUCTIONS: dict[ActionType, str] = {
    ActionType.REWRITE: "Viết lại nội dung với cách diễn đạt khác nhưng giữ nguyên ý chính.",
    ActionType.OPTIMIZE: "Tối ưu hóa nội dung để hấp dẫn hơn, rõ ràng hơn.",
    ActionType.SHORTEN: "Rút gọn nội dung, chỉ giữ những ý quan trọng nhất.",
    ActionType.EXPAND: "Mở rộng nội dung với thêm chi tiết và ví dụ.",
    ActionType.CHANGE_TONE: "Thay đổi giọng văn của nội dung nhưng giữ nguyên thông tin.",
    ActionType.TRANSLATE: "Dịch nội dung.",
    ActionType.FORMAT_CONVERT: "Chuyển đổi định dạng nội dung.",
    ActionType.EVALUATE: "Đánh giá và phân tích nội dung.",
    ActionType.QA_FIX: "Sửa các lỗi trong nội dung.",
}

MODE_EMPHASIS: dict[LockMode, str] = {
    LockMode.STRICT: (
        "⚠️ QUAN TRỌNG: Phải giữ nguyên tất cả số liệu, tên riêng, và thông tin "
        "quan trọng. Không được bỏ sót bất kỳ thông tin nào."
    ),
    LockMode.RELAXED: (
        "Hãy tập trung vào việc tạo ra nội dung có ý nghĩa. Có thể điều chỉnh "
        "linh hoạt miễn là giữ được ý chính."
    ),
}


def build_transform_instruction(
    action: ActionType, user_instruction: str, mode: LockMode = LockMode.NORMAL
) -> str:
    """Action template, then mode emphasis, then the user's own words."""
    instruction = ACTION_INSTRUCTIONS.get(action, "")
    if not instruction:
        return user_instruction.strip()
    if mode in MODE_EMPHASIS:
        instruction += f"\n\n{MODE_EMPHASIS[mode]}"
    if user_instruction.strip():
        return f"{instruction}\n\nHướng dẫn thêm: {user_instruction}"
    return instruction


# ============================================================================
# Action-aware validation
# ============================================================================


class ValidationStrategy(str, Enum):
    FULL = "FULL"
    TOPIC_ONLY = "TOPIC_ONLY"
    LENGTH_AWARE = "LENGTH_AWARE"


VALIDATION_STRATEGIES: dict[ActionType, ValidationStrategy] = {
    ActionType.OPTIMIZE: ValidationStrategy.FULL,
    ActionType.CREATE_CONTENT: ValidationStrategy.FULL,
    ActionType.REWRITE: ValidationStrategy.TOPIC_ONLY,
    ActionType.CHANGE_TONE: ValidationStrategy.TOPIC_ONLY,
    ActionType.TRANSLATE: ValidationStrategy.TOPIC_ONLY,
    ActionType.SHORTEN: ValidationStrategy.LENGTH_AWARE,
    ActionType.EXPAND: ValidationStrategy.LENGTH_AWARE,
}
# Actions without an entry get the unmodified three-part check
DEFAULT_VALIDATION_STRATEGY = ValidationStrategy.FULL


def get_validation_strategy(action: ActionType) -> ValidationStrategy:
    return VALIDATION_STRATEGIES.get(action, DEFAULT_VALIDATION_STRATEGY)


def _refusal_validation() -> TopicLockValidation:
    return TopicLockValidation(
        overall_passed=False,
        entity_presence=EntityPresenceCheck(
            passed=False,
            score=0.0,
            details="Output appears to be a refusal or is too short",
        ),
        topic_drift=TopicDriftCheck(
            passed=False,
            score=0.0,
            details="No meaningful content to validate",
            keyword_overlap=0.0,
        ),
        format_compliance=FormatComplianceCheck(
            passed=True, score=1.0, details="Skipped due to refusal"
        ),
    )


def _length_check(action: ActionType, output: str, source_content: str) -> FormatComplianceCheck:
    output_length = len(output.strip())
    source_length = len(source_content.strip()) or 1

    if action is ActionType.SHORTEN:
        passed = output_length < source_length * SHORTEN_MAX_RATIO
        details = (
            f"Shortened by {round((1 - output_length / source_length) * 100)}%"
            if passed
            else "Output not sufficiently shortened"
        )
    else:
        passed = output_length > source_length * EXPAND_MIN_RATIO
        details = (
            f"Expanded by {round((output_length / source_length - 1) * 100)}%"
            if passed
            else "Output not sufficiently expanded"
        )
    return FormatComplianceCheck(passed=passed, score=1.0 if passed else 0.0, details=details)


def validate_for_action(
    action: ActionType,
    output: str,
    locked_context: LockedContext,
    source_content: str,
) -> TopicLockValidation:
    """Topic-lock validation adjusted to what the action is allowed to change.

    Topic-only actions skip format compliance. Length-aware actions replace
    it with a 10% length-change check against the source. Everything else
    gets the full check.
    """
    if is_refusal(output):
        return _refusal_validation()

    base = validate_topic_lock(locked_context, output)
    strategy = get_validation_strategy(action)

    if strategy is ValidationStrategy.TOPIC_ONLY:
        return base.model_copy(
            update={
                "format_compliance": FormatComplianceCheck(
                    passed=True,
                    score=1.0,
                    details="Format compliance skipped for tone/rewrite actions",
                ),
                "overall_passed": base.entity_presence.passed and base.topic_drift.passed,
            }
        )

    if strategy is ValidationStrategy.LENGTH_AWARE:
        length = _length_check(action, output, source_content)
        return base.model_copy(
            update={
                "format_compliance": length,
                "overall_passed": (
                    base.entity_presence.passed and base.topic_drift.passed and length.passed
                ),
            }
        )

    return base


# ============================================================================
# State machine
# ============================================================================


class RetryState(str, Enum):
    NORMAL = "NORMAL"
    STRICT = "STRICT"
    RELAXED = "RELAXED"
    FALLBACK = "FALLBACK"


TRANSITIONS: dict[RetryState, RetryState] = {
    RetryState.NORMAL: RetryState.STRICT,
    RetryState.STRICT: RetryState.RELAXED,
    RetryState.RELAXED: RetryState.FALLBACK,
}

STATE_LOCK_MODES: dict[RetryState, LockMode] = {
    RetryState.NORMAL: LockMode.NORMAL,
    RetryState.STRICT: LockMode.STRICT,
    RetryState.RELAXED: LockMode.RELAXED,
}

INITIAL_STATE = RetryState.NORMAL


def _is_last_model_state(state: RetryState) -> bool:
    return TRANSITIONS[state] is RetryState.FALLBACK


def _transform_mode_of(request: TransformRequest) -> TransformMode:
    if not request.user_instruction.strip():
        return TransformMode.PURE_TRANSFORM
    return detect_transform_mode(request.user_instruction)


async def execute_transform(request: TransformRequest, model: ModelCaller) -> TransformResult:
    """Run the retry state machine for one transform request.

    Args:
        request: Action, source snapshot and the user's instruction.
        model: Async callable taking (system_prompt, user_message).

    Returns:
        A `TransformResult`. Validated output gives `success=True`; output that
        failed validation on its last chance gives `success=False` with
        content and `requires_confirmation=True`; exhausted retries give the
        rule-based fallback with `success=True` and `used_fallback=True`.
    """
    transform_mode = _transform_mode_of(request)
    if not request.source_content.strip():
        return TransformResult(
            success=False, error=EmptySourceError().message, transform_mode=transform_mode
        )

    try:
        locked_context = extract_locked_context(
            request.source_content, request.source_message_id
        )
        contract = extract_output_contract(request.user_instruction, request.source_content)
        base_system_prompt = (
            request.template_system_prompt or DEFAULT_TRANSFORM_SYSTEM_PROMPT
        ) + build_contract_instruction(contract)

        last_validation: TopicLockValidation | None = None
        last_contract: ContractValidation | None = None
        attempts = 0
        state = INITIAL_STATE

        while state is not RetryState.FALLBACK:
            attempts += 1
            mode = STATE_LOCK_MODES[state]
            system_prompt = inject_constraints(base_system_prompt, locked_context, mode)
            instruction = build_transform_instruction(
                request.action, request.user_instruction, mode
            )
            if last_contract is not None and not last_contract.passed:
                instruction += build_enforcement_instruction(last_contract)
            user_message = instruction + build_source_reference(request.source_content)

            try:
                output = await model(system_prompt, user_message)
            except ModelCallError as exc:
                logger.warning(
                    "Model call failed on attempt %d (%s): %s", attempts, state.value, exc
                )
                state = TRANSITIONS[state]
                continue

            if is_refusal(output):
                logger.info("Refusal detected on attempt %d (%s)", attempts, state.value)
                state = TRANSITIONS[state]
                continue

            if not has_meaningful_content(output, request.source_content):
                logger.info(
                    "No meaningful content on attempt %d (%s)", attempts, state.value
                )
                state = TRANSITIONS[state]
                continue

            validation = validate_for_action(
                request.action, output, locked_context, request.source_content
            )
            contract_validation = (
                validate_output_contract(output, contract) if contract.is_strict else None
            )
            last_validation, last_contract = validation, contract_validation
            contract_passed = contract_validation is None or contract_validation.passed

            if validation.overall_passed and contract_passed:
                return TransformResult(
                    success=True,
                    content=output,
                    validation=validation,
                    contract_validation=contract_validation,
                    retry_used=attempts > 1,
                    attempts=attempts,
                    transform_mode=transform_mode,
                )

            recoverable = (
                is_recoverable(validation)
                if not validation.overall_passed
                else bool(contract_validation and contract_validation.can_retry)
            )
            if recoverable and not _is_last_model_state(state):
                logger.info(
                    "Validation failed on attempt %d (%s), escalating", attempts, state.value
                )
                state = TRANSITIONS[state]
                continue

            logger.info("Validation failed on attempt %d (%s), needs review", attempts, state.value)
            return TransformResult(
                success=False,
                content=output,
                validation=validation,
                contract_validation=contract_validation,
                retry_used=attempts > 1,
                requires_confirmation=True,
                error=VALIDATION_FAILED_ERROR,
                attempts=attempts,
                transform_mode=transform_mode,
            )

        logger.info("All %d attempts failed, using fallback transform", attempts)
        try:
            content = apply_fallback_transform(request.action, request.source_content)
        except FallbackUnavailableError as exc:
            logger.warning("No fallback for %s: %s", request.action.value, exc.message)
            return TransformResult(
                success=False,
                validation=last_validation,
                retry_used=True,
                error=exc.message,
                attempts=attempts,
                transform_mode=transform_mode,
            )

        return TransformResult(
            success=True,
            content=content,
            validation=last_validation,
            contract_validation=last_contract,
            retry_used=True,
            attempts=attempts,
            used_fallback=True,
            transform_mode=transform_mode,
        )
    except Exception as exc:
        logger.exception("Transform failed for action %s", request.action.value)
        return TransformResult(success=False, error=str(exc), transform_mode=transform_mode)


async def execute_simple(request: TransformRequest, model: ModelCaller) -> TransformResult:
    """Single model call without validation, for non-transform actions."""
    if request.source_content and not request.source_content.strip():
        return TransformResult(success=False, error="Source content is empty.")

    system_prompt = request.template_system_prompt or DEFAULT_SIMPLE_SYSTEM_PROMPT
    instruction = build_transform_instruction(request.action, request.user_instruction)
    user_message = (
        instruction + build_source_reference(request.source_content)
        if request.source_content
        else instruction
    )

    try:
        output = await model(system_prompt, user_message)
    except ModelCallError as exc:
        logger.warning("Simple execution failed: %s", exc)
        return TransformResult(success=False, error=exc.message, attempts=1)

    if is_refusal(output):
        return TransformResult(success=False, error=REFUSAL_ERROR, attempts=1)
    return TransformResult(success=True, content=output, attempts=1)


VALIDATED_ACTIONS: frozenset[ActionType] = frozenset(
    {
        ActionType.REWRITE,
        ActionType.OPTIMIZE,
        ActionType.SHORTEN,
        ActionType.EXPAND,
        ActionType.CHANGE_TONE,
        ActionType.TRANSLATE,
        ActionType.FORMAT_CONVERT,
    }
)


def should_validate(action: ActionType) -> bool:
    return action in VALIDATED_ACTIONS


def get_locked_context(source_content: str, source_message_id: str) -> LockedContext:
    return extract_locked_context(source_content, source_message_id)
