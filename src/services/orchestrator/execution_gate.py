"""The single authority on whether a model call may proceed.

The gate is content-agnostic: it checks who triggered the action, how old the
event is, whether its id was already seen and whether there is any input. A
passing event gets a short-lived `AuthorizationToken` that the executor
re-validates before touching the network.

One gate instance is owned per client session and passed by reference to
every call site; the dedup set lives on the instance.
"""

from __future__ import annotations

import random
import string
import time
from collections.abc import Callable

from core.config import get_settings
from core.error_handler import StructuredLogger
from core.security import sign_payload
from schemas.execution import (
    AuthorizationToken,
    ExecutionContext,
    GateDebugInfo,
    GateDecision,
    ReasonCode,
    UserActionType,
)


logger = StructuredLogger(__name__)

EVENT_ID_SUFFIX_LENGTH = 9
_EVENT_ID_ALPHABET = string.digits + string.ascii_lowercase


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_event_id(clock: Callable[[], int] = now_ms) -> str:
    """Return ``evt_<epoch ms>_<9 base36 chars>``."""
    suffix = "".join(random.choices(_EVENT_ID_ALPHABET, k=EVENT_ID_SUFFIX_LENGTH))
    return f"evt_{clock()}_{suffix}"


class ExecutionGate:
    """Dedup and authorization state for one client session."""

    def __init__(
        self,
        *,
        secret: str | None = None,
        max_action_age_ms: int | None = None,
        token_validity_ms: int | None = None,
        max_processed_cache_size: int | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        settings = get_settings()
        self._secret = secret if secret is not None else settings.GATE_SECRET
        self.max_action_age_ms = (
            max_action_age_ms
            if max_action_age_ms is not None
            else settings.GATE_MAX_ACTION_AGE_MS
        )
        self.token_validity_ms = (
            token_validity_ms
            if token_validity_ms is not None
            else settings.GATE_TOKEN_VALIDITY_MS
        )
        self.max_processed_cache_size = (
            max_processed_cache_size
            if max_processed_cache_size is not None
            else settings.GATE_MAX_PROCESSED_CACHE_SIZE
        )
        self._clock = clock
        # dict preserves insertion order, so eviction drops the oldest ids
        self._processed: dict[str, None] = {}

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    def reset(self) -> None:
        self._processed.clear()

    def _sign(self, event_id: str, issued_at: int, user_action_type: UserActionType) -> str:
        return sign_payload(f"{event_id}:{issued_at}:{user_action_type}", self._secret)

    def _evict(self) -> None:
        if len(self._processed) <= self.max_processed_cache_size:
            return
        keep = self.max_processed_cache_size // 2
        for event_id in list(self._processed)[: len(self._processed) - keep]:
            del self._processed[event_id]

    def _reject(
        self, event_id: str, now: int, reason: ReasonCode, message: str, **log_data: object
    ) -> GateDecision:
        logger.warning(
            f"Gate rejected event: {reason.value}", event_id=event_id, **log_data
        )
        return GateDecision(
            authorized=False,
            rejection_reason=reason,
            rejection_message=message,
            debug_info=GateDebugInfo(
                event_id=event_id, timestamp=now, decision="REJECTED", reason=reason.value
            ),
        )

    def can_execute(self, context: ExecutionContext) -> GateDecision:
        """Decide whether `context` may trigger a model call.

        Checks run in a fixed order: unknown trigger, staleness, duplicate
        event id, missing input. A passing event id is recorded so any
        later decision for it is a duplicate.

        Args:
            context: What the UI knew when the user acted.

        Returns:
            A `GateDecision`; `token` is set only when authorized.
        """
        now = self._clock()
        event_id = context.event_id

        if context.user_action_type == "unknown":
            return self._reject(
                event_id,
                now,
                ReasonCode.UNKNOWN_ACTION_TYPE,
                "Unknown user action type - cannot verify user intent",
            )

        action_age = now - context.action_timestamp
        if action_age > self.max_action_age_ms:
            return self._reject(
                event_id,
                now,
                ReasonCode.STALE_ACTION,
                f"Action is stale ({action_age}ms old, max {self.max_action_age_ms}ms)",
                action_age=action_age,
            )

        if event_id in self._processed:
            return self._reject(
                event_id, now, ReasonCode.DUPLICATE_EVENT, "Event has already been processed"
            )

        if not context.has_valid_input:
            return self._reject(
                event_id, now, ReasonCode.NO_VALID_INPUT, "No valid input provided"
            )

        self._processed[event_id] = None
        self._evict()

        token = AuthorizationToken(
            event_id=event_id,
            issued_at=now,
            expires_at=now + self.token_validity_ms,
            user_action_type=context.user_action_type,
            signature=self._sign(event_id, now, context.user_action_type),
        )
        logger.info(
            "Gate authorized event",
            event_id=event_id,
            user_action_type=context.user_action_type,
            action_type=context.action_type,
        )
        return GateDecision(
            authorized=True,
            token=token,
            debug_info=GateDebugInfo(
                event_id=event_id,
                timestamp=now,
                decision="AUTHORIZED",
                reason="ALL_INVARIANTS_PASSED",
            ),
        )

    def validate_token(self, token: AuthorizationToken | None) -> bool:
        """Check type, expiry and signature; independent of the dedup set."""
        if token is None:
            logger.error("Token validation failed: no token provided")
            return False
        if token.type != "GATE_PASS":
            logger.error("Token validation failed: invalid token type", event_id=token.event_id)
            return False
        now = self._clock()
        if now > token.expires_at:
            logger.error(
                "Token validation failed: token expired",
                event_id=token.event_id,
                expired_at=token.expires_at,
                now=now,
            )
            return False
        if token.signature != self._sign(token.event_id, token.issued_at, token.user_action_type):
            logger.error("Token validation failed: invalid signature", event_id=token.event_id)
            return False
        return True

    def create_authorization_token(
        self, context: ExecutionContext
    ) -> AuthorizationToken | None:
        """Run `can_execute` and return only the token, or None when rejected."""
        decision = self.can_execute(context)
        if not decision.authorized or decision.token is None:
            logger.error(
                "Authorization failed",
                event_id=context.event_id,
                reason=decision.rejection_message,
            )
            return None
        return decision.token

    def now(self) -> int:
        return self._clock()

    def generate_event_id(self) -> str:
        return generate_event_id(self._clock)
