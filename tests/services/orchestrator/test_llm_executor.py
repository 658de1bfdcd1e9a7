"""Unit tests for request normalization and the LLM executor."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from core.security import content_hash
from schemas.execution import (
    AnswerContext,
    ExecutionContext,
    ExecutionDebugInfo,
    ExecutionResult,
    LLMRequest,
    LLMRequestMeta,
    LLMResponse,
    NormalizeErr,
    NormalizeOk,
    ReasonCode,
    RequestMessage,
)
from services.orchestrator.exceptions import ModelCallError
from services.orchestrator.execution_gate import ExecutionGate
from services.orchestrator.llm_executor import (
    DEFAULT_SYSTEM_MESSAGE,
    EMPTY_USER_PROMPT_ERROR,
    ExecutorModelCaller,
    LLMExecutor,
    build_llm_request,
    build_transform_request,
    is_rewrite_request,
    normalize_request,
)


ENDPOINT = "http://model.test/api/studio/ai"


def _ok_response(content: str = "Nội dung mới") -> MagicMock:
    mock_response = MagicMock()
    mock_response.is_success = True
    mock_response.status_code = 200
    mock_response.json.return_value = {
        "success": True,
        "data": {"content": content, "usage": {"promptTokens": 10, "totalTokens": 30}},
    }
    return mock_response


def _success_result() -> ExecutionResult:
    return ExecutionResult(
        success=True,
        response=LLMResponse(success=True, content="Nội dung mới"),
        debug_info=ExecutionDebugInfo(
            event_id="evt",
            request_time=0,
            response_time=0,
            duration=0,
            token_valid=True,
            api_called=True,
        ),
    )


@pytest.fixture
def gate(clock) -> ExecutionGate:
    return ExecutionGate(secret="test-secret", clock=clock)


@pytest.fixture
def executor(gate: ExecutionGate, clock) -> LLMExecutor:
    return LLMExecutor(gate, endpoint=ENDPOINT, timeout=5.0, clock=clock)


def _token(gate: ExecutionGate, event_id: str = "evt_1"):
    return gate.create_authorization_token(
        ExecutionContext(
            user_action_type="send",
            event_id=event_id,
            action_timestamp=gate.now(),
            has_valid_input=True,
        )
    )


class TestNormalizeRequest:
    """Canonicalization of heterogeneous request shapes."""

    def test_empty_prompt_rejected(self) -> None:
        result = normalize_request(LLMRequest(user_prompt="   "))

        assert isinstance(result, NormalizeErr)
        assert result.reason_code is ReasonCode.EMPTY_USER_PROMPT
        assert result.error == EMPTY_USER_PROMPT_ERROR

    def test_last_user_message_ignored_without_fallback(self) -> None:
        request = LLMRequest(messages=[RequestMessage(role="user", content="Xin chào")])

        result = normalize_request(request)

        assert isinstance(result, NormalizeErr)
        assert result.reason_code is ReasonCode.EMPTY_USER_PROMPT

    def test_fallback_to_last_user_message(self) -> None:
        request = LLMRequest(
            messages=[
                RequestMessage(role="user", content="Câu đầu"),
                RequestMessage(role="assistant", content="Trả lời"),
                RequestMessage(role="user", content="Câu cuối"),
            ],
            meta=LLMRequestMeta(fallback_allowed=True, ui_input_hash="zzz", ui_input_length=1),
        )

        result = normalize_request(request)

        assert isinstance(result, NormalizeOk)
        assert result.used_fallback is True
        assert result.normalized.user_prompt == "Câu cuối"
        # Binding is not checked for fallback prompts
        assert [t.content for t in result.normalized.conversation_history or []] == [
            "Câu đầu",
            "Trả lời",
        ]

    def test_binding_match(self) -> None:
        prompt = "Viết bài về cà phê"
        request = LLMRequest(
            user_prompt=prompt,
            meta=LLMRequestMeta(ui_input_hash=content_hash(prompt), ui_input_length=len(prompt)),
        )

        assert isinstance(normalize_request(request), NormalizeOk)

    def test_binding_mismatch(self) -> None:
        request = LLMRequest(
            user_prompt="Viết bài về cà phê!",
            meta=LLMRequestMeta(
                ui_input_hash=content_hash("Viết bài về cà phê"), ui_input_length=18
            ),
        )

        result = normalize_request(request)

        assert isinstance(result, NormalizeErr)
        assert result.reason_code is ReasonCode.BINDING_MISMATCH

    def test_final_prompt_binding_takes_priority(self) -> None:
        final = "Hướng dẫn: Viết bài về cà phê"
        request = LLMRequest(
            user_prompt=final,
            meta=LLMRequestMeta(
                ui_input_hash=content_hash("Viết bài về cà phê"),
                ui_input_length=18,
                ui_final_prompt_hash=content_hash(final),
                ui_final_prompt_length=len(final),
            ),
        )

        assert isinstance(normalize_request(request), NormalizeOk)

    def test_meta_accepts_camel_case(self) -> None:
        meta = LLMRequestMeta.model_validate({"uiInputHash": "abc", "uiInputLength": 3})
        assert meta.ui_input_hash == "abc"
        assert meta.ui_input_length == 3

    def test_system_message_priority(self) -> None:
        messages = [
            RequestMessage(role="system", content="Từ tin nhắn"),
            RequestMessage(role="user", content="Viết bài"),
        ]

        from_template = normalize_request(
            LLMRequest(
                messages=messages, user_prompt="Viết bài", template_system_message="Từ mẫu"
            )
        )
        from_messages = normalize_request(LLMRequest(messages=messages, user_prompt="Viết bài"))
        default = normalize_request(LLMRequest(user_prompt="Viết bài"))

        assert isinstance(from_template, NormalizeOk)
        assert from_template.normalized.system_message == "Từ mẫu"
        assert isinstance(from_messages, NormalizeOk)
        assert from_messages.normalized.system_message == "Từ tin nhắn"
        assert isinstance(default, NormalizeOk)
        assert default.normalized.system_message == DEFAULT_SYSTEM_MESSAGE

    def test_trailing_prompt_removed_from_history(self) -> None:
        request = build_llm_request("Hệ thống", "Viết bài")

        result = normalize_request(request)

        assert isinstance(result, NormalizeOk)
        assert result.normalized.conversation_history is None
        assert result.normalized.to_wire() == {
            "systemMessage": "Hệ thống",
            "userPrompt": "Viết bài",
        }

    def test_rewrite_without_context_rejected(self) -> None:
        request = LLMRequest(
            user_prompt="viết lại cho hay hơn",
            context=AnswerContext(has_active_draft=False, has_previous_messages=False),
        )

        result = normalize_request(request)

        assert isinstance(result, NormalizeErr)
        assert result.reason_code is ReasonCode.REWRITE_NO_CONTEXT
        assert result.error == "Bạn muốn viết lại bài nào? Hãy chọn bài trước."

    def test_rewrite_with_draft_allowed(self) -> None:
        request = LLMRequest(
            user_prompt="viết lại cho hay hơn",
            context=AnswerContext(has_active_draft=True, has_previous_messages=False),
        )

        assert isinstance(normalize_request(request), NormalizeOk)


class TestIsRewriteRequest:
    @pytest.mark.parametrize(
        ("prompt", "lang", "expected"),
        [
            ("viết lại cho hay hơn", "vi", True),
            ("cải thiện bài này", "vi", True),
            ("viết lại từ đầu về du lịch", "vi", False),
            ("tối ưu là gì?", "vi", False),
            ("make it longer", "en", True),
            ("rewrite from scratch", "en", False),
            ("how do I improve this?", "en", False),
        ],
    )
    def test_detection(self, prompt: str, lang: str, expected: bool) -> None:
        assert is_rewrite_request(prompt, lang) is expected


class TestExecuteLLM:
    """Token re-validation, in-flight guard and the single POST."""

    @pytest.mark.asyncio
    async def test_invalid_token_blocks_network(self, executor: LLMExecutor) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            result = await executor.execute_llm(None, build_llm_request("s", "Viết bài"))

        mock_client.assert_not_called()
        assert result.success is False
        assert result.debug_info.reason_code == "INVALID_TOKEN"
        assert result.debug_info.api_called is False
        assert result.debug_info.event_id == "unknown"

    @pytest.mark.asyncio
    async def test_expired_token(self, executor: LLMExecutor, gate: ExecutionGate, clock) -> None:
        token = _token(gate)
        clock.advance(30_001)

        result = await executor.execute_llm(token, build_llm_request("s", "Viết bài"))

        assert result.debug_info.reason_code == "INVALID_TOKEN"
        assert result.debug_info.token_valid is False

    @pytest.mark.asyncio
    async def test_successful_call(self, executor: LLMExecutor, gate: ExecutionGate) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post.return_value = _ok_response()

            result = await executor.execute_llm(
                _token(gate, "evt_ok"), build_llm_request("Hệ thống", "Viết bài")
            )

            call_args = mock_client.return_value.__aenter__.return_value.post.call_args
            assert call_args[0][0] == ENDPOINT
            assert call_args[1]["json"] == {"systemMessage": "Hệ thống", "userPrompt": "Viết bài"}
            assert call_args[1]["headers"]["X-Event-Id"] == "evt_ok"
            mock_client.assert_called_once_with(timeout=5.0)

        assert result.success is True
        assert result.response is not None
        assert result.response.content == "Nội dung mới"
        assert result.response.usage is not None
        assert result.response.usage.total_tokens == 30
        assert result.debug_info.api_called is True
        assert executor.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_normalization_error_skips_network(
        self, executor: LLMExecutor, gate: ExecutionGate
    ) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            result = await executor.execute_llm(_token(gate), LLMRequest(user_prompt=""))

        mock_client.assert_not_called()
        assert result.debug_info.reason_code == "EMPTY_USER_PROMPT"
        assert result.debug_info.token_valid is True
        assert executor.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_timeout(self, executor: LLMExecutor, gate: ExecutionGate) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post.side_effect = (
                httpx.ReadTimeout("timed out")
            )

            result = await executor.execute_llm(_token(gate), build_llm_request("s", "Viết bài"))

        assert result.success is False
        assert result.error == "Request timed out"
        assert result.debug_info.reason_code == "TIMEOUT"
        assert result.debug_info.api_called is True

    @pytest.mark.asyncio
    async def test_network_error(self, executor: LLMExecutor, gate: ExecutionGate) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post.side_effect = (
                httpx.HTTPError("Connection failed")
            )

            result = await executor.execute_llm(_token(gate), build_llm_request("s", "Viết bài"))

        assert result.debug_info.reason_code == "NETWORK_ERROR"
        assert result.error == "Connection failed"

    @pytest.mark.asyncio
    async def test_api_error_reason_passed_through(
        self, executor: LLMExecutor, gate: ExecutionGate
    ) -> None:
        mock_response = MagicMock()
        mock_response.is_success = False
        mock_response.status_code = 429
        mock_response.json.return_value = {
            "success": False,
            "error": "Rate limited",
            "reasonCode": "RATE_LIMITED",
        }

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post.return_value = mock_response

            result = await executor.execute_llm(_token(gate), build_llm_request("s", "Viết bài"))

        assert result.success is False
        assert result.error == "Rate limited"
        assert result.debug_info.reason_code == "RATE_LIMITED"

    @pytest.mark.asyncio
    async def test_unparseable_body(self, executor: LLMExecutor, gate: ExecutionGate) -> None:
        mock_response = MagicMock()
        mock_response.is_success = False
        mock_response.status_code = 502
        mock_response.json.side_effect = ValueError("Invalid JSON")

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post.return_value = mock_response

            result = await executor.execute_llm(_token(gate), build_llm_request("s", "Viết bài"))

        assert result.error == "API error: 502"
        assert result.debug_info.reason_code == "API_ERROR"

    @pytest.mark.asyncio
    async def test_concurrent_call_for_same_event_blocked(
        self, executor: LLMExecutor, gate: ExecutionGate
    ) -> None:
        token = _token(gate, "evt_busy")
        release = asyncio.Event()

        async def slow_post(*args, **kwargs):
            await release.wait()
            return _ok_response()

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post.side_effect = slow_post

            first = asyncio.create_task(
                executor.execute_llm(token, build_llm_request("s", "Viết bài"))
            )
            await asyncio.sleep(0)
            second = await executor.execute_llm(token, build_llm_request("s", "Viết bài"))
            release.set()
            first_result = await first

        assert second.success is False
        assert second.debug_info.reason_code == "ALREADY_IN_FLIGHT"
        assert second.debug_info.api_called is False
        assert first_result.success is True
        assert executor.in_flight_count == 0


class TestExecutorModelCaller:
    @pytest.mark.asyncio
    async def test_user_token_covers_first_call_only(
        self, executor: LLMExecutor, gate: ExecutionGate
    ) -> None:
        token = _token(gate, "evt_user")
        caller = ExecutorModelCaller(executor, action_type="REWRITE", token=token)
        executor.execute_llm = AsyncMock(return_value=_success_result())

        await caller("Hệ thống", "Viết lại")
        await caller("Hệ thống", "Viết lại chặt hơn")

        first_token = executor.execute_llm.await_args_list[0].args[0]
        second_token = executor.execute_llm.await_args_list[1].args[0]
        assert first_token is token
        assert second_token.event_id != "evt_user"
        assert second_token.user_action_type == "auto"
        assert caller.calls == 2

    @pytest.mark.asyncio
    async def test_failure_raises_model_call_error(
        self, executor: LLMExecutor, gate: ExecutionGate
    ) -> None:
        caller = ExecutorModelCaller(executor)

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post.side_effect = (
                httpx.ReadTimeout("timed out")
            )

            with pytest.raises(ModelCallError) as exc_info:
                await caller("Hệ thống", "Viết bài")

        assert exc_info.value.message == "Request timed out"
        assert exc_info.value.reason_code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_returns_content(self, executor: LLMExecutor) -> None:
        caller = ExecutorModelCaller(executor)

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post.return_value = (
                _ok_response("Bài viết")
            )

            assert await caller("Hệ thống", "Viết bài") == "Bài viết"

    def test_transform_request_embeds_source(self) -> None:
        request = build_transform_request("Hệ thống", "Rút gọn", "Nội dung gốc")
        assert request.user_prompt == "Rút gọn\n\n---\nNỘI DUNG GỐC:\nNội dung gốc"
        assert request.messages[0].role == "system"
