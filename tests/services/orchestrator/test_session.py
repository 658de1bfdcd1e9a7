"""Integration tests for the per-session orchestrator facade.

The model endpoint is mocked at the httpx layer so every request goes
through the real gate, executor and retry state machine.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from schemas.execution import ReasonCode
from schemas.orchestrator import ActionType, ChatMessage, MessageRole, ResolutionStatus
from services.orchestrator import ExecutionGate, LLMExecutor, OrchestratorSession
from services.orchestrator.session import NO_SOURCE_ERROR, SELECT_SOURCE_ERROR


SOURCE = (
    "Bạn có biết quán cà phê Muối vừa khai trương?\n"
    "Giảm 20% cho mọi đồ uống trong tuần đầu. Không gian rộng rãi và thoáng mát. "
    "Nhân viên thân thiện.\n"
    "Đăng ký ngay để nhận voucher."
)
OTHER_POST = "Ra mắt bộ sưu tập áo thun mùa hè, miễn phí giao hàng toàn quốc."
SHORTENED = (
    "Quán cà phê Muối vừa khai trương, giảm 20% mọi đồ uống tuần đầu, không gian rộng."
)
REFUSAL = "Xin lỗi, tôi không thể thực hiện yêu cầu này."


def _model_response(content: str) -> MagicMock:
    mock_response = MagicMock()
    mock_response.is_success = True
    mock_response.status_code = 200
    mock_response.json.return_value = {"success": True, "data": {"content": content}}
    return mock_response


def _conversation(*posts: str) -> list[ChatMessage]:
    messages = [ChatMessage(id="u0", role=MessageRole.USER, content="Viết bài quảng cáo")]
    for i, post in enumerate(posts, start=1):
        messages.append(ChatMessage(id=f"a{i}", role=MessageRole.ASSISTANT, content=post))
    return messages


@pytest.fixture
def gate(clock) -> ExecutionGate:
    return ExecutionGate(secret="test-secret", clock=clock)


@pytest.fixture
def session(gate: ExecutionGate, clock) -> OrchestratorSession:
    return OrchestratorSession(gate=gate, executor=LLMExecutor(gate, clock=clock))


class TestSessionSetup:
    def test_executor_must_share_gate(self, gate: ExecutionGate) -> None:
        other = LLMExecutor(ExecutionGate(secret="x"))
        with pytest.raises(ValueError):
            OrchestratorSession(gate=gate, executor=other)

    def test_defaults(self) -> None:
        session = OrchestratorSession()
        assert session.executor.gate is session.gate


class TestGateRejections:
    @pytest.mark.asyncio
    async def test_empty_input(self, session: OrchestratorSession) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            response = await session.handle_input("   ", _conversation(SOURCE))

        mock_client.assert_not_called()
        assert response.result.success is False
        assert response.rejection_reason is ReasonCode.NO_VALID_INPUT
        assert response.result.error == "No valid input provided"

    @pytest.mark.asyncio
    async def test_duplicate_event(self, session: OrchestratorSession) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post.return_value = (
                _model_response("Bài viết về du lịch Đà Nẵng, biển xanh cát trắng.")
            )
            first = await session.handle_input(
                "Viết bài về du lịch Đà Nẵng", [], event_id="evt_same"
            )
            second = await session.handle_input(
                "Viết bài về du lịch Đà Nẵng", [], event_id="evt_same"
            )

        assert first.result.success is True
        assert second.rejection_reason is ReasonCode.DUPLICATE_EVENT
        assert second.classification is None

    @pytest.mark.asyncio
    async def test_stale_event(self, session: OrchestratorSession, clock) -> None:
        response = await session.handle_input(
            "Viết bài", [], action_timestamp=clock() - 60_000
        )
        assert response.rejection_reason is ReasonCode.STALE_ACTION


class TestHandleInput:
    @pytest.mark.asyncio
    async def test_generation_is_a_single_call(self, session: OrchestratorSession) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            post = mock_client.return_value.__aenter__.return_value.post
            post.return_value = _model_response("Đà Nẵng mùa hè: biển xanh, cát trắng, nắng vàng.")

            response = await session.handle_input(
                "Viết bài về du lịch Đà Nẵng",
                [],
                template_system_prompt="Bạn là chuyên gia du lịch.",
            )

            assert post.await_count == 1
            payload = post.call_args[1]["json"]

        assert response.classification is not None
        assert response.classification.type is ActionType.CREATE_CONTENT
        assert response.resolution is None
        assert response.result.success is True
        assert payload["userPrompt"] == "Viết bài về du lịch Đà Nẵng"
        assert payload["systemMessage"] == "Bạn là chuyên gia du lịch."

    @pytest.mark.asyncio
    async def test_transform_with_explicit_source(self, session: OrchestratorSession) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            post = mock_client.return_value.__aenter__.return_value.post
            post.return_value = _model_response(SHORTENED)

            response = await session.handle_input(
                "rút gọn", _conversation(SOURCE, OTHER_POST), explicit_source_id="a1"
            )

            assert post.await_count == 1
            assert "SOURCE CONTENT TO TRANSFORM" in post.call_args[1]["json"]["userPrompt"]

        assert response.result.success is True
        assert response.result.content == SHORTENED
        assert response.resolution is not None
        assert response.resolution.status is ResolutionStatus.EXPLICIT
        assert session.state.get_active_source_id() == "a1"
        locked = session.state.get_locked_context()
        assert locked is not None
        assert locked.source_message_id == "a1"
        assert [o.message_id for o in session.state.get_last_outputs()] == ["a2", "a1"]

    @pytest.mark.asyncio
    async def test_ambiguous_source_asks_user(self, session: OrchestratorSession) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            response = await session.handle_input("rút gọn", _conversation(SOURCE, OTHER_POST))

        mock_client.assert_not_called()
        assert response.result.success is False
        assert response.result.error == SELECT_SOURCE_ERROR
        assert response.resolution is not None
        assert response.resolution.status is ResolutionStatus.AMBIGUOUS
        assert session.state.get_active_source_id() is None

    @pytest.mark.asyncio
    async def test_no_source(self, session: OrchestratorSession) -> None:
        response = await session.handle_input("rút gọn", _conversation())

        assert response.result.success is False
        assert response.result.error == NO_SOURCE_ERROR

    @pytest.mark.asyncio
    async def test_select_source_does_not_call_model(self, session: OrchestratorSession) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            response = await session.handle_input(
                "chọn bài này", _conversation(SOURCE, OTHER_POST), explicit_source_id="a2"
            )

        mock_client.assert_not_called()
        assert response.classification is not None
        assert response.classification.type is ActionType.SELECT_SOURCE
        assert response.result.success is True
        assert response.result.content == OTHER_POST
        assert session.state.get_active_source_id() == "a2"

    @pytest.mark.asyncio
    async def test_refusals_fall_back_with_fresh_gate_events(
        self, session: OrchestratorSession, gate: ExecutionGate
    ) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            post = mock_client.return_value.__aenter__.return_value.post
            post.return_value = _model_response(REFUSAL)

            response = await session.handle_input(
                "rút gọn bài này", _conversation(SOURCE)
            )

            assert post.await_count == 3
            event_ids = {c[1]["headers"]["X-Event-Id"] for c in post.call_args_list}

        assert len(event_ids) == 3
        assert gate.processed_count == 3
        assert response.result.success is True
        assert response.result.used_fallback is True
        assert response.result.content
        assert response.result.content != SOURCE
        assert session.state.get_active_source_id() == "a1"

    @pytest.mark.asyncio
    async def test_reset(self, session: OrchestratorSession) -> None:
        with patch("httpx.AsyncClient"):
            await session.handle_input("chọn bài này", _conversation(SOURCE), explicit_source_id="a1")

        session.reset()

        assert session.gate.processed_count == 0
        assert session.state.get_active_source_id() is None


class TestRerouteToGeneration:
    """Requests that name new content skip the transform path."""

    def test_session_configures_logging(self, gate: ExecutionGate) -> None:
        with patch("services.orchestrator.session.setup_logging") as mock_setup:
            OrchestratorSession(gate=gate)

        mock_setup.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_explicit_new_create_skips_source(
        self, session: OrchestratorSession
    ) -> None:
        text = "rút gọn, nội dung mới về trà sữa"
        with patch("httpx.AsyncClient") as mock_client:
            post = mock_client.return_value.__aenter__.return_value.post
            post.return_value = _model_response("Trà sữa trân châu đường đen, mua 1 tặng 1.")

            response = await session.handle_input(text, _conversation(SOURCE, OTHER_POST))

            assert post.await_count == 1
            payload = post.call_args[1]["json"]

        assert response.classification is not None
        assert response.classification.type is ActionType.CREATE_CONTENT
        assert response.classification.requires_source is False
        assert response.resolution is None
        assert response.result.success is True
        assert payload["userPrompt"] == text
        assert session.state.get_active_source_id() is None

    @pytest.mark.asyncio
    async def test_topic_drift_generates_fresh(self, session: OrchestratorSession) -> None:
        text = "rút gọn bài về dự án Sunrise"
        with patch("httpx.AsyncClient") as mock_client:
            post = mock_client.return_value.__aenter__.return_value.post
            post.return_value = _model_response("Dự án Sunrise: căn hộ view sông, bàn giao 2025.")

            response = await session.handle_input(text, _conversation(SOURCE))

            assert post.await_count == 1
            payload = post.call_args[1]["json"]

        assert response.classification is not None
        assert response.classification.type is ActionType.CREATE_CONTENT
        assert response.result.success is True
        assert payload["userPrompt"] == text
        assert "SOURCE CONTENT TO TRANSFORM" not in payload["userPrompt"]
        assert session.state.get_active_source_id() is None

    @pytest.mark.asyncio
    async def test_explicit_source_is_not_checked_for_drift(
        self, session: OrchestratorSession
    ) -> None:
        with patch("httpx.AsyncClient") as mock_client:
            post = mock_client.return_value.__aenter__.return_value.post
            post.return_value = _model_response(SHORTENED)

            response = await session.handle_input(
                "rút gọn bài về dự án Sunrise", _conversation(SOURCE), explicit_source_id="a1"
            )

            first_prompt = post.call_args_list[0][1]["json"]["userPrompt"]

        assert response.classification is not None
        assert response.classification.type is ActionType.SHORTEN
        assert "SOURCE CONTENT TO TRANSFORM" in first_prompt
