"""tests/test_providers_ollama.py

Unit tests for OllamaChatAdapter.  The ollama client is mocked.
"""

from __future__ import annotations

# Standard Library
from unittest.mock import AsyncMock, MagicMock

# Third-Party Libraries
import ollama
import pytest

# Local Modules
from platform_copilot.errors import ProviderError
from platform_copilot.models import (
    OperationOutcome,
    OperationRequest,
    OutcomeStatus,
    ProviderRequest,
    ProviderTurn,
    Role,
    ToolExchange,
)
from platform_copilot.providers.ollama_chat import OllamaChatAdapter
from platform_copilot.registry import Operation


def _adapter(response: object = None, side_effect: BaseException | None = None) -> OllamaChatAdapter:
    client = MagicMock()
    client.chat = AsyncMock(return_value=response, side_effect=side_effect)
    return OllamaChatAdapter("llama3.1", client=client)


class TestOllamaChatAdapter:
    """Test suite for OllamaChatAdapter."""

    @pytest.mark.asyncio
    async def test_calls_get_synthesized_ids(self, echo_operation: Operation) -> None:
        """Test that id-less calls get turn-derived ids and mapping arguments."""
        adapter = _adapter(
            {
                "message": {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [
                        {"function": {"name": "echo", "arguments": {"text": "a"}}},
                        {"function": {"name": "echo", "arguments": {"text": "b"}}},
                    ],
                }
            }
        )

        reply = await adapter.generate(ProviderRequest(), [echo_operation], turn_id="t9")

        assert [r.id for r in reply.requests] == ["t9-call-0", "t9-call-1"]
        assert [r.arguments["text"] for r in reply.requests] == ["a", "b"]
        sent = adapter._client.chat.await_args.kwargs
        assert sent["stream"] is False
        assert sent["tools"][0]["function"]["name"] == "echo"

    def test_render_options_and_tool_messages(self) -> None:
        """Test generation options and tool-result messages."""
        request = ProviderRequest(
            turns=[ProviderTurn(role=Role.USER, content="echo")],
            exchanges=[
                ToolExchange(
                    requests=[OperationRequest(id="c1", operation_name="echo", arguments={"text": "x"})],
                    outcomes=[
                        OperationOutcome(
                            request_id="c1",
                            operation_name="echo",
                            status=OutcomeStatus.COMPLETED,
                            result={"echoed": "x"},
                        )
                    ],
                )
            ],
            temperature=0.1,
            max_output_tokens=64,
        )

        payload = _adapter().render(request, None)

        assert payload["options"] == {"temperature": 0.1, "num_predict": 64}
        assert payload["messages"][-1]["role"] == "tool"
        assert payload["messages"][-1]["tool_name"] == "echo"
        assert payload["messages"][-2]["tool_calls"][0]["function"]["arguments"] == {"text": "x"}

    def test_tool_messages_keep_tool_name_through_client_types(self) -> None:
        """Test that the installed client's Message type carries tool_name."""
        request = ProviderRequest(
            exchanges=[
                ToolExchange(
                    requests=[OperationRequest(id="c1", operation_name="echo", arguments={"text": "x"})],
                    outcomes=[
                        OperationOutcome(
                            request_id="c1",
                            operation_name="echo",
                            status=OutcomeStatus.COMPLETED,
                            result={"echoed": "x"},
                        )
                    ],
                )
            ]
        )

        messages = [ollama.Message.model_validate(m) for m in _adapter().render(request, None)["messages"]]

        assert messages[-1].role == "tool"
        assert messages[-1].tool_name == "echo"
        assert messages[0].tool_calls[0].function.name == "echo"

    @pytest.mark.asyncio
    async def test_response_error_becomes_provider_error(self) -> None:
        """Test that an Ollama error is wrapped in ProviderError."""
        adapter = _adapter(side_effect=ollama.ResponseError("model not found"))

        with pytest.raises(ProviderError, match="Ollama request failed"):
            await adapter.generate(ProviderRequest(), None, turn_id="t1")

    @pytest.mark.asyncio
    async def test_plain_text(self) -> None:
        """Test a reply without tool calls."""
        adapter = _adapter({"message": {"role": "assistant", "content": "All good."}})

        reply = await adapter.generate(ProviderRequest(), None, turn_id="t1")

        assert reply.text == "All good."
        assert reply.requests == []
