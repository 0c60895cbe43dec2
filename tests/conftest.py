"""tests/conftest.py

Pytest configuration and shared fixtures for the platform_copilot test suite.
"""

from __future__ import annotations

# Standard Library
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any
from unittest.mock import AsyncMock

# Third-Party Libraries
import pytest

# Local Modules
from platform_copilot.models import (
    CollapsePolicy,
    OperationRequest,
    ProviderReply,
    ProviderRequest,
)
from platform_copilot.providers.base import ProviderAdapter, ToolDeclaration
from platform_copilot.registry import Operation, OperationRegistry
from platform_copilot.settings import CopilotSettings

ECHO_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {"text": {"type": "string"}},
    "required": ["text"],
}


@dataclass
class ProviderCall:
    request: ProviderRequest
    operations: list[str]
    turn_id: str


class ScriptedAdapter(ProviderAdapter):
    """Provider adapter that replays a fixed script instead of calling a model.

    Each script step is one of:
      - a ``ProviderReply`` returned as-is
      - an exception instance, raised
      - a list of ``(operation_name, arguments)`` tuples, turned into tool
        calls whose ids derive from the turn id like a real adapter's
    """

    name = "scripted"
    collapse_policy = CollapsePolicy.KEEP_FIRST
    supports_system_instruction = True

    def __init__(self, script: Sequence[Any]) -> None:
        super().__init__("scripted-model")
        self.script = list(script)
        self.calls: list[ProviderCall] = []

    def to_provider_tools(self, operations: Sequence[ToolDeclaration]) -> list[dict[str, Any]]:
        return [{"name": op.name} for op in operations]

    def render(self, request: ProviderRequest, tools: list[dict[str, Any]] | None) -> dict[str, Any]:
        return {}

    async def send(self, payload: dict[str, Any]) -> Any:
        return {}

    def parse_tool_calls(self, response: Any, turn_id: str) -> list[OperationRequest]:
        return []

    def extract_text(self, response: Any) -> str:
        return ""

    async def generate(
        self,
        request: ProviderRequest,
        operations: Sequence[ToolDeclaration] | None = None,
        *,
        turn_id: str,
    ) -> ProviderReply:
        self.calls.append(
            ProviderCall(
                request=request,
                operations=[op.name for op in operations or []],
                turn_id=turn_id,
            )
        )
        if not self.script:
            raise AssertionError("Unexpected provider call")
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, list):
            return ProviderReply(
                requests=[
                    OperationRequest(
                        id=f"{turn_id}-call-{index}",
                        operation_name=name,
                        arguments=arguments,
                        originating_turn_id=turn_id,
                    )
                    for index, (name, arguments) in enumerate(step)
                ]
            )
        return step


@pytest.fixture
def settings() -> CopilotSettings:
    """Create settings isolated from the environment and any .env file.

    Returns:
        CopilotSettings with no provider credentials.
    """
    return CopilotSettings(
        _env_file=None,
        llm_provider="",
        gemini_api_key="",
        openai_api_key="",
        ollama_host="",
        max_tool_rounds=1,
    )


@pytest.fixture
def echo_operation() -> Operation:
    """Create an operation that echoes its ``text`` argument."""

    async def echo(args: dict[str, Any]) -> dict[str, Any]:
        return {"echoed": args["text"]}

    return Operation(
        name="echo",
        description="Echo the given text back.",
        handler=echo,
        parameters=ECHO_PARAMETERS,
    )


@pytest.fixture
def wipe_handler() -> AsyncMock:
    """Create the mock handler behind the approval-gated ``wipe`` operation."""
    return AsyncMock(return_value={"wiped": True})


@pytest.fixture
def wipe_operation(wipe_handler: AsyncMock) -> Operation:
    """Create an operation that requires approval before running."""
    return Operation(
        name="wipe",
        description="Wipe everything. Requires approval.",
        handler=wipe_handler,
        requires_approval=True,
        describe=lambda args: "Wipe the staging area",
    )


@pytest.fixture
def registry(echo_operation: Operation, wipe_operation: Operation) -> OperationRegistry:
    """Create a registry holding ``echo`` and ``wipe``."""
    return OperationRegistry([echo_operation, wipe_operation])


@pytest.fixture
def make_adapter() -> Callable[..., ScriptedAdapter]:
    """Factory for scripted provider adapters.

    Returns:
        Callable taking script steps and returning a ScriptedAdapter.
    """

    def _make(*steps: Any) -> ScriptedAdapter:
        return ScriptedAdapter(steps)

    return _make


@pytest.fixture
def sample_messages() -> list[dict[str, str]]:
    """Create sample message history for testing.

    Returns:
        List of sample message dictionaries.
    """
    return [
        {"role": "user", "content": "Any failed batches today?"},
        {"role": "assistant", "content": "Two batches failed this morning."},
        {"role": "user", "content": "Which datasets were they for?"},
        {"role": "assistant", "content": "Both belong to the web events dataset."},
    ]


@pytest.fixture
def system_message() -> str:
    """Create a sample system message.

    Returns:
        System prompt string.
    """
    return "You are a helpful platform assistant for testing purposes."
