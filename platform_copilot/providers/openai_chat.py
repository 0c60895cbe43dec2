"""platform_copilot/providers/openai_chat.py

OpenAI Chat Completions adapter (also serves any OpenAI-compatible endpoint,
e.g. Azure OpenAI or a local gateway, via ``base_url``).

Wire rules:
  - system instruction is the first ``system`` message
  - multiple simultaneous tool calls per model turn
  - tool arguments arrive as JSON strings
  - every tool call id in an assistant turn must be answered by a
    ``role="tool"`` message, including calls the operator cancelled
"""

from __future__ import annotations

# Standard Library
import json
import logging
from collections.abc import Sequence
from typing import Any

# Third-Party Libraries
import openai
from openai import AsyncOpenAI

# Local Modules
from platform_copilot.errors import ProviderError
from platform_copilot.models import (
    CollapsePolicy,
    OperationRequest,
    ProviderRequest,
)
from platform_copilot.providers.base import (
    ProviderAdapter,
    ToolDeclaration,
    as_mapping,
    content_text,
    parse_arguments,
    serialize_payload,
    synthesize_call_id,
)

logger = logging.getLogger(__name__)


class OpenAIChatAdapter(ProviderAdapter):
    """Adapter for the Chat Completions function-calling format."""

    name = "openai"
    collapse_policy = CollapsePolicy.KEEP_LAST
    supports_system_instruction = True

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
        result_char_limit: int = 3000,
    ) -> None:
        super().__init__(model, result_char_limit=result_char_limit)
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url or None)

    def to_provider_tools(self, operations: Sequence[ToolDeclaration]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": op.name,
                    "description": op.description,
                    "parameters": op.parameters,
                },
            }
            for op in operations
        ]

    def render(
        self, request: ProviderRequest, tools: list[dict[str, Any]] | None
    ) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        for turn in request.turns:
            messages.append({"role": turn.role.value, "content": turn.content})

        for exchange in request.exchanges:
            messages.append(
                {
                    "role": "assistant",
                    "content": exchange.assistant_text or None,
                    "tool_calls": [
                        {
                            "id": req.provider_call_id or req.id,
                            "type": "function",
                            "function": {
                                "name": req.operation_name,
                                "arguments": json.dumps(req.arguments, default=str),
                            },
                        }
                        for req in exchange.requests
                    ],
                }
            )
            outcomes = {o.request_id: o for o in exchange.outcomes}
            for req in exchange.requests:
                outcome = outcomes.get(req.id)
                content = (
                    serialize_payload(outcome, self.result_char_limit)
                    if outcome is not None
                    else json.dumps({"status": "SKIPPED"})
                )
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": req.provider_call_id or req.id,
                        "content": content,
                    }
                )

        payload: dict[str, Any] = {"model": self.model, "messages": messages}
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            payload["max_tokens"] = request.max_output_tokens
        if tools:
            payload["tools"] = tools
        return payload

    async def send(self, payload: dict[str, Any]) -> Any:
        try:
            return await self._client.chat.completions.create(**payload)
        except openai.OpenAIError as exc:
            logger.error("[provider:openai] request failed: %s", exc, exc_info=True)
            raise ProviderError(f"OpenAI request failed: {exc}") from exc

    @staticmethod
    def _message(response: Any) -> dict[str, Any]:
        choices = as_mapping(response).get("choices") or []
        if not choices:
            return {}
        return choices[0].get("message") or {}

    def parse_tool_calls(self, response: Any, turn_id: str) -> list[OperationRequest]:
        requests: list[OperationRequest] = []
        for index, call in enumerate(self._message(response).get("tool_calls") or []):
            function = call.get("function") or {}
            raw_id = call.get("id") or ""
            requests.append(
                OperationRequest(
                    # gateways may reuse ids across turns; scope them to this one
                    id=f"{turn_id}:{raw_id}" if raw_id else synthesize_call_id(turn_id, index),
                    provider_call_id=raw_id,
                    operation_name=function.get("name") or "",
                    arguments=parse_arguments(function.get("arguments")),
                    originating_turn_id=turn_id,
                )
            )
        return requests

    def extract_text(self, response: Any) -> str:
        return content_text(self._message(response).get("content")).strip()

    async def aclose(self) -> None:
        await self._client.close()
