"""platform_copilot/providers/ollama_chat.py

Ollama adapter for locally hosted models.

Tool declarations use the OpenAI function schema; tool-call arguments arrive
as mappings rather than JSON strings, and calls carry no ids, so ids are
synthesised from the turn id and call position.
"""

from __future__ import annotations

# Standard Library
import logging
from collections.abc import Sequence
from typing import Any

# Third-Party Libraries
import httpx
from ollama import AsyncClient, ResponseError

# Local Modules
from platform_copilot.errors import ProviderError
from platform_copilot.models import CollapsePolicy, OperationRequest, ProviderRequest
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


class OllamaChatAdapter(ProviderAdapter):
    """Adapter for ``ollama.AsyncClient.chat``."""

    name = "ollama"
    collapse_policy = CollapsePolicy.KEEP_LAST
    supports_system_instruction = True

    def __init__(
        self,
        model: str,
        *,
        host: str | None = None,
        client: AsyncClient | None = None,
        result_char_limit: int = 3000,
    ) -> None:
        super().__init__(model, result_char_limit=result_char_limit)
        self.host = host
        self._client = client or AsyncClient(host=host)

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
                    "content": exchange.assistant_text,
                    "tool_calls": [
                        {"function": {"name": req.operation_name, "arguments": req.arguments}}
                        for req in exchange.requests
                    ],
                }
            )
            outcomes = {o.request_id: o for o in exchange.outcomes}
            for req in exchange.requests:
                outcome = outcomes.get(req.id)
                if outcome is None:
                    continue
                messages.append(
                    {
                        "role": "tool",
                        "tool_name": req.operation_name,
                        "content": serialize_payload(outcome, self.result_char_limit),
                    }
                )

        options: dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            options["num_predict"] = request.max_output_tokens

        payload: dict[str, Any] = {"model": self.model, "messages": messages, "stream": False}
        if options:
            payload["options"] = options
        if tools:
            payload["tools"] = tools
        return payload

    async def send(self, payload: dict[str, Any]) -> Any:
        try:
            return await self._client.chat(**payload)
        except (ResponseError, httpx.HTTPError, ConnectionError) as exc:
            logger.error("[provider:ollama] request failed: %s", exc, exc_info=True)
            raise ProviderError(f"Ollama request failed: {exc}") from exc

    def parse_tool_calls(self, response: Any, turn_id: str) -> list[OperationRequest]:
        message = as_mapping(response).get("message") or {}
        requests: list[OperationRequest] = []
        for index, call in enumerate(message.get("tool_calls") or []):
            function = call.get("function") or {}
            requests.append(
                OperationRequest(
                    id=synthesize_call_id(turn_id, index),
                    operation_name=function.get("name") or "",
                    arguments=parse_arguments(function.get("arguments")),
                    originating_turn_id=turn_id,
                )
            )
        return requests

    def extract_text(self, response: Any) -> str:
        message = as_mapping(response).get("message") or {}
        return content_text(message.get("content")).strip()
