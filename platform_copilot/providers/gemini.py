"""platform_copilot/providers/gemini.py

Google Gemini adapter using the REST ``generateContent`` endpoint over httpx.

Gemini is the strictest provider we talk to:
  - roles are ``user`` and ``model``; the first turn must be ``user`` and
    turns must strictly alternate
  - the system instruction travels in a separate ``systemInstruction`` field
    (not supported by Gemma-family models, which get it folded into the
    first user turn by the Conversation Builder)
  - function declarations accept only an OpenAPI subset of JSON Schema, so
    parameter schemas are approximated conservatively
  - function calls carry no ids
"""

from __future__ import annotations

# Standard Library
import logging
from collections.abc import Sequence
from typing import Any

# Third-Party Libraries
import httpx

# Local Modules
from platform_copilot.errors import ProviderError
from platform_copilot.models import (
    CollapsePolicy,
    OperationRequest,
    OutcomeStatus,
    ProviderRequest,
    Role,
)
from platform_copilot.providers.base import (
    ProviderAdapter,
    ToolDeclaration,
    as_mapping,
    fold_payload,
    parse_arguments,
    synthesize_call_id,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL: str = "https://generativelanguage.googleapis.com"

_ROLE_MAP: dict[Role, str] = {Role.USER: "user", Role.ASSISTANT: "model"}

# Keywords Gemini's schema subset understands; anything else is dropped.
_SUPPORTED_KEYS: frozenset[str] = frozenset(
    {
        "type",
        "format",
        "description",
        "nullable",
        "enum",
        "properties",
        "required",
        "items",
        "minItems",
        "maxItems",
        "minimum",
        "maximum",
    }
)

_SUPPORTED_FORMATS: dict[str, frozenset[str]] = {
    "string": frozenset({"enum", "date-time"}),
    "number": frozenset({"float", "double"}),
    "integer": frozenset({"int32", "int64"}),
}


def _append_description(schema: dict[str, Any], note: str) -> None:
    existing = schema.get("description", "")
    schema["description"] = f"{existing} ({note})".strip() if existing else note


def to_gemini_schema(schema: Any) -> dict[str, Any]:
    """Approximate a JSON Schema fragment with Gemini's supported subset.

    Constructs Gemini cannot express are loosened rather than silently lost:
    ``oneOf``/``anyOf`` collapse to the first non-null alternative, type
    unions collapse to their first non-null member with ``nullable``, and
    enumerations on non-string types are dropped from the schema but listed
    in the field description.
    """
    if not isinstance(schema, dict):
        return {"type": "string"}

    source = dict(schema)
    nullable = False

    for combinator in ("oneOf", "anyOf"):
        alternatives = source.pop(combinator, None)
        if not isinstance(alternatives, list):
            continue
        concrete = [a for a in alternatives if isinstance(a, dict) and a.get("type") != "null"]
        nullable = nullable or len(concrete) < len(alternatives)
        if concrete:
            source = {**concrete[0], **source}

    declared = source.get("type")
    if isinstance(declared, list):
        members = [t for t in declared if t != "null"]
        nullable = nullable or len(members) < len(declared)
        declared = members[0] if members else "string"
    if declared is None and "properties" in source:
        declared = "object"

    out: dict[str, Any] = {}
    if declared is not None:
        out["type"] = declared

    for key, value in source.items():
        if key == "type":
            continue
        if key not in _SUPPORTED_KEYS:
            logger.debug("[provider:gemini] dropping unsupported schema keyword %r", key)
            continue
        if key == "properties" and isinstance(value, dict):
            out["properties"] = {name: to_gemini_schema(sub) for name, sub in value.items()}
        elif key == "items":
            out["items"] = to_gemini_schema(value)
        elif key == "enum" and isinstance(value, list):
            if declared == "string":
                out["enum"] = [str(v) for v in value]
            else:
                _append_description(out, "allowed values: " + ", ".join(str(v) for v in value))
        elif key == "format":
            if value in _SUPPORTED_FORMATS.get(str(declared), frozenset()):
                out["format"] = value
            else:
                _append_description(out, f"format: {value}")
        elif key == "description":
            existing = out.get("description")
            out["description"] = f"{value} ({existing})" if existing else value
        else:
            out[key] = value

    if nullable:
        out["nullable"] = True
    if "required" in out and "properties" in out:
        out["required"] = [name for name in out["required"] if name in out["properties"]]
        if not out["required"]:
            del out["required"]
    return out


class GeminiAdapter(ProviderAdapter):
    """Adapter for Gemini ``generateContent`` function calling."""

    name = "gemini"
    collapse_policy = CollapsePolicy.KEEP_FIRST

    def __init__(
        self,
        model: str,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
        supports_system_instruction: bool | None = None,
        result_char_limit: int = 3000,
    ) -> None:
        super().__init__(model, result_char_limit=result_char_limit)
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        if supports_system_instruction is None:
            supports_system_instruction = not model.startswith("gemma")
        self.supports_system_instruction = supports_system_instruction

    # -- outbound ---------------------------------------------------------

    def to_provider_tools(self, operations: Sequence[ToolDeclaration]) -> list[dict[str, Any]]:
        declarations: list[dict[str, Any]] = []
        for op in operations:
            declaration: dict[str, Any] = {"name": op.name, "description": op.description}
            parameters = to_gemini_schema(op.parameters)
            # OBJECT schemas must have at least one property
            if parameters.get("properties"):
                declaration["parameters"] = parameters
            declarations.append(declaration)
        return [{"functionDeclarations": declarations}]

    def render(
        self, request: ProviderRequest, tools: list[dict[str, Any]] | None
    ) -> dict[str, Any]:
        contents: list[dict[str, Any]] = [
            {"role": _ROLE_MAP[turn.role], "parts": [{"text": turn.content}]}
            for turn in request.turns
        ]

        for exchange in request.exchanges:
            outcomes = {o.request_id: o for o in exchange.outcomes}
            active = [
                req
                for req in exchange.requests
                if req.id in outcomes and outcomes[req.id].status != OutcomeStatus.CANCELLED
            ]
            cancelled = [
                req.operation_name
                for req in exchange.requests
                if req.id in outcomes and outcomes[req.id].status == OutcomeStatus.CANCELLED
            ]

            model_parts: list[dict[str, Any]] = []
            if exchange.assistant_text:
                model_parts.append({"text": exchange.assistant_text})
            model_parts.extend(
                {"functionCall": {"name": req.operation_name, "args": req.arguments}}
                for req in active
            )
            if not model_parts:
                proposed = ", ".join(req.operation_name for req in exchange.requests)
                model_parts.append({"text": f"I proposed running: {proposed}."})
            contents.append({"role": "model", "parts": model_parts})

            user_parts: list[dict[str, Any]] = [
                {
                    "functionResponse": {
                        "name": req.operation_name,
                        "response": fold_payload(outcomes[req.id], self.result_char_limit),
                    }
                }
                for req in active
            ]
            if cancelled:
                user_parts.append(
                    {
                        "text": "The operator cancelled these actions; they were not executed: "
                        + ", ".join(cancelled)
                    }
                )
            if not user_parts:
                user_parts.append({"text": "No operations were executed."})
            contents.append({"role": "user", "parts": user_parts})

        payload: dict[str, Any] = {"contents": contents}
        if request.system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": request.system_instruction}]}
        if tools:
            payload["tools"] = tools

        generation_config: dict[str, Any] = {}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            generation_config["maxOutputTokens"] = request.max_output_tokens
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    async def send(self, payload: dict[str, Any]) -> Any:
        url = f"/v1beta/models/{self.model}:generateContent"
        try:
            response = await self._client.post(
                url, json=payload, headers={"x-goog-api-key": self._api_key}
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            body = exc.response.text[:500]
            logger.error(
                "[provider:gemini] HTTP %d: %s", exc.response.status_code, body, exc_info=True
            )
            raise ProviderError(
                f"Gemini API error {exc.response.status_code}: {body}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("[provider:gemini] transport error: %s", exc, exc_info=True)
            raise ProviderError(f"Gemini request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(f"Gemini returned invalid JSON: {exc}") from exc

    # -- inbound ----------------------------------------------------------

    def check_response(self, response: Any) -> None:
        data = as_mapping(response)
        if data.get("candidates"):
            return
        reason = (data.get("promptFeedback") or {}).get("blockReason")
        if reason:
            raise ProviderError(f"Gemini blocked the prompt: {reason}")
        raise ProviderError("Gemini returned no candidates")

    def parse_tool_calls(self, response: Any, turn_id: str) -> list[OperationRequest]:
        requests: list[OperationRequest] = []
        for candidate in as_mapping(response).get("candidates") or []:
            parts = (candidate.get("content") or {}).get("parts") or []
            for part in parts:
                call = part.get("functionCall")
                if not call:
                    continue
                requests.append(
                    OperationRequest(
                        id=synthesize_call_id(turn_id, len(requests)),
                        operation_name=call.get("name") or "",
                        arguments=parse_arguments(call.get("args")),
                        originating_turn_id=turn_id,
                    )
                )
        return requests

    def extract_text(self, response: Any) -> str:
        candidates = as_mapping(response).get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(part["text"]) for part in parts if part.get("text")).strip()

    async def aclose(self) -> None:
        await self._client.aclose()
