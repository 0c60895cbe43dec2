"""platform_copilot/providers/base.py

Provider adapter contract.

An adapter is the only place that knows a language-model vendor's
function-calling wire format.  Outbound it renders operation declarations and
a ProviderRequest into the vendor payload; inbound it normalizes the vendor
response into ``OperationRequest`` objects and plain text.  Adding a provider
means subclassing ``ProviderAdapter``; the executor and registry never change.
"""

from __future__ import annotations

# Standard Library
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Protocol

# Local Modules
from platform_copilot.errors import ProviderError
from platform_copilot.models import (
    CollapsePolicy,
    OperationOutcome,
    OperationRequest,
    ProviderReply,
    ProviderRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_RESULT_CHAR_LIMIT: int = 3000


class ToolDeclaration(Protocol):
    """Anything carrying the three fields a provider needs to advertise a tool.

    Both ``registry.Operation`` and ``models.OperationSummary`` satisfy it.
    """

    name: str
    description: str
    parameters: dict[str, Any]


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def as_mapping(response: Any) -> dict[str, Any]:
    """Normalise an SDK response object or plain dict to a dict."""
    if response is None:
        return {}
    if isinstance(response, dict):
        return response
    dump = getattr(response, "model_dump", None)
    if callable(dump):
        return dump()
    raise ProviderError(f"Unrecognised provider response type: {type(response).__name__}")


def content_text(val: None | str | list[Any]) -> str:
    """Normalise a message content value to a plain string.

    Args:
        val: Raw content field; may be ``None``, a ``str``, or a list of
            parts (multimodal format).

    Returns:
        A plain string safe for all string operations.
    """
    if val is None:
        return ""
    if isinstance(val, str):
        return val
    if isinstance(val, list):
        parts: list[str] = []
        for item in val:
            if isinstance(item, dict):
                parts.append(str(item.get("text") or item.get("content") or ""))
            else:
                parts.append(str(item))
        return " ".join(p for p in parts if p)
    return str(val)


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Decode tool-call arguments, substituting ``{}`` for anything malformed.

    Schema validation happens later at execution time, so a bad payload only
    fails its own request rather than the whole turn.
    """
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("[provider] malformed tool arguments, using {}: %r", raw[:200])
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def synthesize_call_id(turn_id: str, index: int) -> str:
    return f"{turn_id}-call-{index}"


def fold_payload(outcome: OperationOutcome, limit: int) -> dict[str, Any]:
    """Outcome payload for a tool-result turn, truncating oversized results."""
    payload = outcome.to_payload()
    serialized = json.dumps(payload, ensure_ascii=False, default=str)
    if limit <= 0 or len(serialized) <= limit:
        return payload
    return {
        "status": payload["status"],
        "result_excerpt": serialized[:limit] + "...",
        "truncated": True,
    }


def serialize_payload(outcome: OperationOutcome, limit: int) -> str:
    return json.dumps(fold_payload(outcome, limit), ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Adapter base class
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Translation layer between canonical operations and one vendor API.

    Subclasses declare their structural constraints as class attributes so the
    Conversation Builder can satisfy them:

    Attributes:
        name: Short provider identifier used in logs.
        collapse_policy: Which turn survives a same-role run.
        supports_system_instruction: Whether a standalone system instruction
            can be sent.
    """

    name: str = "provider"
    collapse_policy: CollapsePolicy = CollapsePolicy.KEEP_FIRST
    supports_system_instruction: bool = True

    def __init__(self, model: str, *, result_char_limit: int = DEFAULT_RESULT_CHAR_LIMIT) -> None:
        self.model = model
        self.result_char_limit = result_char_limit

    # -- outbound ---------------------------------------------------------

    @abstractmethod
    def to_provider_tools(self, operations: Sequence[ToolDeclaration]) -> list[dict[str, Any]]:
        """Render operation declarations in the vendor's tool format."""

    @abstractmethod
    def render(
        self, request: ProviderRequest, tools: list[dict[str, Any]] | None
    ) -> dict[str, Any]:
        """Render a full vendor request payload."""

    @abstractmethod
    async def send(self, payload: dict[str, Any]) -> Any:
        """Perform the network call.  Must raise ProviderError on failure."""

    # -- inbound ----------------------------------------------------------

    @abstractmethod
    def parse_tool_calls(self, response: Any, turn_id: str) -> list[OperationRequest]:
        """Extract ordered operation requests; pure for a given ``turn_id``."""

    @abstractmethod
    def extract_text(self, response: Any) -> str:
        """Extract the natural-language portion of the response."""

    def check_response(self, response: Any) -> None:
        """Hook for vendors that signal refusal inside a 200 response."""

    # -- template method --------------------------------------------------

    async def generate(
        self,
        request: ProviderRequest,
        operations: Sequence[ToolDeclaration] | None = None,
        *,
        turn_id: str,
    ) -> ProviderReply:
        """Render, send and normalise one model call.

        Args:
            request: Provider-agnostic request from the Conversation Builder.
            operations: Declarations to advertise; ``None`` or empty sends no tools.
            turn_id: Identifier stamped on every parsed request.

        Returns:
            The normalised reply.

        Raises:
            ProviderError: On transport failure or an unparsable response.
        """
        tools = self.to_provider_tools(operations) if operations else None
        payload = self.render(request, tools)

        started = time.monotonic()
        response = await self.send(payload)
        logger.info(
            "[provider:%s] model=%s tools=%d latency=%.2fs",
            self.name,
            self.model,
            len(tools or []),
            time.monotonic() - started,
        )

        try:
            self.check_response(response)
            requests = self.parse_tool_calls(response, turn_id)
            text = self.extract_text(response)
        except ProviderError:
            raise
        except (KeyError, IndexError, TypeError, AttributeError, ValueError) as exc:
            raise ProviderError(f"Unparsable {self.name} response: {exc}") from exc

        return ProviderReply(text=text, requests=requests)

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
