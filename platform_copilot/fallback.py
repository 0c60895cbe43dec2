"""platform_copilot/fallback.py

Deterministic answers without a language model.

Two uses:
  - ``format_outcomes`` renders executed results as markdown when the
    summarizing follow-up call fails, so executed work is never discarded.
  - ``RuleResponder`` maps common questions to read-only operations by
    keyword when no provider is configured at all.
"""

from __future__ import annotations

# Standard Library
import logging
import re
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

# Local Modules
from platform_copilot.models import OperationOutcome, OperationRequest, OutcomeStatus
from platform_copilot.registry import OperationRegistry

logger = logging.getLogger(__name__)

HELP_TEXT: str = (
    "I can help you monitor the data platform. Try asking:\n\n"
    '- "Show me failed batches"\n'
    '- "How many segments are there?"\n'
    '- "List datasets"\n'
    '- "Show batch stats"\n'
    '- "List sandboxes"\n'
)

# (pattern, operation, arguments); first match wins.
DEFAULT_RULES: tuple[tuple[str, str, dict[str, Any]], ...] = (
    (r"(failed|error|fail).*(batch|ingestion)", "get_failed_batches", {"limit": 10}),
    (r"batch.*(stat|statistic)", "get_batch_stats", {"timeRange": "24h"}),
    (r"schema.*(stat|registry)", "get_schema_stats", {}),
    (r"(list|show|get).*(dataset|data set)", "list_datasets", {"limit": 10}),
    (r"(segment|audience).*(stat|count|how many)", "get_segment_stats", {}),
    (r"(list|show|get).*(sandbox|environment)", "list_sandboxes", {}),
    (r"identity.*(graph|link|namespace)", "list_namespaces", {}),
)


# ---------------------------------------------------------------------------
# Result formatting
# ---------------------------------------------------------------------------


def _timestamp(value: Any) -> str:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    return str(value or "unknown time")


def _format_failed_batches(data: dict[str, Any]) -> str:
    batches = data.get("batches") or []
    if not batches:
        return "No failed batches found. Ingestion is running smoothly.\n"
    lines = [f"Found **{len(batches)} failed batches** that need attention:\n"]
    for number, batch in enumerate(batches[:5], start=1):
        lines.append(
            f"{number}. Batch `{str(batch.get('id', ''))[:12]}...` failed at "
            f"{_timestamp(batch.get('created'))}"
        )
    if len(batches) > 5:
        lines.append(f"\n...and {len(batches) - 5} more.")
    return "\n".join(lines) + "\n"


def _format_segment_stats(data: dict[str, Any]) -> str:
    by_state = data.get("byState") or {}
    total = data.get("totalSegments") or data.get("total") or 0
    published = by_state.get("published", 0)
    draft = by_state.get("draft", 0)
    return (
        "**Segment overview:**\n"
        f"- **{total}** total segments in this sandbox\n"
        f"- **{published}** published\n"
        f"- **{draft}** in draft\n"
    )


def _format_batch_errors(data: dict[str, Any]) -> str:
    total = data.get("totalErrors") or 0
    if not total:
        return "No errors found in this batch.\n"
    text = (
        f"**Error analysis for batch {str(data.get('batchId', ''))[:12]}...**\n\n"
        f"Found **{total} errors** in total.\n"
    )
    top = data.get("topError")
    if top:
        text += (
            f"\n**Most common issue:** `{top.get('errorCode')}` "
            f"({top.get('percentage')}% of errors)\n"
            f"{data.get('recommendation') or 'Check the source data format.'}\n"
        )
    return text


def _format_identity_graph(data: dict[str, Any]) -> str:
    source = data.get("inputIdentity") or {}
    members = data.get("members") or []
    text = (
        f"**Identity graph for {source.get('namespace')}:"
        f"{str(source.get('identity', ''))[:15]}**\n\n"
        f"Linked to **{len(members)}** identities.\n"
    )
    if data.get("isSharedDevice"):
        text += "\n**Warning:** large cluster detected, this may be a shared device.\n"
    return text


_FORMATTERS = {
    "get_failed_batches": _format_failed_batches,
    "get_segment_stats": _format_segment_stats,
    "analyze_batch_errors": _format_batch_errors,
    "get_identity_graph": _format_identity_graph,
}


def format_result(operation_name: str, data: Any) -> str:
    """Render one successful result as short markdown."""
    formatter = _FORMATTERS.get(operation_name)
    if formatter is not None and isinstance(data, dict):
        return formatter(data)

    if isinstance(data, dict) and 0 < len(data) <= 5:
        lines = [f"**{operation_name} completed:**"]
        lines.extend(
            f"- {key}: {value}"
            for key, value in data.items()
            if not isinstance(value, (dict, list))
        )
        return "\n".join(lines) + "\n"
    return f"**{operation_name}** completed successfully.\n"


def format_outcomes(outcomes: Sequence[OperationOutcome]) -> str:
    """Basic markdown rendering of a batch of outcomes.

    Cancelled requests are reported so the operator can see what was skipped.
    """
    parts: list[str] = []
    for outcome in outcomes:
        if outcome.status == OutcomeStatus.COMPLETED:
            parts.append(format_result(outcome.operation_name, outcome.result))
        elif outcome.status == OutcomeStatus.FAILED:
            message = outcome.error.message if outcome.error else "unknown error"
            parts.append(f"{outcome.operation_name} failed: {message}\n")
        elif outcome.status == OutcomeStatus.CANCELLED:
            parts.append(f"{outcome.operation_name} was cancelled and not executed.\n")
    return "\n".join(parts).strip()


# ---------------------------------------------------------------------------
# Keyword responder
# ---------------------------------------------------------------------------


class RuleResponder:
    """Keyword router used when no language model is configured.

    Only operations present in ``registry`` and not gated by approval are
    reachable; rules naming anything else are skipped at construction.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        rules: Sequence[tuple[str, str, dict[str, Any]]] = DEFAULT_RULES,
    ) -> None:
        self._rules: list[tuple[re.Pattern[str], str, dict[str, Any]]] = []
        for pattern, name, arguments in rules:
            operation = registry.get(name)
            if operation is None or operation.requires_approval:
                logger.debug("[fallback] skipping rule for unavailable operation %s", name)
                continue
            self._rules.append((re.compile(pattern, re.IGNORECASE), name, arguments))

    def match(self, text: str, turn_id: str) -> OperationRequest | None:
        for pattern, name, arguments in self._rules:
            if pattern.search(text):
                logger.info("[fallback] matched rule -> %s", name)
                return OperationRequest(
                    id=f"{turn_id}-rule-0",
                    operation_name=name,
                    arguments=dict(arguments),
                    originating_turn_id=turn_id,
                )
        return None
