"""tests/test_fallback.py

Unit tests for the model-free formatting and keyword rules
(platform_copilot/fallback.py).
"""

from __future__ import annotations

# Standard Library
from typing import Any

# Third-Party Libraries
import pytest

# Local Modules
from platform_copilot.fallback import RuleResponder, format_outcomes, format_result
from platform_copilot.models import OperationFailure, OperationOutcome, OutcomeStatus
from platform_copilot.registry import Operation, OperationRegistry


async def _noop(args: dict[str, Any]) -> None:
    return None


class TestFormatResult:
    """Test suite for format_result."""

    def test_failed_batches(self) -> None:
        """Test the failed-batch listing."""
        text = format_result(
            "get_failed_batches",
            {"count": 1, "batches": [{"id": "01HXYZABCDEF123", "created": 0}]},
        )

        assert "1 failed batches" in text
        assert "`01HXYZABCDEF...`" in text
        assert "1970-01-01 00:00 UTC" in text

    def test_segment_stats(self) -> None:
        """Test the segment overview."""
        text = format_result(
            "get_segment_stats", {"totalSegments": 7, "byState": {"published": 5, "draft": 2}}
        )

        assert "**7** total segments" in text
        assert "**5** published" in text

    def test_batch_errors(self) -> None:
        """Test the error analysis summary."""
        text = format_result(
            "analyze_batch_errors",
            {
                "batchId": "b1",
                "totalErrors": 4,
                "topError": {"errorCode": "TYPE", "percentage": 75.0},
                "recommendation": "Fix types.",
            },
        )

        assert "**4 errors**" in text
        assert "`TYPE`" in text
        assert "Fix types." in text

    def test_small_dict_default(self) -> None:
        """Test the generic rendering of a small flat result."""
        text = format_result("get_current_sandbox", {"name": "prod", "meta": {"x": 1}})

        assert text.startswith("**get_current_sandbox completed:**")
        assert "- name: prod" in text
        assert "meta" not in text

    def test_large_result_default(self) -> None:
        """Test that anything else gets a one-line confirmation."""
        assert format_result("list_things", list(range(10))) == (
            "**list_things** completed successfully.\n"
        )


class TestFormatOutcomes:
    """Test suite for format_outcomes."""

    def test_every_status_is_reported(self) -> None:
        """Test completed, failed and cancelled rendering together."""
        outcomes = [
            OperationOutcome(
                request_id="1",
                operation_name="get_current_sandbox",
                status=OutcomeStatus.COMPLETED,
                result={"name": "prod"},
            ),
            OperationOutcome(
                request_id="2",
                operation_name="lookup_profile",
                status=OutcomeStatus.FAILED,
                error=OperationFailure(kind="NotFound", message="no profile"),
            ),
            OperationOutcome(
                request_id="3", operation_name="create_segment", status=OutcomeStatus.CANCELLED
            ),
        ]

        text = format_outcomes(outcomes)

        assert "- name: prod" in text
        assert "lookup_profile failed: no profile" in text
        assert "create_segment was cancelled and not executed." in text


class TestRuleResponder:
    """Test suite for RuleResponder."""

    @pytest.fixture
    def responder(self) -> RuleResponder:
        return RuleResponder(
            OperationRegistry(
                [
                    Operation(name="get_failed_batches", description="", handler=_noop),
                    Operation(name="list_sandboxes", description="", handler=_noop),
                    Operation(
                        name="list_datasets",
                        description="",
                        handler=_noop,
                        requires_approval=True,
                    ),
                ]
            )
        )

    def test_match_builds_request(self, responder: RuleResponder) -> None:
        """Test that a matching question maps to its operation and arguments."""
        request = responder.match("Why did the ingestion FAIL for that batch?", "t1")

        assert request is not None
        assert request.id == "t1-rule-0"
        assert request.operation_name == "get_failed_batches"
        assert request.arguments == {"limit": 10}

    def test_gated_and_missing_operations_are_unreachable(self, responder: RuleResponder) -> None:
        """Test that rules never trigger approval-gated or unregistered operations."""
        assert responder.match("list datasets", "t1") is None
        assert responder.match("schema stats please", "t1") is None

    def test_no_match(self, responder: RuleResponder) -> None:
        """Test an unrelated question."""
        assert responder.match("hello there", "t1") is None
