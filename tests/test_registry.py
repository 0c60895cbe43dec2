"""tests/test_registry.py

Unit tests for OperationRegistry and Operation (platform_copilot/registry.py).
"""

from __future__ import annotations

# Standard Library
from typing import Any

# Third-Party Libraries
import pytest

# Local Modules
from platform_copilot.errors import DuplicateOperationError
from platform_copilot.models import OperationSummary
from platform_copilot.registry import EMPTY_PARAMETERS, Operation, OperationRegistry


async def _noop(args: dict[str, Any]) -> None:
    return None


class TestOperationRegistry:
    """Test suite for OperationRegistry."""

    def test_get_registered_operation(self, registry: OperationRegistry) -> None:
        """Test that a registered operation is returned by name."""
        operation = registry.get("echo")

        assert operation is not None
        assert operation.name == "echo"

    def test_get_unknown_returns_none(self, registry: OperationRegistry) -> None:
        """Test that an unknown name yields None instead of raising."""
        assert registry.get("delete_everything") is None

    def test_duplicate_registration_fails_fast(self, echo_operation: Operation) -> None:
        """Test that registering the same name twice raises at startup."""
        registry = OperationRegistry([echo_operation])

        with pytest.raises(DuplicateOperationError, match="echo"):
            registry.register(Operation(name="echo", description="again", handler=_noop))

    def test_list_preserves_order_and_hides_handlers(self, registry: OperationRegistry) -> None:
        """Test that list() is ordered and exposes summaries only."""
        summaries = registry.list()

        assert [s.name for s in summaries] == ["echo", "wipe"]
        assert all(isinstance(s, OperationSummary) for s in summaries)
        assert all("handler" not in s.model_dump() for s in summaries)
        assert summaries[1].requires_approval is True

    def test_list_names(self, registry: OperationRegistry) -> None:
        """Test the set of valid operation names."""
        assert registry.list_names() == frozenset({"echo", "wipe"})

    def test_contains_and_len(self, registry: OperationRegistry) -> None:
        """Test membership and size helpers."""
        assert "echo" in registry
        assert "nope" not in registry
        assert len(registry) == 2

    def test_empty_registry(self) -> None:
        """Test a registry with no operations."""
        registry = OperationRegistry()

        assert registry.list() == []
        assert registry.list_names() == frozenset()


class TestOperation:
    """Test suite for the Operation record."""

    def test_default_parameters_are_an_empty_object_schema(self) -> None:
        """Test that an operation without parameters gets an empty object schema."""
        operation = Operation(name="ping", description="Ping.", handler=_noop)

        assert operation.parameters == EMPTY_PARAMETERS
        assert operation.parameters is not EMPTY_PARAMETERS

    def test_default_action_description(self) -> None:
        """Test the fallback approval description."""
        operation = Operation(name="ping", description="Ping.", handler=_noop)

        assert operation.action_description({}) == "Execute ping"

    def test_custom_action_description(self) -> None:
        """Test that describe() renders the approval description."""
        operation = Operation(
            name="run_sql",
            description="Run SQL.",
            handler=_noop,
            describe=lambda args: f"Run {args['sql']}",
        )

        assert operation.action_description({"sql": "SELECT 1"}) == "Run SELECT 1"

    def test_broken_describe_falls_back(self) -> None:
        """Test that a describe() missing an argument falls back to the default."""
        operation = Operation(
            name="run_sql",
            description="Run SQL.",
            handler=_noop,
            describe=lambda args: f"Run {args['sql']}",
        )

        assert operation.action_description({}) == "Execute run_sql"

    def test_summary_matches_declaration(self, echo_operation: Operation) -> None:
        """Test the handler-free projection."""
        summary = echo_operation.summary()

        assert summary.name == "echo"
        assert summary.parameters["required"] == ["text"]
        assert summary.requires_approval is False
