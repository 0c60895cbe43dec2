"""
Operation registry.

A static catalog of named operations the model may invoke.  Each entry pairs
declarative data (name, description, JSON-Schema parameters, approval flag)
with a handler resolved through dependency injection, so the registry itself
holds no service imports and can be exercised with mock handlers.
"""

from __future__ import annotations

# Standard Library
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

# Local Modules
from platform_copilot.errors import DuplicateOperationError
from platform_copilot.models import OperationSummary

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]
Describer = Callable[[dict[str, Any]], str]

EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass(frozen=True)
class Operation:
    """A named, schema-described, invocable action.

    Attributes:
        name: Unique registry key, also the function name shown to the model.
        description: Text the model reads to decide when to call this.
        handler: Async callable receiving the argument mapping.
        parameters: JSON-Schema object describing accepted arguments.
        requires_approval: When True, the handler never runs without an
            explicit human ``approve`` decision.
        describe: Optional callable rendering a human-readable action
            description for the approval surface.
    """

    name: str
    description: str
    handler: Handler = field(repr=False, compare=False)
    parameters: dict[str, Any] = field(default_factory=lambda: dict(EMPTY_PARAMETERS))
    requires_approval: bool = False
    describe: Describer | None = field(default=None, repr=False, compare=False)

    def summary(self) -> OperationSummary:
        return OperationSummary(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
            requires_approval=self.requires_approval,
        )

    def action_description(self, arguments: dict[str, Any]) -> str:
        """Human-readable description of what running this request would do."""
        if self.describe is not None:
            try:
                return self.describe(arguments)
            except (KeyError, TypeError, AttributeError) as exc:
                logger.debug("[registry] describe() failed for %s: %s", self.name, exc)
        return f"Execute {self.name}"


class OperationRegistry:
    """In-memory catalog of operations, keyed by name.

    Populated once at startup and read-only afterwards.  Lookups are dict
    lookups; listing preserves registration order.
    """

    def __init__(self, operations: Iterable[Operation] | None = None) -> None:
        self._operations: dict[str, Operation] = {}
        if operations is not None:
            self.register_all(operations)

    def register(self, operation: Operation) -> None:
        """Add an operation to the catalog.

        Raises:
            DuplicateOperationError: If the name is already registered.
        """
        if operation.name in self._operations:
            raise DuplicateOperationError(
                f"Operation '{operation.name}' is already registered"
            )
        self._operations[operation.name] = operation

    def register_all(self, operations: Iterable[Operation]) -> None:
        count = 0
        for operation in operations:
            self.register(operation)
            count += 1
        logger.info("[registry] registered %d operation(s), %d total", count, len(self))

    def get(self, name: str) -> Operation | None:
        """Return the operation registered under ``name``, or None."""
        return self._operations.get(name)

    def list(self) -> list[OperationSummary]:
        """Advertise capabilities without exposing handlers."""
        return [operation.summary() for operation in self._operations.values()]

    def list_names(self) -> frozenset[str]:
        return frozenset(self._operations)

    def operations(self) -> list[Operation]:
        return list(self._operations.values())

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __len__(self) -> int:
        return len(self._operations)
