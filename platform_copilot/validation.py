"""
Argument validation against an operation's JSON-Schema parameters.

Validators are compiled once per schema and cached by operation name.
"""

from __future__ import annotations

# Standard Library
import logging
from collections.abc import Callable
from typing import Any

# Third-Party Libraries
from jsonschema import validators
from jsonschema.exceptions import SchemaError
from jsonschema.exceptions import ValidationError as SchemaValidationError

# Local Modules
from platform_copilot.errors import ValidationError
from platform_copilot.registry import Operation

logger = logging.getLogger(__name__)


class ArgumentValidator:
    """Caches one compiled jsonschema validator per operation."""

    def __init__(self) -> None:
        self._compiled: dict[str, Callable[[Any], Any] | None] = {}

    def _validator_for(self, operation: Operation) -> Callable[[Any], Any] | None:
        if operation.name in self._compiled:
            return self._compiled[operation.name]

        schema = operation.parameters
        compiled: Callable[[Any], Any] | None = None
        if isinstance(schema, dict) and schema:
            try:
                validator_cls = validators.validator_for(schema)
                validator_cls.check_schema(schema)
                compiled = validator_cls(schema).iter_errors
            except SchemaError as exc:
                logger.warning(
                    "[validation] invalid parameter schema for '%s': %s",
                    operation.name,
                    exc.message,
                )
        self._compiled[operation.name] = compiled
        return compiled

    def validate(self, operation: Operation, arguments: Any) -> None:
        """Check ``arguments`` against the operation's schema.

        Raises:
            ValidationError: Listing every violation, ordered by path.
        """
        if not isinstance(arguments, dict):
            raise ValidationError(
                f"Operation '{operation.name}' expects a JSON object of arguments, "
                f"got {type(arguments).__name__}"
            )

        iter_errors = self._validator_for(operation)
        if iter_errors is None:
            return

        errors: list[SchemaValidationError] = sorted(
            iter_errors(arguments), key=lambda e: [str(part) for part in e.absolute_path]
        )
        if not errors:
            return

        details = "; ".join(_describe(error) for error in errors)
        raise ValidationError(f"Invalid arguments for '{operation.name}': {details}")


def _describe(error: SchemaValidationError) -> str:
    path = ".".join(str(part) for part in error.absolute_path)
    return f"{path}: {error.message}" if path else error.message
