"""platform_copilot/errors.py

Error taxonomy for the orchestration core.

Per-request failures (``UnknownOperation``, ``ValidationError``,
``UpstreamError``, ``NotFoundError``) are captured by the executor and folded
into the follow-up model turn as structured data.  ``ProviderError`` is fatal
for the whole turn.  Each per-request error carries a stable ``kind`` string
that appears in result payloads.
"""

from __future__ import annotations


class CopilotError(Exception):
    """Root of every error raised by platform_copilot."""

    kind: str = "CopilotError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Per-request failures
# ---------------------------------------------------------------------------


class OperationError(CopilotError):
    """Base class for failures isolated to a single operation request."""


class UnknownOperation(OperationError):
    """The model requested an operation name that is not registered."""

    kind = "UnknownOperation"


class ValidationError(OperationError):
    """Arguments failed the operation's parameter schema."""

    kind = "ValidationError"


class UpstreamError(OperationError):
    """A handler's downstream call failed.

    Args:
        message: Human-readable failure description.
        status_code: HTTP status of the failed downstream call, if any.
    """

    kind = "UpstreamError"

    def __init__(self, message: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(OperationError):
    """The resource a handler looked up does not exist."""

    kind = "NotFound"


# ---------------------------------------------------------------------------
# Turn-level and startup failures
# ---------------------------------------------------------------------------


class ProviderError(CopilotError):
    """The language-model call failed or returned unparsable output."""

    kind = "ProviderError"


class DuplicateOperationError(CopilotError):
    """Two operations were registered under the same name."""

    kind = "DuplicateOperation"


class ApprovalError(CopilotError):
    """An approval decision referenced an unknown or already-decided request."""

    kind = "ApprovalError"


class UnknownApprovalError(ApprovalError):
    """No suspended request exists under the given id."""

    kind = "UnknownApproval"


class ApprovalStateError(CopilotError):
    """An approval ticket was asked to make an illegal state transition."""

    kind = "ApprovalStateError"
