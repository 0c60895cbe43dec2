"""platform_copilot/executor.py

Approval-gated executor.

Executes a batch of model-proposed operation requests:
  - unknown names fail with ``UnknownOperation`` without touching siblings
  - arguments are validated against the operation schema before anything runs
  - operations that do not require approval run concurrently
  - operations that require approval are parked in a pending ledger and only
    run after an explicit ``approve`` decision for that exact request id

The returned outcomes always follow input order, whatever order the handlers
finish in.
"""

from __future__ import annotations

# Standard Library
import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

# Local Modules
from platform_copilot.errors import (
    ApprovalError,
    ApprovalStateError,
    OperationError,
    UnknownApprovalError,
    UnknownOperation,
    UpstreamError,
    ValidationError,
)
from platform_copilot.models import (
    ApprovalState,
    Decision,
    OperationFailure,
    OperationOutcome,
    OperationRequest,
    OutcomeStatus,
    PendingApproval,
)
from platform_copilot.registry import Operation, OperationRegistry
from platform_copilot.validation import ArgumentValidator

logger = logging.getLogger(__name__)

# Unbounded fan-out above this size is logged as a warning.
FANOUT_WARNING_THRESHOLD: int = 8

_TRANSITIONS: dict[ApprovalState, frozenset[ApprovalState]] = {
    ApprovalState.PENDING: frozenset({ApprovalState.APPROVED, ApprovalState.CANCELLED}),
    ApprovalState.APPROVED: frozenset({ApprovalState.EXECUTING}),
    ApprovalState.EXECUTING: frozenset({ApprovalState.COMPLETED, ApprovalState.FAILED}),
}


def _failed(request: OperationRequest, error: OperationError, *, executed: bool) -> OperationOutcome:
    return OperationOutcome(
        request_id=request.id,
        operation_name=request.operation_name,
        arguments=request.arguments,
        status=OutcomeStatus.FAILED,
        error=OperationFailure(kind=error.kind, message=error.message or str(error)),
        executed=executed,
    )


# ---------------------------------------------------------------------------
# Approval ledger entry
# ---------------------------------------------------------------------------


@dataclass
class ApprovalTicket:
    """One suspended request awaiting a human decision."""

    request: OperationRequest
    operation: Operation
    description: str
    state: ApprovalState = ApprovalState.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def advance(self, target: ApprovalState) -> None:
        """Move to ``target``, enforcing the approval state machine.

        Raises:
            ApprovalStateError: If the transition is not allowed from the
                current state.
        """
        if target not in _TRANSITIONS.get(self.state, frozenset()):
            raise ApprovalStateError(
                f"Request {self.request.id}: illegal transition "
                f"{self.state.value} -> {target.value}"
            )
        logger.info(
            "[approval] %s (%s): %s -> %s",
            self.request.id,
            self.operation.name,
            self.state.value,
            target.value,
        )
        self.state = target

    @property
    def decided(self) -> bool:
        return self.state != ApprovalState.PENDING

    def pending_approval(self) -> PendingApproval:
        return PendingApproval(
            request_id=self.request.id,
            operation_name=self.operation.name,
            arguments=self.request.arguments,
            description=self.description,
            turn_id=self.request.originating_turn_id,
        )


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class ApprovalGatedExecutor:
    """Runs operation requests with per-request failure isolation.

    Args:
        registry: Catalog used to resolve operation names.
        validator: Argument validator; a fresh one is created if omitted.
        max_concurrency: Optional cap on handlers running at once within a
            batch.  ``None`` leaves fan-out unbounded.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        *,
        validator: ArgumentValidator | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self.registry = registry
        self.validator = validator or ArgumentValidator()
        self.max_concurrency = max_concurrency
        self._tickets: dict[str, ApprovalTicket] = {}

    # -- batch execution ----------------------------------------------------

    async def execute(self, requests: Sequence[OperationRequest]) -> list[OperationOutcome]:
        """Execute a batch and return one outcome per request, in input order."""
        outcomes: list[OperationOutcome | None] = [None] * len(requests)
        runnable: list[tuple[int, Operation, OperationRequest]] = []

        for index, request in enumerate(requests):
            operation = self.registry.get(request.operation_name)
            if operation is None:
                logger.warning(
                    "[executor] unknown operation '%s' (request %s)",
                    request.operation_name,
                    request.id,
                )
                outcomes[index] = _failed(
                    request,
                    UnknownOperation(f"No operation named '{request.operation_name}'"),
                    executed=False,
                )
            elif operation.requires_approval:
                outcomes[index] = self._park(operation, request)
            else:
                runnable.append((index, operation, request))

        if runnable:
            semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
            if semaphore is None and len(runnable) > FANOUT_WARNING_THRESHOLD:
                logger.warning(
                    "[executor] unbounded fan-out of %d request(s)", len(runnable)
                )
            logger.info(
                "[executor] dispatching %d request(s) (limit=%s)",
                len(runnable),
                self.max_concurrency or "none",
            )
            results = await asyncio.gather(
                *(self._bounded(semaphore, operation, request) for _, operation, request in runnable)
            )
            for (index, _, _), outcome in zip(runnable, results):
                outcomes[index] = outcome

        return [outcome for outcome in outcomes if outcome is not None]

    async def _bounded(
        self,
        semaphore: asyncio.Semaphore | None,
        operation: Operation,
        request: OperationRequest,
    ) -> OperationOutcome:
        if semaphore is None:
            return await self._invoke(operation, request)
        async with semaphore:
            return await self._invoke(operation, request)

    async def _invoke(self, operation: Operation, request: OperationRequest) -> OperationOutcome:
        """Validate and run one request, converting every failure to an outcome."""
        try:
            self.validator.validate(operation, request.arguments)
        except OperationError as exc:
            logger.warning("[executor] %s rejected: %s", request.id, exc.message)
            return _failed(request, exc, executed=False)

        try:
            result = await operation.handler(request.arguments)
        except OperationError as exc:
            logger.warning(
                "[executor] %s (%s) failed: %s: %s",
                request.id,
                operation.name,
                exc.kind,
                exc.message,
            )
            return _failed(request, exc, executed=True)
        except Exception as exc:
            logger.warning(
                "[executor] %s (%s) raised %s: %s",
                request.id,
                operation.name,
                type(exc).__name__,
                exc,
                exc_info=True,
            )
            return _failed(
                request, UpstreamError(f"{type(exc).__name__}: {exc}"), executed=True
            )

        return OperationOutcome(
            request_id=request.id,
            operation_name=operation.name,
            arguments=request.arguments,
            status=OutcomeStatus.COMPLETED,
            result=result,
            executed=True,
        )

    # -- approval ledger ----------------------------------------------------

    def _park(self, operation: Operation, request: OperationRequest) -> OperationOutcome:
        try:
            self.validator.validate(operation, request.arguments)
        except OperationError as exc:
            logger.warning("[executor] %s rejected before approval: %s", request.id, exc.message)
            return _failed(request, exc, executed=False)

        if request.id in self._tickets:
            logger.warning("[executor] duplicate request id %s; not parked", request.id)
            return _failed(
                request,
                ValidationError(f"Request id {request.id} is already awaiting a decision"),
                executed=False,
            )

        self._tickets[request.id] = ApprovalTicket(
            request=request,
            operation=operation,
            description=operation.action_description(request.arguments),
        )
        logger.info("[approval] %s (%s): parked as PENDING", request.id, operation.name)
        return OperationOutcome(
            request_id=request.id,
            operation_name=operation.name,
            arguments=request.arguments,
            status=OutcomeStatus.PENDING_APPROVAL,
        )

    def ticket(self, request_id: str) -> ApprovalTicket | None:
        return self._tickets.get(request_id)

    def pending(self) -> list[PendingApproval]:
        """All requests still waiting for a decision, oldest first."""
        return [t.pending_approval() for t in self._tickets.values() if not t.decided]

    async def resolve(self, request_id: str, decision: Decision | str) -> OperationOutcome:
        """Apply a human decision to a parked request.

        Approve runs the handler exactly once; cancel discards the request.

        Raises:
            UnknownApprovalError: If no ticket exists for ``request_id``.
            ApprovalError: If the request was already decided.
        """
        ticket = self._tickets.get(request_id)
        if ticket is None:
            raise UnknownApprovalError(f"No pending approval with id {request_id}")
        if ticket.decided:
            raise ApprovalError(
                f"Request {request_id} was already decided ({ticket.state.value})"
            )

        if Decision(decision) == Decision.CANCEL:
            ticket.advance(ApprovalState.CANCELLED)
            return OperationOutcome(
                request_id=request_id,
                operation_name=ticket.operation.name,
                arguments=ticket.request.arguments,
                status=OutcomeStatus.CANCELLED,
            )

        ticket.advance(ApprovalState.APPROVED)
        ticket.advance(ApprovalState.EXECUTING)
        outcome = await self._invoke(ticket.operation, ticket.request)
        ticket.advance(
            ApprovalState.COMPLETED
            if outcome.status == OutcomeStatus.COMPLETED
            else ApprovalState.FAILED
        )
        return outcome

    def discard(self, request_ids: Iterable[str]) -> None:
        """Drop decided tickets once their turn has finished."""
        for request_id in request_ids:
            ticket = self._tickets.get(request_id)
            if ticket is not None and ticket.decided:
                del self._tickets[request_id]
