"""platform_copilot/agent.py

Orchestration loop.

One user turn moves through:

    AWAITING_MODEL -> HAS_TOOL_CALLS -> EXECUTING
        -> AWAITING_APPROVAL   (suspended; resumed by ``resolve_approval``)
        -> AWAITING_FOLLOWUP -> DONE

A turn with no tool calls goes straight from AWAITING_MODEL to DONE.  The
number of execute/re-prompt rounds is bounded by ``max_tool_rounds``; the
last follow-up call is sent without tool declarations.

Without a configured provider the copilot degrades to keyword rules
(``fallback.RuleResponder``) over the same executor.
"""

from __future__ import annotations

# Standard Library
import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

# Local Modules
from platform_copilot.conversation import ConversationBuilder
from platform_copilot.errors import ApprovalError, ProviderError, UnknownApprovalError
from platform_copilot.executor import ApprovalGatedExecutor
from platform_copilot.fallback import HELP_TEXT, RuleResponder, format_outcomes
from platform_copilot.models import (
    CollapsePolicy,
    Decision,
    Message,
    OperationOutcome,
    OutcomeStatus,
    PendingApproval,
    ProviderReply,
    ProviderRequest,
    Role,
    SchemaContext,
    ToolExchange,
    TurnResult,
    TurnState,
)
from platform_copilot.platform.catalog import build_catalog
from platform_copilot.platform.client import PlatformClient
from platform_copilot.platform.schema_context import load_schema_context
from platform_copilot.prompts import build_system_prompt
from platform_copilot.providers.base import ProviderAdapter
from platform_copilot.providers.factory import create_provider
from platform_copilot.registry import OperationRegistry
from platform_copilot.settings import CopilotSettings

logger = logging.getLogger(__name__)

APOLOGY: str = (
    "Sorry, I couldn't get an answer from the language model just now. "
    "Nothing was changed; please try again."
)
EMPTY_REPLY: str = "I don't have an answer for that. Could you rephrase the question?"


@dataclass
class _TurnContext:
    """Mutable state of one user turn, kept while it is suspended."""

    turn_id: str
    request: ProviderRequest
    state: TurnState = TurnState.AWAITING_MODEL
    round: int = 1
    exchanges: list[ToolExchange] = field(default_factory=list)
    current: ToolExchange | None = None
    outcomes: list[OperationOutcome] = field(default_factory=list)

    def advance(self, state: TurnState) -> None:
        logger.info("[agent] turn %s: %s -> %s", self.turn_id, self.state.value, state.value)
        self.state = state

    @property
    def call_prefix(self) -> str:
        """Id prefix for requests parsed in the current round."""
        return self.turn_id if self.round == 1 else f"{self.turn_id}-r{self.round}"

    def record(self, outcome: OperationOutcome) -> None:
        """Replace the outcome carrying the same request id."""
        for collection in (self.outcomes, self.current.outcomes if self.current else []):
            for index, existing in enumerate(collection):
                if existing.request_id == outcome.request_id:
                    collection[index] = outcome

    def undecided(self) -> list[str]:
        if self.current is None:
            return []
        return [
            o.request_id
            for o in self.current.outcomes
            if o.status == OutcomeStatus.PENDING_APPROVAL
        ]

    def operations_used(self) -> list[str]:
        return [o.operation_name for o in self.outcomes if o.executed]

    def structured_data(self) -> Any:
        completed = [o.result for o in self.outcomes if o.status == OutcomeStatus.COMPLETED]
        if not completed:
            return None
        return completed[0] if len(completed) == 1 else completed


class Copilot:
    """Provider-agnostic tool-calling assistant for the platform dashboard.

    Args:
        registry: Operations the model may invoke.
        provider: Language-model adapter, or ``None`` for rule-based answers.
        executor: Approval-gated executor; built from ``registry`` if omitted.
        settings: Runtime configuration.
        system_prompt: Overrides the prompt generated from the registry.
        rules: Overrides the default keyword responder.
        platform: Platform client owned by this copilot, closed by ``aclose``
            and used for the startup schema lookups.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        provider: ProviderAdapter | None,
        *,
        executor: ApprovalGatedExecutor | None = None,
        settings: CopilotSettings | None = None,
        system_prompt: str | None = None,
        rules: RuleResponder | None = None,
        platform: PlatformClient | None = None,
    ) -> None:
        self.settings = settings or CopilotSettings()
        self.registry = registry
        self.provider = provider
        self.executor = executor or ApprovalGatedExecutor(
            registry, max_concurrency=self.settings.max_concurrency
        )
        self.schema_context: SchemaContext | None = None
        self._fixed_prompt = system_prompt is not None
        self.system_prompt = system_prompt if system_prompt is not None else self._build_prompt()
        self.builder = ConversationBuilder(
            window=self.settings.history_window,
            collapse_policy=provider.collapse_policy if provider else CollapsePolicy.KEEP_FIRST,
            supports_system_instruction=provider.supports_system_instruction if provider else True,
        )
        self.rules = rules or RuleResponder(registry)
        self._platform = platform
        self._suspended: dict[str, _TurnContext] = {}

    # -----------------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------------

    async def converse(
        self,
        history: Iterable[Message | Mapping[str, Any]],
        user_text: str,
    ) -> TurnResult:
        """Process one user message.

        Args:
            history: Bounded slice of prior messages, oldest first.
            user_text: The new user message.

        Returns:
            A TurnResult that is DONE, AWAITING_APPROVAL, or FAILED when the
            model could not be reached (no messages to append in that case).
        """
        turn_id = uuid.uuid4().hex
        user_message = Message(role=Role.USER, content=user_text)

        if self.provider is None:
            result = await self._converse_with_rules(turn_id, user_text)
            result.messages.insert(0, user_message)
            return result

        request = self.builder.build(
            history,
            user_text,
            self.system_prompt,
            temperature=self.settings.temperature,
            max_output_tokens=self.settings.max_output_tokens,
        )
        ctx = _TurnContext(turn_id=turn_id, request=request)
        logger.info("[agent] turn %s: %s", turn_id, ctx.state.value)

        try:
            reply = await self.provider.generate(
                request, self.registry.operations(), turn_id=ctx.call_prefix
            )
        except ProviderError as exc:
            logger.error("[agent] turn %s: provider call failed: %s", turn_id, exc, exc_info=True)
            ctx.advance(TurnState.FAILED)
            return TurnResult(turn_id=turn_id, status=TurnState.FAILED, final_text=APOLOGY)

        if reply.requests:
            result = await self._run_tools(ctx, reply)
        else:
            result = self._finish(ctx, reply.text or EMPTY_REPLY)
        result.messages.insert(0, user_message)
        return result

    async def resolve_approval(self, request_id: str, decision: Decision | str) -> TurnResult:
        """Apply a human decision to a suspended request and resume its turn.

        While other requests from the same turn are still undecided the turn
        stays AWAITING_APPROVAL.  Once every request is decided, completed and
        failed results (plus a note for each cancellation) go to the follow-up
        model call.

        Raises:
            UnknownApprovalError: If ``request_id`` is not suspended.
            ApprovalError: If the request was already decided.
        """
        ctx = self._suspended.get(request_id)
        if ctx is None:
            raise UnknownApprovalError(f"No pending approval with id {request_id}")
        exchange = ctx.current
        if exchange is None:
            raise ApprovalError(f"Turn {ctx.turn_id} has no tool round waiting for {request_id}")

        outcome = await self.executor.resolve(request_id, decision)
        self._suspended.pop(request_id, None)
        ctx.record(outcome)

        remaining = ctx.undecided()
        if remaining:
            approvals = self._approvals(remaining)
            text = (
                f"Recorded: {outcome.operation_name} is {outcome.status.value.lower()}. "
                f"Still waiting on {len(approvals)} approval(s)."
            )
            return TurnResult(
                turn_id=ctx.turn_id,
                status=TurnState.AWAITING_APPROVAL,
                final_text=text,
                structured_data=ctx.structured_data(),
                operations_used=ctx.operations_used(),
                pending_approvals=approvals,
                outcomes=list(ctx.outcomes),
            )

        return await self._follow_up(ctx, exchange)

    async def load_schema_context(self) -> SchemaContext | None:
        """Fetch schema field paths and fold them into the generated prompt.

        A prompt passed to the constructor is left untouched.  Without a
        platform client there is nothing to look up.
        """
        if self._platform is None:
            return None
        self.schema_context = await load_schema_context(self._platform)
        if not self._fixed_prompt:
            self.system_prompt = self._build_prompt()
        return self.schema_context

    def pending_approvals(self) -> list[PendingApproval]:
        return self.executor.pending()

    def is_suspended(self, request_id: str) -> bool:
        return request_id in self._suspended

    async def aclose(self) -> None:
        if self.provider is not None:
            await self.provider.aclose()
        if self._platform is not None:
            await self._platform.aclose()

    # -----------------------------------------------------------------------
    # Turn steps
    # -----------------------------------------------------------------------

    async def _run_tools(self, ctx: _TurnContext, reply: ProviderReply) -> TurnResult:
        ctx.advance(TurnState.HAS_TOOL_CALLS)
        ctx.advance(TurnState.EXECUTING)
        outcomes = await self.executor.execute(reply.requests)
        exchange = ToolExchange(
            assistant_text=reply.text, requests=reply.requests, outcomes=outcomes
        )
        ctx.current = exchange
        ctx.outcomes.extend(outcomes)

        pending = ctx.undecided()
        if not pending:
            return await self._follow_up(ctx, exchange)

        for request_id in pending:
            self._suspended[request_id] = ctx
        ctx.advance(TurnState.AWAITING_APPROVAL)
        await self._expire_oldest(keep=ctx)

        approvals = self._approvals(pending)
        listing = "\n".join(f"- {a.description}" for a in approvals)
        text = f"{reply.text}\n\n" if reply.text else ""
        text += f"This needs your approval before it runs:\n\n{listing}"
        return TurnResult(
            turn_id=ctx.turn_id,
            status=TurnState.AWAITING_APPROVAL,
            final_text=text,
            structured_data=ctx.structured_data(),
            operations_used=ctx.operations_used(),
            pending_approvals=approvals,
            outcomes=list(ctx.outcomes),
            messages=[
                Message(
                    role=Role.ASSISTANT,
                    content=text,
                    pending_action=approvals[0].request_id,
                )
            ],
        )

    async def _follow_up(self, ctx: _TurnContext, exchange: ToolExchange) -> TurnResult:
        ctx.exchanges.append(exchange)
        ctx.current = None
        self.executor.discard(r.id for r in exchange.requests)

        if not any(
            o.status in (OutcomeStatus.COMPLETED, OutcomeStatus.FAILED) for o in exchange.outcomes
        ):
            # every request in this round was declined
            return self._finish(ctx, format_outcomes(ctx.outcomes))

        ctx.advance(TurnState.AWAITING_FOLLOWUP)
        last_round = ctx.round >= self.settings.max_tool_rounds
        followup = ctx.request.model_copy(
            update={
                "exchanges": list(ctx.exchanges),
                "temperature": self.settings.followup_temperature,
            }
        )
        ctx.round += 1

        try:
            reply = await self.provider.generate(
                followup,
                None if last_round else self.registry.operations(),
                turn_id=ctx.call_prefix,
            )
        except ProviderError as exc:
            logger.error(
                "[agent] turn %s: follow-up call failed, using basic formatting: %s",
                ctx.turn_id,
                exc,
                exc_info=True,
            )
            return self._finish(ctx, format_outcomes(ctx.outcomes))

        if reply.requests:
            if not last_round:
                return await self._run_tools(ctx, reply)
            logger.warning(
                "[agent] turn %s: ignoring %d tool call(s) after the final round",
                ctx.turn_id,
                len(reply.requests),
            )
        return self._finish(ctx, reply.text or format_outcomes(ctx.outcomes))

    async def _converse_with_rules(self, turn_id: str, user_text: str) -> TurnResult:
        ctx = _TurnContext(turn_id=turn_id, request=ProviderRequest())
        request = self.rules.match(user_text, turn_id)
        if request is None:
            return self._finish(ctx, HELP_TEXT)

        ctx.advance(TurnState.EXECUTING)
        ctx.outcomes.extend(await self.executor.execute([request]))
        return self._finish(ctx, format_outcomes(ctx.outcomes))

    def _finish(self, ctx: _TurnContext, text: str) -> TurnResult:
        ctx.advance(TurnState.DONE)
        structured = ctx.structured_data()
        return TurnResult(
            turn_id=ctx.turn_id,
            status=TurnState.DONE,
            final_text=text,
            structured_data=structured,
            operations_used=ctx.operations_used(),
            outcomes=list(ctx.outcomes),
            messages=[Message(role=Role.ASSISTANT, content=text, structured_data=structured)],
        )

    def _build_prompt(self) -> str:
        schema = self.schema_context or SchemaContext()
        return build_system_prompt(
            self.registry.list(),
            sandbox=self.settings.sandbox_name,
            schema_fields=schema.common_fields,
            profile_attributes=schema.profile_attributes,
        )

    def _approvals(self, request_ids: list[str]) -> list[PendingApproval]:
        approvals: list[PendingApproval] = []
        for request_id in request_ids:
            ticket = self.executor.ticket(request_id)
            if ticket is not None:
                approvals.append(ticket.pending_approval())
        return approvals

    async def _expire_oldest(self, keep: _TurnContext) -> None:
        """Cancel the oldest suspended turns beyond ``max_pending_approvals``.

        ``keep`` (the turn that just suspended) is never expired.  Requests
        whose decision is already being applied are left to finish.
        """
        limit = self.settings.max_pending_approvals
        while len(self._suspended) > limit:
            # dicts keep insertion order, so the first entry is the oldest
            oldest = next(iter(self._suspended.values()))
            if oldest is keep:
                break
            expired = [rid for rid, ctx in self._suspended.items() if ctx is oldest]
            cancelled: list[str] = []
            for request_id in expired:
                self._suspended.pop(request_id, None)
                ticket = self.executor.ticket(request_id)
                if ticket is None or ticket.decided:
                    continue
                oldest.record(await self.executor.resolve(request_id, Decision.CANCEL))
                cancelled.append(request_id)
            self.executor.discard(cancelled)
            logger.warning(
                "[agent] turn %s: cancelled %d unanswered approval(s), more than %d pending",
                oldest.turn_id,
                len(cancelled),
                limit,
            )
            if not oldest.undecided():
                oldest.advance(TurnState.DONE)


def build_copilot(settings: CopilotSettings | None = None) -> Copilot:
    """Wire the production copilot: platform client, catalog, provider."""
    settings = settings or CopilotSettings()
    platform = PlatformClient.from_settings(settings)
    registry = OperationRegistry(build_catalog(platform))
    provider = create_provider(settings)
    return Copilot(registry, provider, settings=settings, platform=platform)
