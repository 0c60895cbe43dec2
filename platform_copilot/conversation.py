"""platform_copilot/conversation.py

Conversation Builder: turns durable message history into a provider request.

The stored history always keeps true chronological order; every provider
constraint (system instruction placement, user-first, strict alternation,
bounded window) is applied here as a pure transformation, so it is testable
without any network call.
"""

from __future__ import annotations

# Standard Library
import logging
from collections.abc import Iterable, Mapping
from typing import Any

# Local Modules
from platform_copilot.models import (
    CollapsePolicy,
    Message,
    ProviderRequest,
    ProviderTurn,
    Role,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW: int = 20

_DIALOGUE_ROLES: frozenset[Role] = frozenset({Role.USER, Role.ASSISTANT})


def _coerce(entry: Message | Mapping[str, Any]) -> Message | None:
    """Accept stored Messages or plain ``{"role", "content"}`` dicts."""
    if isinstance(entry, Message):
        return entry
    role = entry.get("role", "")
    if role not in {r.value for r in Role}:
        return None
    return Message(role=role, content=str(entry.get("content") or ""))


def normalize_turns(
    messages: Iterable[Message],
    policy: CollapsePolicy = CollapsePolicy.KEEP_FIRST,
) -> list[ProviderTurn]:
    """Reduce user/assistant messages to a strictly alternating sequence.

    Steps: drop leading non-user turns, collapse consecutive same-role turns
    according to ``policy``, and drop a trailing user turn (the new user text
    is appended separately by the caller).

    Args:
        messages: Chronological messages; system and empty turns are ignored.
        policy: Which turn of a same-role run survives.

    Returns:
        Turns alternating ``user, assistant, ...`` and ending in ``assistant``,
        or an empty list.
    """
    turns = [
        ProviderTurn(role=m.role, content=m.content)
        for m in messages
        if m.role in _DIALOGUE_ROLES and m.content
    ]

    start = 0
    while start < len(turns) and turns[start].role != Role.USER:
        start += 1
    turns = turns[start:]

    collapsed: list[ProviderTurn] = []
    for turn in turns:
        if collapsed and collapsed[-1].role == turn.role:
            if policy == CollapsePolicy.KEEP_LAST:
                collapsed[-1] = turn
            continue
        collapsed.append(turn)

    if collapsed and collapsed[-1].role == Role.USER:
        collapsed.pop()

    return collapsed


class ConversationBuilder:
    """Builds a ProviderRequest from history plus a new user turn.

    Args:
        window: Maximum number of prior messages considered.
        collapse_policy: Provider rule for same-role runs.
        supports_system_instruction: When False, the system instruction is
            folded into the first user turn instead of being sent standalone.
    """

    def __init__(
        self,
        window: int = DEFAULT_HISTORY_WINDOW,
        collapse_policy: CollapsePolicy = CollapsePolicy.KEEP_FIRST,
        supports_system_instruction: bool = True,
    ) -> None:
        self.window = window
        self.collapse_policy = collapse_policy
        self.supports_system_instruction = supports_system_instruction

    def build(
        self,
        history: Iterable[Message | Mapping[str, Any]],
        new_user_text: str,
        system_prompt: str | None = None,
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> ProviderRequest:
        """Produce the provider-agnostic request for one model call.

        The most recent system message in ``history`` overrides
        ``system_prompt``; neither is ever placed inline in the turn sequence.
        """
        messages = [m for m in (_coerce(e) for e in history) if m is not None]
        if self.window > 0:
            messages = messages[-self.window :]
        else:
            messages = []

        instruction = system_prompt or None
        for message in messages:
            if message.role == Role.SYSTEM and message.content:
                instruction = message.content

        turns = normalize_turns(messages, self.collapse_policy)
        turns.append(ProviderTurn(role=Role.USER, content=new_user_text))

        if instruction and not self.supports_system_instruction:
            # turns[0] is always a user turn at this point
            turns[0] = ProviderTurn(
                role=Role.USER, content=f"{instruction}\n\n{turns[0].content}"
            )
            instruction = None

        logger.debug(
            "[builder] %d history message(s) -> %d turn(s), system=%s",
            len(messages),
            len(turns),
            bool(instruction),
        )
        return ProviderRequest(
            system_instruction=instruction,
            turns=turns,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
