"""platform_copilot/models.py

Data contracts for the orchestration core.
No business logic lives here beyond small conveniences on Conversation.
"""

from __future__ import annotations

# Standard Library
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Third-Party Libraries
from pydantic import BaseModel, Field

DEFAULT_TITLES: frozenset[str] = frozenset({"New Conversation", "Chat Session"})
TITLE_LENGTH: int = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class OutcomeStatus(str, Enum):
    """Caller-facing status of one operation request."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    CANCELLED = "CANCELLED"


class ApprovalState(str, Enum):
    """Lifecycle of a request on an approval-gated operation."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class TurnState(str, Enum):
    """Per-user-turn orchestration state."""

    AWAITING_MODEL = "AWAITING_MODEL"
    HAS_TOOL_CALLS = "HAS_TOOL_CALLS"
    EXECUTING = "EXECUTING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    AWAITING_FOLLOWUP = "AWAITING_FOLLOWUP"
    DONE = "DONE"
    FAILED = "FAILED"


class CollapsePolicy(str, Enum):
    """Which turn survives when consecutive same-role turns are collapsed."""

    KEEP_FIRST = "keep_first"
    KEEP_LAST = "keep_last"


class Decision(str, Enum):
    APPROVE = "approve"
    CANCEL = "cancel"


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class Message(BaseModel):
    """One entry of the durable conversation history."""

    role: Role
    content: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)
    structured_data: Any = Field(default=None, description="Result payload shown by the dashboard.")
    pending_action: str | None = Field(
        default=None, description="Request id awaiting a human decision, if any."
    )


class Conversation(BaseModel):
    """Caller-owned conversation record.

    The orchestration core never writes to storage; it only receives a bounded
    slice of ``messages`` and returns new messages for the caller to append.
    """

    id: str = Field(default_factory=lambda: f"conv_{uuid.uuid4().hex[:12]}")
    title: str = "New Conversation"
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    messages: list[Message] = Field(default_factory=list)

    def recent(self, limit: int) -> list[Message]:
        """Return the most recent ``limit`` messages in chronological order."""
        if limit <= 0:
            return []
        return list(self.messages[-limit:])

    def append(self, messages: list[Message]) -> None:
        """Append new messages, bump ``updated_at`` and auto-title if needed."""
        if not messages:
            return
        self.messages.extend(messages)
        self.updated_at = _utcnow()
        if self.title in DEFAULT_TITLES:
            first_user = next((m for m in self.messages if m.role == Role.USER), None)
            if first_user is not None and first_user.content:
                text = first_user.content
                self.title = text[:TITLE_LENGTH] + ("..." if len(text) > TITLE_LENGTH else "")


# ---------------------------------------------------------------------------
# Operation requests and outcomes
# ---------------------------------------------------------------------------


class OperationSummary(BaseModel):
    """Handler-free projection of a registered Operation."""

    name: str
    description: str
    parameters: dict[str, Any]
    requires_approval: bool


class OperationRequest(BaseModel):
    """A model-proposed invocation of one operation."""

    id: str
    operation_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    originating_turn_id: str = ""
    # id as issued by the provider, echoed back verbatim on the wire
    provider_call_id: str = ""


class OperationFailure(BaseModel):
    kind: str
    message: str


class OperationOutcome(BaseModel):
    """Result of one request as reported back to the caller and the model."""

    request_id: str
    operation_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    status: OutcomeStatus
    result: Any = None
    error: OperationFailure | None = None
    executed: bool = Field(default=False, description="True once the handler was invoked.")

    def to_payload(self) -> dict[str, Any]:
        """Render the outcome as the JSON body folded into a tool-result turn."""
        if self.status == OutcomeStatus.COMPLETED:
            return {"status": self.status.value, "result": self.result}
        if self.status == OutcomeStatus.CANCELLED:
            return {
                "status": self.status.value,
                "note": "The operator declined this action; it was not executed.",
            }
        payload: dict[str, Any] = {"status": self.status.value}
        if self.error is not None:
            payload["error"] = self.error.model_dump()
        return payload


class PendingApproval(BaseModel):
    """What the approval surface shows for a suspended request."""

    request_id: str
    operation_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    description: str
    turn_id: str = ""


class ApprovalDecision(BaseModel):
    request_id: str
    decision: Decision


class TurnResult(BaseModel):
    """Everything the dashboard needs after one ``converse`` or approval call."""

    turn_id: str
    status: TurnState
    final_text: str = ""
    structured_data: Any = None
    operations_used: list[str] = Field(default_factory=list)
    pending_approvals: list[PendingApproval] = Field(default_factory=list)
    outcomes: list[OperationOutcome] = Field(default_factory=list)
    messages: list[Message] = Field(
        default_factory=list, description="New messages for the caller to append."
    )

    @property
    def pending_approval(self) -> PendingApproval | None:
        return self.pending_approvals[0] if self.pending_approvals else None


# ---------------------------------------------------------------------------
# Schema context
# ---------------------------------------------------------------------------


class SchemaField(BaseModel):
    """One flattened field path from a schema or the profile union."""

    path: str
    type: str = "string"
    title: str = ""
    enum: list[Any] = Field(default_factory=list)


class SchemaContext(BaseModel):
    """Field paths handed to the model so it writes valid SQL and PQL."""

    total_fields: int = 0
    common_fields: list[SchemaField] = Field(default_factory=list)
    profile_title: str = ""
    profile_attributes: list[SchemaField] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Provider-facing request / reply
# ---------------------------------------------------------------------------


class ProviderTurn(BaseModel):
    role: Role
    content: str


class ToolExchange(BaseModel):
    """One round of model tool calls and the outcomes folded back to it."""

    assistant_text: str = ""
    requests: list[OperationRequest] = Field(default_factory=list)
    outcomes: list[OperationOutcome] = Field(default_factory=list)


class ProviderRequest(BaseModel):
    """Provider-agnostic payload produced by the Conversation Builder."""

    system_instruction: str | None = None
    turns: list[ProviderTurn] = Field(default_factory=list)
    exchanges: list[ToolExchange] = Field(default_factory=list)
    temperature: float | None = None
    max_output_tokens: int | None = None


class ProviderReply(BaseModel):
    """Normalized inbound model response."""

    text: str = ""
    requests: list[OperationRequest] = Field(default_factory=list)
