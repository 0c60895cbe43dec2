"""
platform_copilot/api.py

FastAPI HTTP interface for the dashboard's agent panel.

Endpoints:
  GET  /health                — liveness probe
  GET  /agent/tools           — registered operations (no handlers)
  GET  /agent/approvals       — requests waiting for an operator decision
  GET  /agent/schema-context  — field paths loaded into the system prompt
  POST /agent/chat            — process one user message
  POST /agent/approve         — approve or cancel a suspended request
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from platform_copilot.agent import Copilot, build_copilot
from platform_copilot.errors import ApprovalError, UnknownApprovalError
from platform_copilot.models import (
    ApprovalDecision,
    Message,
    OperationSummary,
    PendingApproval,
    SchemaContext,
    TurnResult,
)
from platform_copilot.settings import CopilotSettings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="The operator's message.")
    history: list[Message] = Field(
        default_factory=list,
        description="Prior messages of the conversation, oldest first.",
    )


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------


def create_app(copilot: Copilot) -> FastAPI:
    """Build the HTTP app around an already wired copilot.

    Schema context is loaded into the copilot's prompt at startup and its
    network clients are closed when the app shuts down.
    """

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await copilot.load_schema_context()
        yield
        await copilot.aclose()

    app = FastAPI(
        title="Platform Copilot",
        version="0.1.0",
        description=(
            "Natural-language assistant for the data platform dashboard. "
            "Write operations are held for operator approval."
        ),
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Liveness probe."""
        provider = copilot.provider.name if copilot.provider else "rules"
        return {"status": "ok", "server": "platform-copilot", "provider": provider}

    @app.get("/agent/tools", response_model=list[OperationSummary], tags=["agent"])
    async def tools() -> list[OperationSummary]:
        return copilot.registry.list()

    @app.get("/agent/approvals", response_model=list[PendingApproval], tags=["agent"])
    async def approvals() -> list[PendingApproval]:
        return copilot.pending_approvals()

    @app.get("/agent/schema-context", response_model=SchemaContext, tags=["agent"])
    async def schema_context() -> SchemaContext:
        return copilot.schema_context or SchemaContext()

    @app.post("/agent/chat", response_model=TurnResult, tags=["agent"])
    async def chat(body: ChatRequest) -> TurnResult:
        """Process one operator message.

        Returns a final answer, a pending-approval prompt, or (status
        ``FAILED``) an apology when the language model is unreachable.
        """
        return await copilot.converse(body.history, body.message)

    @app.post("/agent/approve", response_model=TurnResult, tags=["agent"])
    async def approve(body: ApprovalDecision) -> TurnResult:
        """Record an operator decision and resume the suspended turn.

        Raises:
            HTTPException: 404 for an unknown request id, 409 when the
                request was already decided.
        """
        try:
            return await copilot.resolve_approval(body.request_id, body.decision)
        except UnknownApprovalError as exc:
            raise HTTPException(status_code=404, detail=exc.message) from exc
        except ApprovalError as exc:
            raise HTTPException(status_code=409, detail=exc.message) from exc

    return app


def create_default_app() -> FastAPI:
    """App factory used by ``run_api``: settings from env / .env."""
    return create_app(build_copilot(CopilotSettings()))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_api() -> None:
    """Start the FastAPI server via uvicorn."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    settings = CopilotSettings()
    logger.info("Starting platform-copilot API on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run(
        "platform_copilot.api:create_default_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
        reload=False,
    )


if __name__ == "__main__":
    run_api()
