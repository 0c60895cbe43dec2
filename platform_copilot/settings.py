"""platform_copilot/settings.py

Runtime configuration loaded from environment variables / .env file.

Configure via environment variables:
  LLM_PROVIDER             — gemini | openai | ollama (empty: auto-detect)
  GEMINI_API_KEY           — enables the Gemini adapter
  OPENAI_API_KEY           — enables the OpenAI-compatible adapter
  OLLAMA_HOST              — enables the Ollama adapter
  PLATFORM_URL             — base URL of the data platform REST API
  PLATFORM_ACCESS_TOKEN    — bearer token for platform calls
"""

from __future__ import annotations

# Third-Party Libraries
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CopilotSettings(BaseSettings):
    """Runtime configuration for the copilot.

    Attributes:
        llm_provider: Explicit provider choice; empty means pick the first
            provider whose credentials are present.
        history_window: Number of prior messages handed to the Conversation
            Builder.
        max_tool_rounds: Execute/re-prompt rounds per user turn.  Bounded so a
            single question can never turn into an open-ended agent loop.
        max_concurrency: Cap on concurrently running handlers per batch;
            ``None`` leaves fan-out unbounded (logged).
        result_char_limit: Serialized tool results above this length are
            truncated before being sent back to the model.
        max_pending_approvals: Requests left waiting for an operator decision
            across all conversations.  When exceeded, the oldest suspended
            turns are cancelled and forgotten.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- language model -----------------------------------------------------
    llm_provider: str = Field(
        "",
        description="gemini | openai | ollama; empty auto-detects from credentials.",
    )
    gemini_api_key: str = Field("", description="Google AI Studio API key.")
    gemini_model: str = Field("gemini-2.0-flash", description="Gemini model name.")
    gemini_base_url: str = Field(
        "https://generativelanguage.googleapis.com",
        description="Gemini REST endpoint.",
    )
    openai_api_key: str = Field("", description="OpenAI (or compatible) API key.")
    openai_model: str = Field("gpt-4o-mini", description="Chat Completions model name.")
    openai_base_url: str = Field(
        "",
        description="Optional OpenAI-compatible base URL (Azure, local gateway).",
    )
    ollama_host: str = Field("", description="Ollama server URL, e.g. http://ollama:11434.")
    ollama_model: str = Field("llama3.1", description="Ollama model tag; must support tools.")

    temperature: float = Field(0.7, description="Sampling temperature for the first call.")
    max_output_tokens: int = Field(4096, description="Output token cap per model call.")
    followup_temperature: float = Field(
        0.5,
        description="Sampling temperature for the summarizing follow-up call.",
    )

    # -- orchestration ------------------------------------------------------
    history_window: int = Field(20, description="Prior messages fed to the model.")
    max_tool_rounds: int = Field(
        1,
        ge=1,
        description="Execute/re-prompt rounds per user turn.",
    )
    max_concurrency: int | None = Field(
        None,
        ge=1,
        description="Concurrent handler cap per batch; unset means unbounded.",
    )
    result_char_limit: int = Field(
        3000,
        description="Truncate serialized tool results beyond this many characters.",
    )
    max_pending_approvals: int = Field(
        100,
        ge=1,
        description="Unanswered approvals kept; the oldest turns are cancelled beyond this.",
    )

    # -- platform -----------------------------------------------------------
    platform_url: str = Field(
        "https://platform.adobe.io",
        description="Base URL of the data platform REST API.",
    )
    platform_api_key: str = Field("", description="Client id sent as x-api-key.")
    platform_org_id: str = Field("", description="Organization id (x-gw-ims-org-id).")
    sandbox_name: str = Field("prod", description="Sandbox targeted by platform calls.")
    platform_access_token: str = Field("", description="Bearer token for platform calls.")
    platform_timeout: float = Field(30.0, description="Per-request platform timeout (s).")

    # -- api ----------------------------------------------------------------
    api_host: str = Field("0.0.0.0", description="Bind address for the HTTP surface.")
    api_port: int = Field(8000, description="Port for the HTTP surface.")
