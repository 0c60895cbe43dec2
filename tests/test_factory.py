"""tests/test_factory.py

Unit tests for settings loading and provider selection.
"""

from __future__ import annotations

# Third-Party Libraries
import pytest

# Local Modules
from platform_copilot.providers.factory import create_provider
from platform_copilot.providers.gemini import GeminiAdapter
from platform_copilot.providers.ollama_chat import OllamaChatAdapter
from platform_copilot.providers.openai_chat import OpenAIChatAdapter
from platform_copilot.settings import CopilotSettings


class TestCopilotSettings:
    """Test suite for CopilotSettings."""

    def test_defaults(self, settings: CopilotSettings) -> None:
        """Test the orchestration defaults."""
        assert settings.history_window == 20
        assert settings.max_tool_rounds == 1
        assert settings.max_concurrency is None
        assert settings.sandbox_name == "prod"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that environment variables populate fields."""
        monkeypatch.setenv("LLM_PROVIDER", "ollama")
        monkeypatch.setenv("MAX_CONCURRENCY", "4")
        monkeypatch.setenv("SANDBOX_NAME", "dev")

        settings = CopilotSettings(_env_file=None)

        assert settings.llm_provider == "ollama"
        assert settings.max_concurrency == 4
        assert settings.sandbox_name == "dev"

    def test_round_bound_must_be_positive(self) -> None:
        """Test that zero tool rounds is rejected."""
        with pytest.raises(ValueError):
            CopilotSettings(_env_file=None, max_tool_rounds=0)


class TestCreateProvider:
    """Test suite for create_provider."""

    def test_no_credentials_means_rule_fallback(self, settings: CopilotSettings) -> None:
        """Test that nothing configured yields no adapter."""
        assert create_provider(settings) is None

    def test_gemini_key_is_detected(self, settings: CopilotSettings) -> None:
        """Test auto-detection from a Gemini key."""
        settings.gemini_api_key = "g-key"
        settings.result_char_limit = 1200

        adapter = create_provider(settings)

        assert isinstance(adapter, GeminiAdapter)
        assert adapter.model == settings.gemini_model
        assert adapter.result_char_limit == 1200

    def test_openai_key_is_detected(self, settings: CopilotSettings) -> None:
        """Test auto-detection from an OpenAI key."""
        settings.openai_api_key = "sk-test"

        assert isinstance(create_provider(settings), OpenAIChatAdapter)

    def test_explicit_choice_wins(self, settings: CopilotSettings) -> None:
        """Test that llm_provider overrides detection."""
        settings.gemini_api_key = "g-key"
        settings.llm_provider = "Ollama"

        adapter = create_provider(settings)

        assert isinstance(adapter, OllamaChatAdapter)
        assert adapter.model == settings.ollama_model

    def test_unknown_provider(self, settings: CopilotSettings) -> None:
        """Test that a typo in llm_provider fails loudly."""
        settings.llm_provider = "gpt"

        with pytest.raises(ValueError, match="Unknown llm_provider"):
            create_provider(settings)
