"""High-level LLM client abstraction.

Provides a unified interface for the language-model completion API used by
plan synthesis.  Supported providers:

  - ``anthropic``: Anthropic Claude
  - ``openai``: OpenAI GPT
  - ``deepseek``: DeepSeek (OpenAI-compatible at api.deepseek.com)
  - ``openrouter``: OpenRouter (OpenAI-compatible)
  - ``ollama``: Ollama local models (OpenAI-compatible at localhost:11434)
  - ``openai_compatible``: Any OpenAI-compatible API with a custom base_url

Every failure (network error, non-success status, missing message content)
surfaces as :class:`~study_planner.utils.exceptions.LLMError`.
"""

from __future__ import annotations

from study_planner.utils.exceptions import LLMError
from study_planner.utils.logging import get_logger

# Well-known OpenAI-compatible providers and their default base URLs.
_KNOWN_COMPATIBLE_PROVIDERS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "deepseek": "https://api.deepseek.com",
    "openrouter": "https://openrouter.ai/api/v1",
    "ollama": "http://localhost:11434/v1",
    "together": "https://api.together.xyz/v1",
    "groq": "https://api.groq.com/openai/v1",
    "moonshot": "https://api.moonshot.cn/v1",
    "zhipu": "https://open.bigmodel.cn/api/paas/v4",
    "siliconflow": "https://api.siliconflow.cn/v1",
}

# Providers that accept requests without an API key.
LOCAL_PROVIDERS = {"ollama"}


class LLMClient:
    """Unified LLM client that delegates to a provider-specific backend.

    Parameters
    ----------
    provider:
        Provider name, one of ``"anthropic"``, ``"openai_compatible"``, or any key
        in the well-known providers registry.
    api_key:
        API key for the chosen provider.
    model:
        Model identifier (e.g. ``"deepseek-chat"``, ``"gpt-4o"``).
    base_url:
        Optional base URL.  Required for ``openai_compatible``; overrides
        the default for well-known compatible providers.
    timeout:
        Per-request timeout in seconds passed to the SDK client.
    """

    def __init__(
        self,
        provider: str,
        api_key: str,
        model: str,
        base_url: str | None = None,
        timeout: float = 120.0,
        temperature: float = 0.3,
        max_tokens: int = 8000,
    ):
        self.provider = provider
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.logger = get_logger("llm")
        self._provider_client = self._init_provider()

    def _init_provider(self):
        """Instantiate the appropriate provider backend."""
        if self.provider == "anthropic":
            from study_planner.core.llm.providers.anthropic_provider import AnthropicProvider

            return AnthropicProvider(
                self.api_key,
                self.model,
                timeout=self.timeout,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )

        if self.provider in _KNOWN_COMPATIBLE_PROVIDERS or self.provider == "openai_compatible":
            from study_planner.core.llm.providers.openai_compatible_provider import (
                OpenAICompatibleProvider,
            )

            base_url = self.base_url or _KNOWN_COMPATIBLE_PROVIDERS.get(self.provider, "")
            if not base_url:
                raise LLMError(
                    self.provider,
                    "base_url is required for openai_compatible provider. "
                    "Set LLM_BASE_URL in your .env file.",
                )
            if not self.api_key and self.provider not in LOCAL_PROVIDERS and self.provider != "openai_compatible":
                raise LLMError(self.provider, "API key is required but was empty.")
            return OpenAICompatibleProvider(
                api_key=self.api_key,
                model=self.model,
                base_url=base_url,
                provider_name=self.provider,
                timeout=self.timeout,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )

        raise LLMError(
            self.provider,
            f"Unknown provider: {self.provider}. "
            f"Supported: anthropic, {', '.join(_KNOWN_COMPATIBLE_PROVIDERS.keys())}, openai_compatible",
        )

    async def complete(self, system: str, user: str, json_mode: bool = True) -> str:
        """Send a system + user message pair and return the raw text response.

        Raises :class:`LLMError` on provider failures and on responses with
        no message content.
        """
        self.logger.info(
            "llm_complete",
            provider=self.provider,
            model=self.model,
            system_len=len(system),
            user_len=len(user),
        )
        try:
            result = await self._provider_client.complete(system, user, json_mode=json_mode)
        except LLMError:
            raise
        except Exception as exc:
            self.logger.error("llm_complete_error", error=str(exc))
            raise LLMError(self.provider, str(exc)) from exc

        self.logger.info("llm_complete_success", response_len=len(result))
        return result
