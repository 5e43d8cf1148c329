"""Generic OpenAI-compatible provider for the LLM client abstraction.

Serves OpenAI itself and every service exposing an OpenAI-compatible chat
completions API, including:
  - DeepSeek (``https://api.deepseek.com``)
  - OpenRouter (``https://openrouter.ai/api/v1``)
  - Ollama (``http://localhost:11434/v1``)
  - Any other service with a compatible ``/chat/completions`` endpoint
"""

from __future__ import annotations

from study_planner.utils.exceptions import LLMError
from study_planner.utils.logging import get_logger

logger = get_logger("llm.openai_compatible")

JSON_INSTRUCTION = (
    "\n\nIMPORTANT: Respond ONLY with valid JSON. "
    "Do not include markdown code fences or any other text."
)


class OpenAICompatibleProvider:
    """Provider for any OpenAI-compatible API endpoint.

    Parameters
    ----------
    api_key:
        API key (an empty string is sent as ``"none"`` for services that do
        not require authentication, e.g. local Ollama).
    model:
        Model identifier.
    base_url:
        Base URL for the API (e.g. ``"https://api.deepseek.com"``).
    provider_name:
        Human-readable name used in log messages and error reports.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        provider_name: str = "openai_compatible",
        timeout: float = 120.0,
        temperature: float = 0.3,
        max_tokens: int = 8000,
    ):
        try:
            import openai
        except ImportError as exc:
            raise LLMError(
                provider_name,
                "The 'openai' package is required. "
                "Install it with: pip install openai",
            ) from exc

        if not base_url:
            raise LLMError(provider_name, "base_url is required but was empty.")

        effective_key = api_key if api_key else "none"

        self.client = openai.AsyncOpenAI(
            api_key=effective_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=1,
        )
        self.model = model
        self.provider_name = provider_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._json_mode_supported = True

    async def complete(self, system: str, user: str, json_mode: bool = True) -> str:
        """Call the remote API and return the assistant's text response.

        In JSON mode ``response_format`` is requested first; servers that
        reject it are retried once without it and remembered.
        """
        if json_mode:
            system += JSON_INSTRUCTION
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        try:
            if json_mode and self._json_mode_supported:
                try:
                    response = await self._create(messages, response_format={"type": "json_object"})
                except Exception as exc:
                    if not _is_bad_request(exc):
                        raise
                    logger.debug("openai_compatible_no_json_mode", provider=self.provider_name)
                    self._json_mode_supported = False
                    response = await self._create(messages)
            else:
                response = await self._create(messages)
        except Exception as exc:
            logger.error(
                "openai_compatible_complete_error",
                provider=self.provider_name,
                error=str(exc),
            )
            raise LLMError(self.provider_name, str(exc)) from exc

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = getattr(message, "content", None) if message else None
        if not content:
            logger.error("openai_compatible_empty_content", provider=self.provider_name)
            raise LLMError(self.provider_name, "Response is missing message content.")
        return content

    async def _create(self, messages: list[dict], **extra):
        return await self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            messages=messages,
            **extra,
        )


def _is_bad_request(exc: Exception) -> bool:
    return getattr(exc, "status_code", None) == 400
