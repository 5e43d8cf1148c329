"""Anthropic Claude provider for the LLM client abstraction.

Wraps the async ``anthropic`` SDK client to expose the ``complete``
interface expected by :class:`~study_planner.core.llm.client.LLMClient`.
"""

from __future__ import annotations

from study_planner.utils.exceptions import LLMError
from study_planner.utils.logging import get_logger

logger = get_logger("llm.anthropic")

JSON_INSTRUCTION = (
    "\n\nIMPORTANT: Respond ONLY with valid JSON. "
    "Do not include markdown code fences or any other text."
)


class AnthropicProvider:
    """Provider implementation for Anthropic Claude models.

    Parameters
    ----------
    api_key:
        Anthropic API key.
    model:
        Model identifier, e.g. ``"claude-sonnet-4-20250514"``.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float = 120.0,
        temperature: float = 0.3,
        max_tokens: int = 8000,
    ):
        try:
            import anthropic
        except ImportError as exc:
            raise LLMError(
                "anthropic",
                "The 'anthropic' package is not installed. "
                "Install it with: pip install anthropic",
            ) from exc

        if not api_key:
            raise LLMError("anthropic", "API key is required but was empty.")

        self.client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=1)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def complete(self, system: str, user: str, json_mode: bool = True) -> str:
        """Call Claude and return the text of the first content block."""
        if json_mode:
            system += JSON_INSTRUCTION
        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except Exception as exc:
            logger.error("anthropic_complete_error", error=str(exc))
            raise LLMError("anthropic", str(exc)) from exc

        blocks = getattr(message, "content", None) or []
        text = "".join(getattr(block, "text", "") or "" for block in blocks)
        if not text:
            logger.error("anthropic_empty_content", stop_reason=getattr(message, "stop_reason", None))
            raise LLMError("anthropic", "Response is missing message content.")
        return text
