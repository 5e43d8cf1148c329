"""FastAPI dependency functions and service construction.

The task manager is expensive to build (it owns the running jobs), so it is
created once during the app lifespan by :func:`build_task_manager`, stored
on ``app.state`` and simply looked up per request.
"""

from __future__ import annotations

from fastapi import Request

from study_planner.config import Settings, settings
from study_planner.core.llm.client import LOCAL_PROVIDERS, LLMClient
from study_planner.core.plan.engine import PlanSynthesisEngine
from study_planner.core.task.manager import GenerationTaskManager
from study_planner.core.task.store import FileTaskStore
from study_planner.output.repository import FilePlanRepository
from study_planner.services.owners import StaticOwnerDirectory
from study_planner.utils.logging import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Task manager (initialised during app lifespan)
# ---------------------------------------------------------------------------

def get_task_manager(request: Request) -> GenerationTaskManager:
    """Return the task manager stored on ``app.state``."""
    return request.app.state.task_manager


# ---------------------------------------------------------------------------
# LLM client (optional -- returns None when no API key is configured)
# ---------------------------------------------------------------------------

def _resolve_api_key(config: Settings) -> str:
    """Pick the API key for the configured provider.

    Resolution order:
      1. Provider-specific key (``ANTHROPIC_API_KEY``, ``OPENAI_API_KEY``,
         ``DEEPSEEK_API_KEY``, ``OPENROUTER_API_KEY``)
      2. Generic ``LLM_API_KEY``
    """
    provider_keys: dict[str, str] = {
        "anthropic": config.anthropic_api_key,
        "openai": config.openai_api_key,
        "deepseek": config.deepseek_api_key,
        "openrouter": config.openrouter_api_key,
    }
    return provider_keys.get(config.llm_provider) or config.llm_api_key


def get_llm_client(config: Settings = settings) -> LLMClient | None:
    """Build an LLM client if an API key is available.

    Returns ``None`` when no usable key is found **and** the provider needs
    one; plan synthesis then always uses the deterministic fallback.
    """
    api_key = _resolve_api_key(config)
    provider = config.llm_provider
    if not api_key and provider not in LOCAL_PROVIDERS and provider != "openai_compatible":
        logger.warning("llm_client_disabled", provider=provider, reason="no API key configured")
        return None

    return LLMClient(
        provider,
        api_key,
        config.llm_model,
        base_url=config.llm_base_url or None,
        timeout=config.llm_timeout_seconds,
        temperature=config.llm_temperature,
        max_tokens=config.llm_max_tokens,
    )


# ---------------------------------------------------------------------------
# Generation pipeline
# ---------------------------------------------------------------------------

def build_task_manager(config: Settings = settings, llm_client=None) -> GenerationTaskManager:
    """Wire the store, engine, repository and owner directory together.

    *llm_client* overrides the client built from *config*; pass one to run
    the service against a stub model.
    """
    llm = llm_client if llm_client is not None else get_llm_client(config)
    engine = PlanSynthesisEngine(llm_client=llm, timeout=config.llm_timeout_seconds)
    return GenerationTaskManager(
        store=FileTaskStore(config.task_dir),
        engine=engine,
        repository=FilePlanRepository(config.plan_dir),
        owners=StaticOwnerDirectory(config.known_owner_ids),
        estimated_duration=config.estimated_generation_seconds,
        heartbeat_interval=config.heartbeat_interval_seconds,
        retention=config.task_retention_hours * 3600,
        max_concurrent_jobs=config.max_concurrent_jobs,
        max_jobs_per_owner=config.max_jobs_per_owner,
    )
