from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # LLM
    llm_provider: str = "deepseek"
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    deepseek_api_key: str = ""
    openrouter_api_key: str = ""
    llm_api_key: str = ""  # Generic key, used when the provider-specific key is empty
    llm_model: str = "deepseek-chat"
    llm_base_url: str = ""  # Custom base URL for the openai_compatible provider
    llm_timeout_seconds: float = 120.0
    llm_temperature: float = 0.3
    llm_max_tokens: int = 8000

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    json_logs: bool = False

    # Storage
    task_dir: str = "./data/tasks"
    plan_dir: str = "./data/plans"

    # Generation jobs
    estimated_generation_seconds: float = 180.0
    heartbeat_interval_seconds: float = 5.0
    task_retention_hours: float = 24.0
    max_concurrent_jobs: int = 8
    max_jobs_per_owner: int = 1
    known_owner_ids: list[str] = []  # Empty accepts any non-empty owner id

    # Status polling client
    poll_interval_seconds: float = 5.0
    poll_max_errors: int = 5

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
