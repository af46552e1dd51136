import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Storage
    DATABASE_URL: str = "sqlite:///database/app.db"  # subscriptions
    TASKS_DATABASE_URL: str = "sqlite:///database/tasks.db"  # practice tasks (read-only)

    # Auth
    JWT_SECRET: Optional[str] = None

    # AI providers
    AI_PROVIDER: str = "ollama"  # openai | deepseek | ollama
    AI_FALLBACK_PROVIDER: Optional[str] = "deepseek"

    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"

    DEEPSEEK_API_KEY: Optional[str] = None
    DEEPSEEK_MODEL: str = "deepseek-chat"
    DEEPSEEK_BASE_URL: str = "https://api.deepseek.com/v1"

    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.2"

    # Retry / timeouts (seconds)
    AI_MAX_ATTEMPTS: int = 3
    AI_RETRY_BASE_DELAY_SECONDS: float = 2.0
    AI_RETRY_MAX_DELAY_SECONDS: float = 15.0
    AI_LOCAL_TIMEOUT_SECONDS: float = 180.0
    AI_HOSTED_TIMEOUT_SECONDS: float = 30.0
    AI_PROBE_TIMEOUT_SECONDS: float = 2.0
    AI_REQUEST_TIMEOUT_SECONDS: float = 600.0  # enclosing AI endpoint budget

    # RAG
    RAG_CANDIDATE_POOL: int = 500

    # Product
    UPGRADE_URL: str = "/pricing"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


_PROVIDER_KEYS = {
    "openai": "OPENAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}


def _provider_chain(cfg) -> List[str]:
    chain = [str(getattr(cfg, "AI_PROVIDER", "") or "").lower()]
    fallback = str(getattr(cfg, "AI_FALLBACK_PROVIDER", "") or "").lower()
    if fallback and fallback not in chain:
        chain.append(fallback)
    return chain


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("examprep")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [_PROVIDER_KEYS[name] for name in _provider_chain(cfg) if name in _PROVIDER_KEYS]
    if str(getattr(cfg, "ENV", "")).lower() == "production":
        required_keys.append("JWT_SECRET")

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
