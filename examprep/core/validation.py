"""
Environment validation utilities.

Ensures the service fails fast on misconfiguration while
remaining bypassable for tests via SKIP_ENV_VALIDATION.
"""

import os
from typing import Iterable, Optional
from urllib.parse import urlparse

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from examprep.core.config import settings

KNOWN_PROVIDERS = ("openai", "deepseek", "ollama")


class EnvValidationError(RuntimeError):
    """Raised when environment validation fails."""


def _is_valid_db_url(url: str) -> bool:
    """Parseable SQLAlchemy URL with a backend name."""
    try:
        return bool(make_url(url).get_backend_name())
    except (ArgumentError, ValueError):
        return False


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _require(vars_required: Iterable[str], source: object) -> None:
    for var in vars_required:
        if not getattr(source, var, None):
            raise EnvValidationError(f"{var} is required in production")


def validate_env(env: Optional[str] = None, settings_obj=None) -> bool:
    """Validate environment configuration.

    Args:
        env: Override environment name (defaults to settings.ENV)
        settings_obj: Override settings object (defaults to examprep.core.config.settings)

    Returns:
        True if validation passes.

    Raises:
        EnvValidationError when a rule is violated.
    """
    if os.getenv("SKIP_ENV_VALIDATION") == "1":
        return True

    cfg = settings_obj or settings
    mode = (env or getattr(cfg, "ENV", "development") or "development").lower()

    for var in ("DATABASE_URL", "TASKS_DATABASE_URL"):
        url = getattr(cfg, var, None)
        if url and not _is_valid_db_url(url):
            raise EnvValidationError(f"{var} must be a valid database URL (e.g. sqlite:///database/tasks.db)")

    provider = str(getattr(cfg, "AI_PROVIDER", "") or "").lower()
    if provider not in KNOWN_PROVIDERS:
        raise EnvValidationError(f"AI_PROVIDER must be one of {', '.join(KNOWN_PROVIDERS)}")
    fallback = str(getattr(cfg, "AI_FALLBACK_PROVIDER", "") or "").lower()
    if fallback and fallback not in KNOWN_PROVIDERS:
        raise EnvValidationError(f"AI_FALLBACK_PROVIDER must be one of {', '.join(KNOWN_PROVIDERS)}")
    if fallback == "ollama":
        raise EnvValidationError("AI_FALLBACK_PROVIDER must be a hosted provider")

    for var in ("OPENAI_BASE_URL", "DEEPSEEK_BASE_URL", "OLLAMA_BASE_URL"):
        if not _is_http_url(getattr(cfg, var, "")):
            raise EnvValidationError(f"{var} must be an http(s) URL")

    if mode == "production":
        _require(["JWT_SECRET"], cfg)

    # Imported here: the AI feature imports settings from this package
    from examprep.features.ai.service import worst_case_call_seconds

    worst_case = worst_case_call_seconds(cfg)
    budget = float(getattr(cfg, "AI_REQUEST_TIMEOUT_SECONDS", 0) or 0)
    if worst_case > budget:
        raise EnvValidationError(
            f"AI retry worst case ({worst_case:.0f}s) exceeds AI_REQUEST_TIMEOUT_SECONDS ({budget:.0f}s)"
        )

    return True
