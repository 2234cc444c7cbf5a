"""Configuration helpers for the affirmation wallpaper generator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

DEFAULT_SCHEDULE = "0 6 * * *"
HISTORY_LIMIT = 30


@dataclass(slots=True)
class AppConfig:
    """Centralized application configuration."""

    images_dir: Path = Path("generated-images")
    store_path: Path = Path("data/store.json")
    log_dir: Path = Path("logs")
    log_level: str = "INFO"
    openrouter_key: Optional[str] = None
    anthropic_key: Optional[str] = None
    api_base_url: str = "https://openrouter.ai/api/v1"
    text_backend: str = "openrouter"
    text_model: str = "openai/gpt-4.1-mini"
    claude_model: str = "claude-3-haiku-20240307"
    image_model: str = "google/gemini-2.5-flash-image-preview"
    image_aspect_ratio: str = "16:9"
    request_timeout: float = 60.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_jitter: float = 1.0
    history_limit: int = HISTORY_LIMIT
    default_schedule: str = DEFAULT_SCHEDULE
    fallback_to_local: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


def _load_env_file(path: Path) -> None:
    """Populate environment variables from a simple KEY=VALUE .env file."""
    if not path.exists():
        return

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip("\"'"))


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Return an AppConfig instance with environment-aware settings."""
    env_path = Path(config_path) if config_path else Path(".env")
    _load_env_file(env_path)

    defaults = AppConfig()
    images_dir = Path(os.getenv("IMAGES_DIR", str(defaults.images_dir))).expanduser().resolve()
    store_path = Path(os.getenv("STORE_PATH", str(defaults.store_path))).expanduser().resolve()
    log_dir = Path(os.getenv("LOG_DIR", str(defaults.log_dir))).expanduser()

    # OpenRouter rankings headers, sent with every request.
    metadata: dict[str, Any] = {
        "http_referer": os.getenv("HTTP_REFERER", "https://github.com/affirmation-wallpaper"),
        "app_title": os.getenv("APP_TITLE", "Affirmation Wallpaper"),
    }

    return AppConfig(
        images_dir=images_dir,
        store_path=store_path,
        log_dir=log_dir,
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        openrouter_key=os.getenv("OPENROUTER_API_KEY") or None,
        anthropic_key=os.getenv("ANTHROPIC_API_KEY") or None,
        api_base_url=(os.getenv("OPENROUTER_BASE_URL") or defaults.api_base_url).rstrip("/"),
        text_backend=os.getenv("TEXT_BACKEND", defaults.text_backend).lower(),
        text_model=os.getenv("TEXT_MODEL", defaults.text_model),
        claude_model=os.getenv("CLAUDE_MODEL", defaults.claude_model),
        image_model=os.getenv("IMAGE_MODEL", defaults.image_model),
        image_aspect_ratio=os.getenv("IMAGE_ASPECT_RATIO", defaults.image_aspect_ratio),
        request_timeout=_env_float("REQUEST_TIMEOUT", defaults.request_timeout),
        default_schedule=" ".join(os.getenv("DEFAULT_SCHEDULE", defaults.default_schedule).split()) or DEFAULT_SCHEDULE,
        fallback_to_local=_env_flag("FALLBACK_TO_LOCAL", defaults.fallback_to_local),
        metadata=metadata,
    )
