# src/taskpilot/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .tasks.task_models import DEFAULT_BUCKETS, Bucket

ENV_PREFIX = "TASKPILOT"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_buckets(name: str) -> list[Bucket]:
    """
    Comma-separated bucket names, e.g. "Personal,Team,Admin".

    Names may contain spaces, so this does not go through _env_list.
    """
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return [Bucket(b.name, b.description) for b in DEFAULT_BUCKETS]
    names = [p.strip() for p in raw.split(",") if p.strip()]
    known = {b.name.lower(): b for b in DEFAULT_BUCKETS}
    out: list[Bucket] = []
    seen: set[str] = set()
    for n in names:
        if n.lower() in seen:
            continue
        seen.add(n.lower())
        d = known.get(n.lower())
        out.append(Bucket(n, d.description if d else None))
    return out or [Bucket(b.name, b.description) for b in DEFAULT_BUCKETS]


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    state_path: Path
    history_dir: Path

    # ---- Task core ----
    history_limit: int
    min_prefix_len: int
    parent_progress_sync: str
    default_buckets: list[Bucket]

    # ---- Connector flags ----
    console_enabled: bool
    inbox_enabled: bool
    inbox_maildir: Path | None
    inbox_poll_seconds: float

    # ---- LLM / OpenRouter ----
    openrouter_api_key: str | None
    openrouter_base_url: str
    llm_models: list[str]
    extra_headers: dict[str, str]
    llm_timeout_seconds: float

    @staticmethod
    def from_env() -> Settings:
        app_name = _first_env(_k("APP_NAME"), default="taskpilot") or "taskpilot"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskpilot"))
        state_path = _env_path(_k("STATE_PATH"), data_dir / "tasks.json")
        history_dir = _env_path(_k("HISTORY_DIR"), state_path.parent / "history")

        history_limit = max(1, _env_int(_k("HISTORY_LIMIT"), 50))
        min_prefix_len = max(4, _env_int(_k("MIN_PREFIX_LEN"), 4))

        parent_progress_sync = _env(_k("PARENT_PROGRESS_SYNC"), "surface").strip().lower()
        if parent_progress_sync not in ("surface", "apply"):
            parent_progress_sync = "surface"

        default_buckets = _env_buckets(_k("DEFAULT_BUCKETS"))

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        raw_maildir = _first_env(_k("INBOX_MAILDIR"), default=None)
        inbox_maildir = Path(raw_maildir).expanduser() if raw_maildir else None
        inbox_enabled = _env_bool(_k("INBOX_ENABLED"), inbox_maildir is not None)
        inbox_poll_seconds = max(0.5, _env_float(_k("INBOX_POLL_SECONDS"), 60.0))

        openrouter_api_key = _first_env(_k("OPENROUTER_API_KEY"), "OPENROUTER_API_KEY", default=None)
        openrouter_base_url = _env(_k("OPENROUTER_BASE_URL"), "https://openrouter.ai/api/v1")

        http_referer = _env(_k("HTTP_REFERER"), "https://example.com")
        title = _env(_k("APP_TITLE"), app_name)
        extra_headers = {
            "HTTP-Referer": http_referer,
            "X-Title": title,
        }

        llm_models = _env_list(
            _k("LLM_MODELS"),
            [
                "x-ai/grok-4.1-fast:free",
                "qwen/qwen-2.5-72b-instruct:free",
                "deepseek/deepseek-chat-v3-0324:free",
            ],
        )
        llm_timeout_seconds = max(1.0, _env_float(_k("LLM_TIMEOUT_SECONDS"), 60.0))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            state_path=state_path,
            history_dir=history_dir,
            history_limit=history_limit,
            min_prefix_len=min_prefix_len,
            parent_progress_sync=parent_progress_sync,
            default_buckets=default_buckets,
            console_enabled=console_enabled,
            inbox_enabled=inbox_enabled,
            inbox_maildir=inbox_maildir,
            inbox_poll_seconds=inbox_poll_seconds,
            openrouter_api_key=openrouter_api_key,
            openrouter_base_url=openrouter_base_url,
            llm_models=llm_models,
            extra_headers=extra_headers,
            llm_timeout_seconds=llm_timeout_seconds,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
