from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
MOONSHOT_BASE_URL = "https://api.moonshot.cn/v1"
MINIMAX_BASE_URL = "https://api.minimax.chat/v1"

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_SCHEMA = "baby_shower"
DEFAULT_VOTE_MAX = 3


def env_flag(name: str, default: bool, environ: Optional[Mapping[str, str]] = None) -> bool:
    source = os.environ if environ is None else environ
    value = source.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_str(environ: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = (environ.get(name) or "").strip()
        if value:
            return value
    return ""


def _env_number(environ: Mapping[str, str], name: str, default: float, cast=float):
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class AIProvider:
    api_key: str
    base_url: Optional[str]
    model: str


@dataclass(frozen=True)
class Settings:
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_schema: str = DEFAULT_SCHEMA
    webhook_url: str = ""
    vote_max_selections: int = DEFAULT_VOTE_MAX
    scenario_ai: Optional[AIProvider] = None
    roast_ai: Optional[AIProvider] = None
    pool_roast_ai: Optional[AIProvider] = None
    http_timeout: float = 10.0
    realtime_enabled: bool = True
    realtime_poll_seconds: float = 2.5
    realtime_base_delay: float = 3.0
    realtime_max_attempts: int = 5

    def missing_required(self) -> List[str]:
        missing = []
        if not self.supabase_url:
            missing.append("SUPABASE_URL")
        if not self.supabase_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
        return missing


def _provider(
    environ: Mapping[str, str],
    key_name: str,
    base_url: str,
    model_name: str,
    default_model: str,
) -> Optional[AIProvider]:
    api_key = _env_str(environ, key_name)
    if api_key:
        return AIProvider(
            api_key=api_key,
            base_url=base_url,
            model=_env_str(environ, model_name) or default_model,
        )
    openai_key = _env_str(environ, "OPENAI_API_KEY")
    if openai_key:
        return AIProvider(
            api_key=openai_key,
            base_url=None,
            model=_env_str(environ, "OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
        )
    return None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    settings = Settings(
        supabase_url=_env_str(env, "SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL").rstrip("/"),
        supabase_key=_env_str(env, "SUPABASE_SERVICE_ROLE_KEY"),
        supabase_schema=_env_str(env, "SUPABASE_SCHEMA") or DEFAULT_SCHEMA,
        webhook_url=_env_str(env, "GOOGLE_WEBHOOK_URL"),
        vote_max_selections=max(1, _env_number(env, "VOTE_MAX_SELECTIONS", DEFAULT_VOTE_MAX, int)),
        scenario_ai=_provider(
            env, "OPENROUTER_API_KEY", OPENROUTER_BASE_URL, "SCENARIO_MODEL", "z-ai/glm-4.5-air:free"
        ),
        roast_ai=_provider(env, "KIMI_API_KEY", MOONSHOT_BASE_URL, "ROAST_MODEL", "kimi-k2-0711-preview"),
        pool_roast_ai=_provider(env, "MINIMAX_API_KEY", MINIMAX_BASE_URL, "POOL_ROAST_MODEL", "MiniMax-M1"),
        http_timeout=_env_number(env, "HTTP_TIMEOUT_SECONDS", 10.0),
        realtime_enabled=env_flag("REALTIME_ENABLED", True, env),
        realtime_poll_seconds=_env_number(env, "REALTIME_POLL_SECONDS", 2.5),
        realtime_base_delay=_env_number(env, "REALTIME_RECONNECT_DELAY", 3.0),
        realtime_max_attempts=_env_number(env, "REALTIME_MAX_ATTEMPTS", 5, int),
    )
    missing = settings.missing_required()
    if missing:
        logger.warning("Backend not configured, missing: %s", ", ".join(missing))
    return settings
