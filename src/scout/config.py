"""Configuration loader: YAML file with environment variable fallbacks."""

from __future__ import annotations

import hashlib
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_DEFAULT_SYSTEM_PROMPT = """\
You are Scout, a helpful AI assistant with access to real-time web search. When answering questions:

<research>
- Search the web for up-to-date information whenever the question depends on facts that may have \
changed or that you are not certain about.
- If you are unsure about something, search to verify it before answering.
- Be thorough but concise.
</research>

<citations>
- Every fact taken from an external source must cite that source as a markdown link with a \
descriptive label, in the form [title](url).
- Never write a bare URL. Always use the markdown link format.
</citations>

Use the search_web tool whenever you need current information."""


@dataclass
class AIConfig:
    base_url: str
    api_key: str
    model: str = "gpt-4o-mini"
    system_prompt: str = _DEFAULT_SYSTEM_PROMPT
    verify_ssl: bool = True
    request_timeout: int = 120  # seconds; connect + per-chunk read timeout
    connect_timeout: int = 5
    first_token_timeout: int = 30
    max_steps: int = 10
    retry_max_attempts: int = 2  # retries after the first attempt
    retry_backoff_base: float = 1.0


@dataclass
class SearchConfig:
    api_key: str = ""
    base_url: str = "https://google.serper.dev/search"
    result_count: int = 10
    timeout: float = 15.0


@dataclass
class StreamSettings:
    max_duration: float = 60.0  # seconds a producer may run before it is terminated
    retention: float = 300.0  # seconds a finished channel stays replayable
    sweep_interval: float = 30.0
    persist_attempts: int = 3


@dataclass
class TracingConfig:
    public_key: str = ""
    secret_key: str = ""
    host: str = "https://cloud.langfuse.com"
    environment: str = "development"

    @property
    def enabled(self) -> bool:
        return bool(self.public_key and self.secret_key)


@dataclass
class AuthUser:
    id: str
    token_sha256: str
    display_name: str = ""


@dataclass
class AuthConfig:
    users: list[AuthUser] = field(default_factory=list)


@dataclass
class AppSettings:
    host: str = "127.0.0.1"
    port: int = 8080
    data_dir: Path = field(default_factory=lambda: Path.home() / ".scout")
    log_level: str = "info"


@dataclass
class AppConfig:
    ai: AIConfig
    app: AppSettings = field(default_factory=AppSettings)
    search: SearchConfig = field(default_factory=SearchConfig)
    streams: StreamSettings = field(default_factory=StreamSettings)
    tracing: TracingConfig = field(default_factory=TracingConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)


def _get_config_path(data_dir: Path | None = None) -> Path:
    if data_dir:
        return data_dir / "config.yaml"
    return Path.home() / ".scout" / "config.yaml"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _as_bool(value: Any) -> bool:
    return str(value).lower() not in ("false", "0", "no")


def _clamped_int(value: Any, default: int, lo: int, hi: int) -> int:
    try:
        return max(lo, min(hi, int(value)))
    except (ValueError, TypeError):
        return default


def _clamped_float(value: Any, default: float, lo: float, hi: float) -> float:
    try:
        return max(lo, min(hi, float(value)))
    except (ValueError, TypeError):
        return default


def load_config(config_path: Path | None = None) -> AppConfig:
    raw: dict[str, Any] = {}
    path = config_path or _get_config_path()

    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

    ai_raw = raw.get("ai", {})
    base_url = ai_raw.get("base_url") or os.environ.get("AI_CHAT_BASE_URL", "")
    api_key = ai_raw.get("api_key") or os.environ.get("AI_CHAT_API_KEY", "")
    model = ai_raw.get("model") or os.environ.get("AI_CHAT_MODEL", "gpt-4o-mini")
    user_system_prompt = ai_raw.get("system_prompt") or os.environ.get("AI_CHAT_SYSTEM_PROMPT", "")
    if user_system_prompt:
        system_prompt = (
            _DEFAULT_SYSTEM_PROMPT + "\n\n<user_instructions>\n" + user_system_prompt + "\n</user_instructions>"
        )
    else:
        system_prompt = _DEFAULT_SYSTEM_PROMPT

    if not base_url:
        raise ValueError(
            "AI base_url is required. Set 'ai.base_url' in config.yaml "
            f"({path}) or AI_CHAT_BASE_URL environment variable."
        )
    if not api_key:
        raise ValueError(
            f"AI api_key is required. Set 'ai.api_key' in config.yaml ({path}) or AI_CHAT_API_KEY environment variable."
        )

    ai = AIConfig(
        base_url=base_url,
        api_key=api_key,
        model=model,
        system_prompt=system_prompt,
        verify_ssl=_as_bool(ai_raw.get("verify_ssl", os.environ.get("AI_CHAT_VERIFY_SSL", "true"))),
        request_timeout=_clamped_int(
            ai_raw.get("request_timeout", os.environ.get("AI_CHAT_REQUEST_TIMEOUT", 120)), 120, 10, 600
        ),
        connect_timeout=_clamped_int(ai_raw.get("connect_timeout", 5), 5, 1, 60),
        first_token_timeout=_clamped_int(ai_raw.get("first_token_timeout", 30), 30, 1, 300),
        max_steps=_clamped_int(ai_raw.get("max_steps", 10), 10, 1, 50),
        retry_max_attempts=_clamped_int(ai_raw.get("retry_max_attempts", 2), 2, 0, 10),
        retry_backoff_base=_clamped_float(ai_raw.get("retry_backoff_base", 1.0), 1.0, 0.0, 30.0),
    )

    search_raw = raw.get("search", {})
    search = SearchConfig(
        api_key=search_raw.get("api_key") or os.environ.get("SERPER_API_KEY", ""),
        base_url=search_raw.get("base_url", "https://google.serper.dev/search"),
        result_count=_clamped_int(search_raw.get("result_count", 10), 10, 1, 20),
        timeout=_clamped_float(search_raw.get("timeout", 15.0), 15.0, 1.0, 120.0),
    )

    streams_raw = raw.get("streams", {})
    streams = StreamSettings(
        max_duration=_clamped_float(streams_raw.get("max_duration", 60), 60.0, 1.0, 3600.0),
        retention=_clamped_float(streams_raw.get("retention", 300), 300.0, 0.0, 86400.0),
        sweep_interval=_clamped_float(streams_raw.get("sweep_interval", 30), 30.0, 1.0, 3600.0),
        persist_attempts=_clamped_int(streams_raw.get("persist_attempts", 3), 3, 1, 10),
    )

    tracing_raw = raw.get("tracing", {})
    tracing = TracingConfig(
        public_key=tracing_raw.get("public_key") or os.environ.get("LANGFUSE_PUBLIC_KEY", ""),
        secret_key=tracing_raw.get("secret_key") or os.environ.get("LANGFUSE_SECRET_KEY", ""),
        host=tracing_raw.get("host") or os.environ.get("LANGFUSE_HOST", "https://cloud.langfuse.com"),
        environment=tracing_raw.get("environment") or os.environ.get("SCOUT_ENV", "development"),
    )

    users: list[AuthUser] = []
    for entry in raw.get("auth", {}).get("users", []):
        users.append(
            AuthUser(
                id=str(entry["id"]),
                token_sha256=str(entry["token_sha256"]).lower(),
                display_name=str(entry.get("display_name", entry["id"])),
            )
        )
    env_token = os.environ.get("SCOUT_API_TOKEN", "")
    if env_token:
        users.append(AuthUser(id="local", token_sha256=hash_token(env_token), display_name="local"))

    app_raw = raw.get("app", {})
    data_dir = Path(os.path.expanduser(app_raw.get("data_dir", "~/.scout")))
    app_settings = AppSettings(
        host=app_raw.get("host", "127.0.0.1"),
        port=int(app_raw.get("port", 8080)),
        data_dir=data_dir,
        log_level=str(app_raw.get("log_level", "info")).lower(),
    )

    app_settings.data_dir.mkdir(parents=True, exist_ok=True)
    try:
        app_settings.data_dir.chmod(stat.S_IRWXU)  # 0700
        if path.exists():
            path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
    except OSError:
        pass  # May fail on Windows or non-owned files

    return AppConfig(
        ai=ai,
        app=app_settings,
        search=search,
        streams=streams,
        tracing=tracing,
        auth=AuthConfig(users=users),
    )
