"""Configuration utilities shared by the tracker core, CLI and tasks."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional
from urllib.parse import quote

DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

_DB_URL_ENV = "TRACKER_DATABASE_URL"
_USER_AGENT_ENV = "TRACKER_USER_AGENT"
_TIMEOUT_ENV = "TRACKER_REQUEST_TIMEOUT"
_RETRIES_ENV = "TRACKER_MAX_RETRIES"
_RATE_LIMIT_ENV_PREFIX = "TRACKER_RATE_LIMIT_"
_PROXY_ENV = "TRACKER_PROXY"
_SELECTORS_ENV = "TRACKER_WEEBCENTRAL_SELECTORS"
_SEARCH_LIMIT_ENV = "TRACKER_SEARCH_LIMIT"
_SYNC_LIMIT_ENV = "TRACKER_SYNC_LIMIT"
_BROKER_ENV = "TRACKER_CELERY_BROKER_URL"
_RESULT_BACKEND_ENV = "TRACKER_CELERY_RESULT_BACKEND"
_ALWAYS_EAGER_ENV = "TRACKER_CELERY_TASK_ALWAYS_EAGER"
_POOL_SIZE_ENV = "TRACKER_DB_POOL_SIZE"
_MAX_OVERFLOW_ENV = "TRACKER_DB_MAX_OVERFLOW"
_POOL_RECYCLE_ENV = "TRACKER_DB_POOL_RECYCLE"


@dataclass(slots=True)
class RateLimitConfig:
    """Minimum seconds between two requests to the same source."""

    default_delay: float = 1.0
    per_source_delay: Dict[str, float] = field(
        default_factory=lambda: {"mangadex": 0.25, "weebcentral": 1.0}
    )

    def delay_for(self, source_name: str, default: float | None = None) -> float:
        fallback = self.default_delay if default is None else default
        return self.per_source_delay.get(source_name, fallback)


@dataclass(slots=True)
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0


@dataclass(slots=True)
class TimeoutConfig:
    request_timeout: float = 10.0


@dataclass(slots=True)
class ProxyConfig:
    """Outbound proxy used for every source request."""

    scheme: str = "http"
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def address(self) -> Optional[str]:
        if self.host is None or self.port is None:
            return None
        return f"{self.host}:{self.port}"

    def httpx_proxy(self) -> Optional[str]:
        address = self.address
        if not address:
            return None
        credentials = ""
        if self.username:
            user = quote(self.username, safe="")
            if self.password:
                credentials = f"{user}:{quote(self.password, safe='')}@"
            else:
                credentials = f"{user}@"
        return f"{self.scheme}://{credentials}{address}"

    @classmethod
    def from_endpoint(cls, endpoint: str, *, scheme: str = "http") -> "ProxyConfig":
        """Parse ``host:port[:user[:password]]``."""

        parts = [segment.strip() for segment in endpoint.strip().split(":")]
        if len(parts) < 2 or not parts[0]:
            raise ValueError("Proxy endpoint must be in 'host:port[:user:password]' format")

        try:
            port = int(parts[1])
        except ValueError as exc:
            raise ValueError("Proxy port must be an integer") from exc

        username = parts[2] or None if len(parts) > 2 else None
        password = ":".join(parts[3:]) or None if len(parts) > 3 else None
        return cls(scheme=scheme, host=parts[0], port=port, username=username, password=password)


@dataclass(slots=True)
class WorkerConfig:
    """Celery broker and result backend plus the worker database pool."""

    broker_url: Optional[str] = None
    result_backend: Optional[str] = None
    always_eager: bool = True
    pool_size: int = 2
    max_overflow: int = 0
    pool_recycle: int = 1800

    def engine_options(self) -> Dict[str, object]:
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


@dataclass(slots=True)
class TrackerConfig:
    db_url: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    proxy: Optional[ProxyConfig] = None
    weebcentral_selectors_file: Optional[Path] = None
    search_limit: int = 20
    update_unit_limit: int = 50
    sync_limit: int = 20
    worker: WorkerConfig = field(default_factory=WorkerConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "TrackerConfig":
        env = os.environ if environ is None else environ
        config = cls()

        db_url = env.get(_DB_URL_ENV, "").strip()
        if db_url:
            config.db_url = db_url

        user_agent = env.get(_USER_AGENT_ENV, "").strip()
        if user_agent:
            config.user_agent = user_agent

        timeout = _coerce_float(env.get(_TIMEOUT_ENV), _TIMEOUT_ENV)
        if timeout is not None:
            config.timeout.request_timeout = timeout

        retries = _coerce_int(env.get(_RETRIES_ENV), _RETRIES_ENV, minimum=0)
        if retries is not None:
            config.retry.max_retries = retries

        search_limit = _coerce_int(env.get(_SEARCH_LIMIT_ENV), _SEARCH_LIMIT_ENV, minimum=1)
        if search_limit is not None:
            config.search_limit = search_limit

        sync_limit = _coerce_int(env.get(_SYNC_LIMIT_ENV), _SYNC_LIMIT_ENV, minimum=1)
        if sync_limit is not None:
            config.sync_limit = sync_limit

        for key, value in env.items():
            if not key.startswith(_RATE_LIMIT_ENV_PREFIX):
                continue
            source_name = key[len(_RATE_LIMIT_ENV_PREFIX):].lower()
            delay = _coerce_float(value, key)
            if source_name and delay is not None:
                config.rate_limit.per_source_delay[source_name] = delay

        proxy = env.get(_PROXY_ENV, "").strip()
        if proxy:
            config.proxy = ProxyConfig.from_endpoint(proxy)

        selectors = env.get(_SELECTORS_ENV, "").strip()
        if selectors:
            config.weebcentral_selectors_file = Path(selectors).expanduser()

        config.worker.broker_url = env.get(_BROKER_ENV, "").strip() or None
        config.worker.result_backend = env.get(_RESULT_BACKEND_ENV, "").strip() or None
        eager = env.get(_ALWAYS_EAGER_ENV, "").strip().lower()
        if eager:
            config.worker.always_eager = eager in {"1", "true", "yes", "on"}
        for name, attribute in (
            (_POOL_SIZE_ENV, "pool_size"),
            (_MAX_OVERFLOW_ENV, "max_overflow"),
            (_POOL_RECYCLE_ENV, "pool_recycle"),
        ):
            value = _coerce_int(env.get(name), name, minimum=0)
            if value is not None:
                setattr(config.worker, attribute, value)

        return config


def _coerce_float(raw_value: str | None, name: str) -> float | None:
    if raw_value is None or not raw_value.strip():
        return None
    cleaned = raw_value.strip()
    try:
        value = float(cleaned)
    except ValueError as exc:
        raise ValueError(f"Invalid {name} value {cleaned!r}") from exc
    return max(0.0, value)


def _coerce_int(raw_value: str | None, name: str, *, minimum: int) -> int | None:
    if raw_value is None or not raw_value.strip():
        return None
    cleaned = raw_value.strip()
    try:
        value = int(cleaned)
    except ValueError as exc:
        raise ValueError(f"Invalid {name} value {cleaned!r}") from exc
    return max(minimum, value)
