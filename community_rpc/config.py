"""Proxy and monitor settings, plus the protocol constants they default to."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

# Retry / timeout policy for the proxy path
MAX_RETRIES = 2  # 3 attempts in total
UPSTREAM_TIMEOUT_SECONDS = 30.0

# Down markers expire on their own after this long (proxy and monitor share it)
DEFAULT_COOLDOWN_SECONDS = 300

# Monitor
PROBE_TIMEOUT_SECONDS = 10.0
PROBE_INTERVAL_MINUTES = 15
PROBE_CONCURRENCY = 5
SNAPSHOT_TTL_SECONDS = 300  # must stay below the probe interval
VALIDATOR_TTL_SECONDS = 86_400

DEFAULT_REGISTRY_PATH = Path(__file__).parent / "networks.yaml"


class ProxySettings(BaseSettings):
    """Environment-driven settings shared by the proxy and the monitor."""

    registry_path: Path = DEFAULT_REGISTRY_PATH
    kv_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"

    max_retries: int = MAX_RETRIES
    upstream_timeout: float = Field(default=UPSTREAM_TIMEOUT_SECONDS, gt=0)
    cooldown_seconds: int = Field(default=DEFAULT_COOLDOWN_SECONDS, gt=0)

    probe_timeout: float = Field(default=PROBE_TIMEOUT_SECONDS, gt=0)
    probe_interval_minutes: int = PROBE_INTERVAL_MINUTES
    probe_concurrency: int = PROBE_CONCURRENCY
    snapshot_ttl: int = Field(default=SNAPSHOT_TTL_SECONDS, gt=0)
    validator_ttl: int = Field(default=VALIDATOR_TTL_SECONDS, gt=0)

    rate_limit_per_minute: int = 0  # 0 disables rate limiting
    static_content_dir: str = ""

    model_config = {"env_prefix": "COMMUNITY_RPC_", "env_file": ".env", "extra": "ignore"}
