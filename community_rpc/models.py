"""Health record and snapshot models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class DownMarker(BaseModel):
    """Stored value of a ``down:<url>`` key."""

    reason: str
    since: float
    expires_at: float


class HealthRecord(BaseModel):
    """Everything the health store knows about one backend."""

    url: str
    down: bool = False
    down_reason: str | None = None
    down_since: float | None = None
    expires_at: float | None = None
    block_height: int | None = None
    last_checked_at: str | None = None
    validator_address: str | None = None


class BackendInfo(BaseModel):
    """One backend as shown on the public status page."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    block_height: int | None = Field(default=None, alias="blockHeight")
    last_checked: str | None = Field(default=None, alias="lastChecked")
    validator_address: str | None = Field(default=None, alias="validatorAddress")


class UnhealthyBackendInfo(BackendInfo):
    reason: str


class NetworkHealth(BaseModel):
    healthy: list[BackendInfo] = Field(default_factory=list)
    unhealthy: list[UnhealthyBackendInfo] = Field(default_factory=list)


class HealthSnapshot(BaseModel):
    """Aggregate health of every network at *timestamp* (ISO-8601 UTC)."""

    timestamp: str
    networks: dict[str, NetworkHealth] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
