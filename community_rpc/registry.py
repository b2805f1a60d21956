"""Backend registry: ordered upstream URLs per network.

The registry is loaded once from YAML and never mutated at runtime; refreshing
the node list is an out-of-band operation (edit the file, restart).
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from community_rpc.config import DEFAULT_REGISTRY_PATH

logger = logging.getLogger(__name__)


class RegistryError(ValueError):
    """Raised when a registry file is missing or fails validation."""


class RegistryDocument(BaseModel):
    """Schema for networks.yaml."""

    networks: dict[str, list[str]]

    @field_validator("networks")
    @classmethod
    def _check_backends(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        if not value:
            raise ValueError("at least one network is required")
        for name, urls in value.items():
            if not urls:
                raise ValueError(f"network {name!r} has no backends")
            for url in urls:
                if not url.startswith(("http://", "https://")):
                    raise ValueError(f"network {name!r}: not an http(s) URL: {url!r}")
            if len(set(urls)) != len(urls):
                raise ValueError(f"network {name!r} lists a backend twice")
        return value


class NetworkRegistry:
    """Immutable mapping of network name to its ordered backend URLs."""

    def __init__(self, networks: dict[str, list[str]]) -> None:
        self._networks: dict[str, tuple[str, ...]] = {
            name: tuple(urls) for name, urls in networks.items()
        }

    @classmethod
    def from_yaml(cls, path: Path | str = DEFAULT_REGISTRY_PATH) -> NetworkRegistry:
        path = Path(path)
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise RegistryError(f"registry file not found: {path}") from exc
        except yaml.YAMLError as exc:
            raise RegistryError(f"registry file is not valid YAML: {path}: {exc}") from exc
        try:
            doc = RegistryDocument.model_validate(raw)
        except ValidationError as exc:
            raise RegistryError(f"invalid registry {path}: {exc}") from exc
        registry = cls(doc.networks)
        logger.info(
            "Loaded backend registry from %s (%s)",
            path,
            ", ".join(f"{n}={len(u)}" for n, u in registry.items()),
        )
        return registry

    @property
    def networks(self) -> list[str]:
        return list(self._networks)

    def backends(self, network: str) -> tuple[str, ...]:
        """Return the backends for *network*; raises ``KeyError`` if unknown."""
        return self._networks[network]

    def items(self) -> list[tuple[str, tuple[str, ...]]]:
        return list(self._networks.items())

    def __contains__(self, network: object) -> bool:
        return network in self._networks
