"""Configuration models and helpers for deployment runs."""

from __future__ import annotations

import os
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, PrivateAttr, ValidationError, field_validator

from .errors import ConfigError

SECOND = 1
MINUTE = SECOND * 60
HOUR = MINUTE * 60
DAY = HOUR * 24
WEEK = DAY * 7
MONTH = DAY * 30
YEAR = DAY * 365

_UNITS: Dict[str, int] = {
    "second": SECOND,
    "minute": MINUTE,
    "hour": HOUR,
    "day": DAY,
    "week": WEEK,
    "month": MONTH,
    "year": YEAR,
    "wei": 1,
    "gwei": 10**9,
    "ether": 10**18,
}
_QUANTITY_PATTERN = re.compile(r"^\s*([-+]?[0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)\s*([A-Za-z]+?)s?\s*$")

_ENV_OVERRIDES = (
    ("DEPLOYER_RPC_URL", ("network", "rpc_url"), str),
    ("DEPLOYER_CHAIN_ID", ("network", "chain_id"), int),
    ("DEPLOYER_NETWORK", ("network", "name"), str),
    ("DEPLOYER_OUTPUT_DIR", ("output", "directory"), str),
)


def parse_quantity(raw: Any) -> Any:
    """Convert ``"4 months"`` or ``"0.5 ether"`` to an integer; pass anything else through."""

    if not isinstance(raw, str):
        return raw
    match = _QUANTITY_PATTERN.match(raw)
    if not match:
        return raw
    number, unit = match.groups()
    scale = _UNITS.get(unit.lower())
    if scale is None:
        return raw
    try:
        value = Decimal(number) * scale
    except InvalidOperation:  # pragma: no cover - regex guarantees a number
        return raw
    if value != value.to_integral_value():
        raise ConfigError(f"Quantity {raw!r} is not a whole number of base units")
    return int(value)


class NetworkConfig(BaseModel):
    name: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9_.-]+$")
    chain_id: Optional[int] = Field(default=None, ge=1)
    rpc_url: Optional[str] = None
    enable_poa: bool = False
    confirmation_timeout: float = Field(120.0, gt=0)
    poll_interval: float = Field(0.5, gt=0)
    request_timeout: float = Field(30.0, gt=0)
    connect_attempts: int = Field(3, ge=1)
    private_key_env: str = "DEPLOYER_PRIVATE_KEY"


class ArtifactsConfig(BaseModel):
    root: str = "artifacts"
    paths: Dict[str, str] = Field(default_factory=dict)


class CheckConfig(BaseModel):
    """Connection check run by ``verify`` against a written manifest."""

    component: str
    call: str
    args: List[Any] = Field(default_factory=list)
    expect: Any = None
    artifact: Optional[str] = None


class OutputConfig(BaseModel):
    directory: str = "deployments"
    checkpoint: bool = False


class DeploymentConfig(BaseModel):
    network: NetworkConfig
    artifacts: ArtifactsConfig = Field(default_factory=ArtifactsConfig)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    checks: List[CheckConfig] = Field(default_factory=list)
    output: OutputConfig = Field(default_factory=OutputConfig)
    _base_path: Path = PrivateAttr(default=Path("."))

    @field_validator("parameters")
    @classmethod
    def _parse_quantities(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        return {key: parse_quantity(value) for key, value in values.items()}

    @classmethod
    def load(cls, path: Path | str, *, environ: Mapping[str, str] | None = None) -> "DeploymentConfig":
        file_path = Path(path)
        try:
            data = yaml.safe_load(file_path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Failed to read configuration {file_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration {file_path} must be a mapping")
        return cls.from_mapping(data, base_path=file_path.parent, environ=environ)

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        base_path: Path | str = ".",
        environ: Mapping[str, str] | None = None,
    ) -> "DeploymentConfig":
        payload = _apply_env_overrides(dict(data), os.environ if environ is None else environ)
        try:
            instance = cls.model_validate(payload)
        except ValidationError as exc:
            raise ConfigError(f"Invalid deployment configuration: {exc}") from exc
        instance._base_path = Path(base_path).resolve()
        return instance

    @property
    def base_path(self) -> Path:
        return self._base_path

    def resolve_path(self, relative: str) -> Path:
        candidate = Path(relative)
        if candidate.is_absolute():
            return candidate
        return (self._base_path / candidate).resolve()

    def artifact_root(self) -> Path:
        return self.resolve_path(self.artifacts.root)

    def output_directory(self) -> Path:
        return self.resolve_path(self.output.directory)

    def parameter(self, name: str) -> Any:
        if name not in self.parameters:
            raise ConfigError(f"Unknown parameter {name!r}")
        return self.parameters[name]

    def snapshot(self) -> Dict[str, Any]:
        """Static configuration recorded in the manifest. Connection details are left out."""

        return {
            "network": {"name": self.network.name, "chain_id": self.network.chain_id},
            "parameters": dict(self.parameters),
            "metadata": dict(self.metadata),
            "steps": [dict(step) for step in self.steps],
        }


def _apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    for key, (section, field), cast in _ENV_OVERRIDES:
        raw = environ.get(key)
        if raw is None or not raw.strip():
            continue
        try:
            value = cast(raw.strip())
        except ValueError as exc:
            raise ConfigError(f"{key}={raw!r} is not a valid {cast.__name__}") from exc
        block = dict(data.get(section) or {})
        block[field] = value
        data[section] = block
    return data


__all__ = [
    "ArtifactsConfig",
    "CheckConfig",
    "DAY",
    "DeploymentConfig",
    "HOUR",
    "MINUTE",
    "MONTH",
    "NetworkConfig",
    "OutputConfig",
    "SECOND",
    "WEEK",
    "YEAR",
    "parse_quantity",
]
