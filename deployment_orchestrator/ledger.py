"""Deployment ledger and the manifest it is persisted as."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from eth_utils import is_same_address
from pydantic import BaseModel, Field, ValidationError

from .errors import DuplicateComponentName, ManifestError, UnresolvedDependency
from .models import DeployedComponent, PredictedAddress

LOGGER = logging.getLogger(__name__)

MANIFEST_VERSION = "deployment-manifest.v1"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def config_digest(snapshot: Dict[str, Any]) -> str:
    canonical = json.dumps(snapshot, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class Manifest(BaseModel):
    """Durable record of a run: every component name mapped to its address."""

    version: str = Field(default=MANIFEST_VERSION)
    network: str
    chain_id: Optional[int] = None
    deployer: Optional[str] = None
    status: Literal["complete", "partial", "failed"] = "partial"
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    components: Dict[str, DeployedComponent] = Field(default_factory=dict)
    predictions: Dict[str, PredictedAddress] = Field(default_factory=dict)
    completed_steps: List[str] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)
    config_hash: Optional[str] = None
    integrity: str = ""

    def addresses(self) -> Dict[str, str]:
        return {name: component.address for name, component in self.components.items()}

    def compute_integrity(self) -> str:
        payload = self.model_dump(mode="json", exclude={"integrity"})
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def seal(self) -> "Manifest":
        self.integrity = self.compute_integrity()
        return self

    def verify(self) -> None:
        if not hmac.compare_digest(self.compute_integrity(), self.integrity):
            raise ManifestError(f"Manifest for {self.network} failed integrity verification")


class Ledger:
    """Append-only resolution table for one run.

    Holds confirmed components and forward-declared predictions. Once a name is
    recorded, :meth:`resolve` returns the same address for the rest of the run.
    """

    def __init__(
        self,
        network: str,
        *,
        chain_id: Optional[int] = None,
        deployer: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.network = network
        self.chain_id = chain_id
        self.deployer = deployer
        self._config = dict(config or {})
        self._components: Dict[str, DeployedComponent] = {}
        self._predictions: Dict[str, PredictedAddress] = {}
        self._completed: List[str] = []
        self._created_at = _utcnow()

    @classmethod
    def from_manifest(cls, manifest: Manifest) -> "Ledger":
        ledger = cls(
            manifest.network,
            chain_id=manifest.chain_id,
            deployer=manifest.deployer,
            config=manifest.config,
        )
        ledger._created_at = manifest.created_at
        ledger._components = dict(manifest.components)
        ledger._predictions = dict(manifest.predictions)
        ledger._completed = list(manifest.completed_steps)
        return ledger

    def __contains__(self, name: object) -> bool:
        return name in self._components

    def __len__(self) -> int:
        return len(self._components)

    @property
    def components(self) -> Dict[str, DeployedComponent]:
        return dict(self._components)

    @property
    def predictions(self) -> Dict[str, PredictedAddress]:
        return dict(self._predictions)

    @property
    def completed_steps(self) -> List[str]:
        return list(self._completed)

    def is_completed(self, step_id: str) -> bool:
        return step_id in self._completed

    def record(self, name: str, component: DeployedComponent) -> None:
        if name in self._components:
            raise DuplicateComponentName(name)
        self._components[name] = component
        LOGGER.info(
            "%s recorded at %s",
            name,
            component.address,
            extra={"event": "component_recorded", "data": {"name": name, "address": component.address}},
        )

    def predict(self, prediction: PredictedAddress) -> None:
        if prediction.name in self._components or prediction.name in self._predictions:
            raise DuplicateComponentName(prediction.name)
        self._predictions[prediction.name] = prediction
        LOGGER.info(
            "%s predicted at %s",
            prediction.name,
            prediction.address,
            extra={"event": "address_predicted", "data": prediction.model_dump(mode="json")},
        )

    def prediction(self, name: str) -> Optional[PredictedAddress]:
        return self._predictions.get(name)

    def is_confirmed(self, name: str) -> bool:
        prediction = self._predictions.get(name)
        component = self._components.get(name)
        if prediction is None or component is None:
            return False
        return is_same_address(prediction.address, component.address)

    def resolve(self, name: str) -> Union[str, PredictedAddress]:
        """Return the recorded address, else the prediction, else raise."""

        component = self._components.get(name)
        if component is not None:
            return component.address
        prediction = self._predictions.get(name)
        if prediction is not None:
            return prediction
        raise UnresolvedDependency(name, "not recorded or predicted by any earlier step")

    def resolve_address(self, name: str) -> str:
        resolved = self.resolve(name)
        if isinstance(resolved, PredictedAddress):
            return resolved.address
        return resolved

    def resolve_deployed(self, name: str) -> DeployedComponent:
        component = self._components.get(name)
        if component is None:
            detail = "only predicted, not yet deployed" if name in self._predictions else "not deployed"
            raise UnresolvedDependency(name, detail)
        return component

    def resolve_predicted(self, name: str) -> PredictedAddress:
        prediction = self._predictions.get(name)
        if prediction is None:
            raise UnresolvedDependency(name, "no prediction recorded")
        return prediction

    def mark_completed(self, step_id: str) -> None:
        if step_id not in self._completed:
            self._completed.append(step_id)

    def snapshot(self, status: Literal["complete", "partial", "failed"] = "partial") -> Manifest:
        manifest = Manifest(
            network=self.network,
            chain_id=self.chain_id,
            deployer=self.deployer,
            status=status,
            created_at=self._created_at,
            components=dict(self._components),
            predictions=dict(self._predictions),
            completed_steps=list(self._completed),
            config=dict(self._config),
            config_hash=config_digest(self._config) if self._config else None,
        )
        return manifest.seal()


class ManifestStore:
    """Persist manifests as JSON named by network, with atomic swaps."""

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory).resolve()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, network: str, *, partial: bool = False) -> Path:
        suffix = "deployments.partial.json" if partial else "deployments.json"
        return self._directory / f"{network}-{suffix}"

    def write(self, manifest: Manifest) -> Path:
        path = self.path_for(manifest.network, partial=manifest.status != "complete")
        if not manifest.integrity:
            manifest.seal()
        payload = manifest.model_dump(mode="json")
        serialized = json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2)
        self._directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(serialized + "\n", encoding="utf-8")
        tmp_path.replace(path)
        if manifest.status == "complete":
            stale = self.path_for(manifest.network, partial=True)
            if stale.exists():
                stale.unlink()
        LOGGER.info(
            "Manifest written to %s",
            path,
            extra={"event": "manifest_written", "data": {"path": str(path), "status": manifest.status}},
        )
        return path

    def load(self, network: str, *, partial: bool = False) -> Optional[Manifest]:
        return self.load_path(self.path_for(network, partial=partial))

    def load_path(self, path: Path | str) -> Optional[Manifest]:
        resolved = Path(path)
        if not resolved.exists():
            return None
        try:
            data = json.loads(resolved.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ManifestError(f"Failed to read manifest {resolved}: {exc}") from exc
        try:
            manifest = Manifest.model_validate(data)
        except ValidationError as exc:
            raise ManifestError(f"Invalid manifest payload in {resolved}: {exc}") from exc
        manifest.verify()
        return manifest


__all__ = ["Ledger", "MANIFEST_VERSION", "Manifest", "ManifestStore", "config_digest"]
