"""Artifact loading with a read-through cache."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from eth_abi import encode as abi_encode
from eth_utils import add_0x_prefix, is_hex, to_bytes

from .errors import ArtifactNotFound
from .predictor import init_code_hash

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Artifact:
    """Creation code and ABI of one compiled component."""

    name: str
    bytecode: str
    abi: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def code_hash(self) -> bytes:
        return init_code_hash(self.bytecode)

    def constructor_types(self) -> List[str]:
        for entry in self.abi:
            if entry.get("type") == "constructor":
                return [_abi_type(item) for item in entry.get("inputs", [])]
        return []

    def init_code(self, args: Sequence[Any] = ()) -> bytes:
        """Creation code with ABI-encoded constructor arguments appended."""

        code = to_bytes(hexstr=self.bytecode)
        if not args:
            return code
        types = self.constructor_types()
        if len(types) != len(args):
            raise ValueError(
                f"{self.name} constructor takes {len(types)} arguments, {len(args)} given"
            )
        return code + abi_encode(types, list(args))

    def has_function(self, method: str) -> bool:
        return any(entry.get("type") == "function" and entry.get("name") == method for entry in self.abi)

    def function_signature(self, method: str) -> str:
        """Canonical ``name(type,...)`` signature of the first function called ``method``."""

        for entry in self.abi:
            if entry.get("type") == "function" and entry.get("name") == method:
                types = ",".join(_abi_type(item) for item in entry.get("inputs", []))
                return f"{method}({types})"
        raise KeyError(f"{self.name} has no function {method!r}")


def _abi_type(item: Mapping[str, Any]) -> str:
    kind = str(item.get("type", ""))
    if kind.startswith("tuple"):
        inner = ",".join(_abi_type(component) for component in item.get("components", []))
        return f"({inner}){kind[len('tuple'):]}"
    return kind


def _extract_bytecode(payload: Mapping[str, Any]) -> Optional[str]:
    raw = payload.get("bytecode")
    # Foundry nests creation code under ``bytecode.object``.
    if isinstance(raw, Mapping):
        raw = raw.get("object")
    if not isinstance(raw, str) or not raw:
        return None
    if not is_hex(raw):
        return None
    return add_0x_prefix(raw)


class ArtifactLoader:
    """Resolve logical component names to artifacts on local storage.

    Artifacts are immutable for the lifetime of a run, so cached entries are
    never invalidated.
    """

    def __init__(self, root: Path | str, paths: Mapping[str, str] | None = None) -> None:
        self._root = Path(root)
        self._paths = dict(paths or {})
        self._cache: Dict[str, Artifact] = {}

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, name: str) -> Path:
        relative = self._paths.get(name, f"{name}.json")
        return (self._root / relative).resolve()

    def is_cached(self, name: str) -> bool:
        return name in self._cache

    def load(self, name: str) -> Artifact:
        cached = self._cache.get(name)
        if cached is not None:
            return cached
        path = self.path_for(name)
        if not path.is_file():
            raise ArtifactNotFound(name, f"{path} does not exist")
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ArtifactNotFound(name, f"{path} is not valid JSON ({exc})") from exc
        if not isinstance(payload, Mapping):
            raise ArtifactNotFound(name, f"{path} does not contain a JSON object")
        bytecode = _extract_bytecode(payload)
        if bytecode is None:
            raise ArtifactNotFound(name, f"{path} has no hex 'bytecode'")
        abi = payload.get("abi")
        if not isinstance(abi, list):
            raise ArtifactNotFound(name, f"{path} has no 'abi' list")
        artifact = Artifact(name=name, bytecode=bytecode, abi=abi)
        self._cache[name] = artifact
        LOGGER.debug(
            "Artifact loaded",
            extra={"event": "artifact_loaded", "data": {"name": name, "path": str(path)}},
        )
        return artifact


__all__ = ["Artifact", "ArtifactLoader"]
