"""Turn step arguments into concrete values using the ledger and configuration."""

from __future__ import annotations

import json
from typing import Any, Iterable, List, Mapping, Optional

from eth_utils import is_address, to_checksum_address

from .artifacts import ArtifactLoader
from .errors import ConfigError
from .ledger import Ledger
from .models import Argument, DeployedComponent


class ArgumentResolver:
    """Resolve :class:`Argument` references for one run.

    The resolver never invents a value. A reference to a name the ledger does
    not know raises :class:`UnresolvedDependency`, and an unknown parameter or
    metadata key raises :class:`ConfigError`.
    """

    def __init__(
        self,
        ledger: Ledger,
        loader: ArtifactLoader,
        *,
        parameters: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        deployer: Optional[str] = None,
    ) -> None:
        self.ledger = ledger
        self.loader = loader
        self._parameters = dict(parameters or {})
        self._metadata = dict(metadata or {})
        self._deployer = deployer

    def resolve(
        self,
        argument: Argument,
        *,
        require_deployed: bool = False,
        overrides: Optional[Mapping[str, str]] = None,
    ) -> Any:
        source = argument.source
        value = argument.value
        if argument.reference is not None:
            if overrides and value in overrides:
                return overrides[value]
            if require_deployed or source == "deployed":
                return self.ledger.resolve_deployed(value).address
            if source == "predicted":
                return self.ledger.resolve_predicted(value).address
            return self.ledger.resolve_address(value)
        if source == "param":
            if value not in self._parameters:
                raise ConfigError(f"Unknown parameter {value!r}")
            return self._parameters[value]
        if source == "code_hash":
            return self.loader.load(value).code_hash
        if source == "bytecode":
            return self.loader.load(value).bytecode
        if source == "deployer":
            if self._deployer is None:
                raise ConfigError("No deployer account is available for a 'deployer' argument")
            return self._deployer
        if source == "json":
            payload = value
            if isinstance(value, str):
                if value not in self._metadata:
                    raise ConfigError(f"Unknown metadata entry {value!r}")
                payload = self._metadata[value]
            return json.dumps(payload, separators=(",", ":"), sort_keys=False)
        return value

    def resolve_all(
        self,
        arguments: Iterable[Argument],
        *,
        require_deployed: bool = False,
        overrides: Optional[Mapping[str, str]] = None,
    ) -> List[Any]:
        return [
            self.resolve(argument, require_deployed=require_deployed, overrides=overrides)
            for argument in arguments
        ]

    def address_of(self, argument: Argument, *, require_deployed: bool = False) -> str:
        value = self.resolve(argument, require_deployed=require_deployed)
        if not isinstance(value, str) or not is_address(value):
            raise ConfigError(f"{argument.describe()} does not resolve to an address (got {value!r})")
        return to_checksum_address(value)

    def component_for(self, argument: Argument) -> Optional[DeployedComponent]:
        """Ledger entry behind a ledger-sourced argument, if it is deployed."""

        name = argument.reference
        if name is None:
            return None
        return self.ledger.components.get(name)


__all__ = ["ArgumentResolver"]
