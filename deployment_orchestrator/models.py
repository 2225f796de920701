"""Shared Pydantic models for deployment plans, results and receipts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Tuple, Union

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ArgumentSource = Literal[
    "literal",
    "param",
    "address",
    "deployed",
    "predicted",
    "code_hash",
    "bytecode",
    "deployer",
    "json",
]
_SOURCES = {
    "literal",
    "param",
    "address",
    "deployed",
    "predicted",
    "code_hash",
    "bytecode",
    "deployer",
    "json",
}
# Sources that read the ledger rather than static configuration or artifacts.
LEDGER_SOURCES = frozenset({"address", "deployed", "predicted"})

_STEP_ID_PATTERN = r"^[A-Za-z0-9._:-]{1,96}$"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _checksum(value: str) -> str:
    if not is_address(value):
        raise ValueError(f"{value!r} is not a 20-byte address")
    return to_checksum_address(value)


class Argument(BaseModel):
    """A single constructor or call argument and where its value comes from.

    A bare scalar is a literal. A single-key mapping names the source, for
    example ``{"address": "Vault"}`` or ``{"param": "salt"}``.
    """

    model_config = ConfigDict(frozen=True)

    source: ArgumentSource = "literal"
    value: Any = None

    @model_validator(mode="before")
    @classmethod
    def _expand_shorthand(cls, raw: Any) -> Any:
        if isinstance(raw, Argument):
            return raw
        if isinstance(raw, dict):
            if "source" in raw:
                return raw
            if len(raw) == 1:
                key, value = next(iter(raw.items()))
                if key in _SOURCES:
                    return {"source": key, "value": value}
            return {"source": "literal", "value": raw}
        return {"source": "literal", "value": raw}

    @model_validator(mode="after")
    def _check_reference(self) -> "Argument":
        if self.source in LEDGER_SOURCES | {"param", "code_hash", "bytecode"}:
            if not isinstance(self.value, str) or not self.value:
                raise ValueError(f"{self.source} argument requires a name, got {self.value!r}")
        return self

    @property
    def reference(self) -> Optional[str]:
        """Ledger name this argument depends on, if any."""

        if self.source in LEDGER_SOURCES:
            return self.value
        return None

    def describe(self) -> str:
        if self.source == "literal":
            return repr(self.value)
        if self.source == "deployer":
            return "<deployer>"
        if self.source == "json":
            return "<json>"
        return f"{self.source}:{self.value}"


def _references(arguments: Iterator[Argument]) -> List[str]:
    names: List[str] = []
    for argument in arguments:
        name = argument.reference
        if name and name not in names:
            names.append(name)
    return names


class ComponentSpec(BaseModel):
    """Static description of a component: its name, artifact and constructor arguments."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    artifact: str = Field(..., min_length=1)
    args: Tuple[Argument, ...] = ()


class OutputSpec(BaseModel):
    """How to read the address a factory produced: a decoded event or a view call."""

    model_config = ConfigDict(frozen=True)

    event: Optional[str] = None
    arg: Optional[str] = None
    call: Optional[str] = None
    args: Tuple[Argument, ...] = ()

    @model_validator(mode="after")
    def _one_source(self) -> "OutputSpec":
        if bool(self.event) == bool(self.call):
            raise ValueError("output needs exactly one of 'event' or 'call'")
        if self.event and not self.arg:
            raise ValueError("event outputs need the name of the event argument holding the address")
        return self


class SecondaryOutput(BaseModel):
    """Extra component produced by a factory call, read back with a view call."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    call: str = Field(..., min_length=1)
    args: Tuple[Argument, ...] = ()
    artifact: Optional[str] = None


class GrantSpec(BaseModel):
    """Permission grant issued on an authorizer before a configuration call."""

    model_config = ConfigDict(frozen=True)

    authorizer: Argument
    grantee: Argument
    target: Optional[Argument] = None
    action: Optional[str] = None
    role: Optional[str] = None
    method: str = "grantRole"

    @model_validator(mode="after")
    def _action_source(self) -> "GrantSpec":
        if self.role is None and (self.target is None or not self.action):
            raise ValueError("grant needs either a literal 'role' or a 'target' and 'action'")
        return self


class CallSpec(BaseModel):
    """Configuration call on a deployed component."""

    model_config = ConfigDict(frozen=True)

    target: Argument
    method: str = Field(..., min_length=1)
    args: Tuple[Argument, ...] = ()
    artifact: Optional[str] = None


class _StepBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., pattern=_STEP_ID_PATTERN)
    description: Optional[str] = None
    needs: Tuple[str, ...] = ()

    def arguments(self) -> Iterator[Argument]:
        return iter(())

    def references(self) -> List[str]:
        return _references(self.arguments())

    @property
    def produces(self) -> Tuple[str, ...]:
        return ()


class DeployStep(_StepBase):
    """Instantiate a component directly with the executor."""

    kind: Literal["deploy"] = "deploy"
    component: ComponentSpec

    def arguments(self) -> Iterator[Argument]:
        yield from self.component.args

    @property
    def produces(self) -> Tuple[str, ...]:
        return (self.component.name,)


class PredictStep(_StepBase):
    """Compute where a factory will place a component before it exists.

    With ``code`` the address is derived locally with CREATE2 from the
    factory, the salt and the creation code hash. With ``call`` the deployed
    factory is asked through a view function, for factories whose scheme is
    not plain CREATE2.
    """

    kind: Literal["predict"] = "predict"
    name: str = Field(..., min_length=1)
    factory: Argument
    salt: Argument
    code: Optional[str] = Field(default=None, min_length=1)
    init_args: Tuple[Argument, ...] = ()
    call: Optional[str] = Field(default=None, min_length=1)
    args: Tuple[Argument, ...] = ()

    @model_validator(mode="after")
    def _one_derivation(self) -> "PredictStep":
        if (self.code is None) == (self.call is None):
            raise ValueError("predict step needs exactly one of 'code' or 'call'")
        if self.call is not None and self.init_args:
            raise ValueError("'init_args' only apply to a 'code' prediction")
        if self.code is not None and self.args:
            raise ValueError("'args' only apply to a 'call' prediction")
        return self

    def arguments(self) -> Iterator[Argument]:
        yield self.factory
        yield self.salt
        yield from self.init_args
        yield from self.args


class CreateStep(_StepBase):
    """Ask a deployed factory to create a component at its deterministic address."""

    kind: Literal["create"] = "create"
    name: str = Field(..., min_length=1)
    factory: str = Field(..., min_length=1)
    method: str = "create"
    args: Tuple[Argument, ...] = ()
    salt: Argument
    code: str = Field(..., min_length=1)
    init_args: Tuple[Argument, ...] = ()
    output: OutputSpec
    also_record: Tuple[SecondaryOutput, ...] = ()

    @model_validator(mode="after")
    def _distinct_names(self) -> "CreateStep":
        seen = {self.name}
        for extra in self.also_record:
            if extra.name in seen:
                raise ValueError(f"create step records {extra.name!r} more than once")
            seen.add(extra.name)
        return self

    def arguments(self) -> Iterator[Argument]:
        yield Argument(source="deployed", value=self.factory)
        yield from self.args
        yield self.salt
        yield from self.init_args
        yield from self.output.args
        for extra in self.also_record:
            yield from extra.args

    @property
    def produces(self) -> Tuple[str, ...]:
        return (self.name,) + tuple(extra.name for extra in self.also_record)


class WireStep(_StepBase):
    """Post-deployment configuration: an optional grant, then an optional call."""

    kind: Literal["wire"] = "wire"
    grant: Optional[GrantSpec] = None
    call: Optional[CallSpec] = None

    @model_validator(mode="after")
    def _has_work(self) -> "WireStep":
        if self.grant is None and self.call is None:
            raise ValueError("wire step needs a 'grant', a 'call', or both")
        return self

    def arguments(self) -> Iterator[Argument]:
        if self.grant is not None:
            yield self.grant.authorizer
            yield self.grant.grantee
            if self.grant.target is not None:
                yield self.grant.target
        if self.call is not None:
            yield self.call.target
            yield from self.call.args


DeploymentStep = Annotated[
    Union[DeployStep, PredictStep, CreateStep, WireStep],
    Field(discriminator="kind"),
]


class DeploymentPlan(BaseModel):
    """Operator-ordered list of steps. Execution order is list order."""

    model_config = ConfigDict(frozen=True)

    network: str
    steps: Tuple[DeploymentStep, ...]

    @field_validator("steps")
    @classmethod
    def _unique_ids(cls, steps: Tuple[Any, ...]) -> Tuple[Any, ...]:
        seen = set()
        for step in steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id {step.id!r}")
            seen.add(step.id)
        return steps

    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]


class DeployedComponent(BaseModel):
    """Confirmed on-chain component."""

    model_config = ConfigDict(frozen=True)

    name: str
    address: str
    artifact: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    deployed_at: datetime = Field(default_factory=_utcnow)
    step_id: Optional[str] = None
    via: Optional[str] = None

    @field_validator("address")
    @classmethod
    def _checksum_address(cls, value: str) -> str:
        return _checksum(value)


class PredictedAddress(BaseModel):
    """Address derived ahead of deployment; authoritative only once confirmed."""

    model_config = ConfigDict(frozen=True)

    name: str
    address: str
    factory: str
    salt: str
    code_hash: Optional[str] = None
    scheme: Literal["create2", "create", "factory"] = "create2"
    # View function that reported the address, for ``factory`` predictions.
    method: Optional[str] = None

    @field_validator("address", "factory")
    @classmethod
    def _checksum_address(cls, value: str) -> str:
        return _checksum(value)


class EventLog(BaseModel):
    event: str
    address: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)


class TxReceipt(BaseModel):
    """Confirmation of a state-changing operation."""

    tx_hash: str
    block_number: Optional[int] = None
    status: int = 1
    contract_address: Optional[str] = None
    gas_used: Optional[int] = None
    events: List[EventLog] = Field(default_factory=list)

    def find_event(self, name: str) -> Optional[EventLog]:
        return next((event for event in self.events if event.event == name), None)


class CreationReceipt(BaseModel):
    """Address produced by a factory together with the confirming receipt."""

    address: str
    receipt: TxReceipt

    @field_validator("address")
    @classmethod
    def _checksum_address(cls, value: str) -> str:
        return _checksum(value)


__all__ = [
    "Argument",
    "ArgumentSource",
    "CallSpec",
    "ComponentSpec",
    "CreateStep",
    "CreationReceipt",
    "DeployStep",
    "DeployedComponent",
    "DeploymentPlan",
    "DeploymentStep",
    "EventLog",
    "GrantSpec",
    "LEDGER_SOURCES",
    "OutputSpec",
    "PredictStep",
    "PredictedAddress",
    "SecondaryOutput",
    "TxReceipt",
    "WireStep",
]
