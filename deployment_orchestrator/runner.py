"""Sequential execution of a deployment plan.

Steps run in exactly the order the plan lists them. Each step resolves its
arguments against the ledger, performs its operation through the executor,
and only then records what it produced, so a step rejected by the execution
layer leaves the ledger as it was before the step started.

A factory creation is the exception: the created component is recorded as
soon as its address is confirmed, ahead of the reads for secondary outputs.
If one of those reads fails the step stays incomplete, and resuming it
repeats only the reads that are still missing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from eth_abi.exceptions import EncodingError
from eth_utils import encode_hex, is_address, is_same_address, to_checksum_address

from .artifacts import Artifact, ArtifactLoader
from .errors import (
    AddressPredictionMismatch,
    ConfigError,
    DeploymentError,
    DuplicateComponentName,
    FollowUpFailed,
    StepFailed,
    UnresolvedDependency,
)
from .executor import DeploymentExecutor, FactoryCall, ResolvedOutput
from .ledger import Ledger, Manifest
from .models import (
    Argument,
    CreateStep,
    DeployedComponent,
    DeploymentPlan,
    DeployStep,
    PredictedAddress,
    PredictStep,
    WireStep,
)
from .predictor import init_code_hash, predict, to_bytes32
from .resolution import ArgumentResolver
from .wiring import WiringStage

LOGGER = logging.getLogger(__name__)

StepHook = Callable[[Any, Ledger], None]


@dataclass
class RunResult:
    manifest: Manifest
    executed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class DeploymentRunner:
    """Drive a :class:`DeploymentPlan` through an executor, one step at a time."""

    def __init__(
        self,
        executor: DeploymentExecutor,
        loader: ArtifactLoader,
        *,
        parameters: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        config_snapshot: Optional[Dict[str, Any]] = None,
        on_step: Optional[StepHook] = None,
    ) -> None:
        self._executor = executor
        self._loader = loader
        self._parameters = dict(parameters or {})
        self._metadata = dict(metadata or {})
        self._config_snapshot = dict(config_snapshot or {})
        self._on_step = on_step
        self._wiring = WiringStage(executor, loader)

    def new_ledger(self, network: str) -> Ledger:
        return Ledger(
            network,
            chain_id=self._executor.chain_id,
            deployer=self._executor.deployer,
            config=self._config_snapshot,
        )

    def run(self, plan: DeploymentPlan, ledger: Optional[Ledger] = None) -> RunResult:
        ledger = ledger if ledger is not None else self.new_ledger(plan.network)
        resolver = ArgumentResolver(
            ledger,
            self._loader,
            parameters=self._parameters,
            metadata=self._metadata,
            deployer=self._executor.deployer,
        )
        result_executed: List[str] = []
        result_skipped: List[str] = []
        total = len(plan.steps)
        LOGGER.info(
            "Deployment of %s started (%d steps)",
            ledger.network,
            total,
            extra={"event": "run_started", "data": {"network": ledger.network, "steps": total}},
        )
        for index, step in enumerate(plan.steps):
            if ledger.is_completed(step.id):
                result_skipped.append(step.id)
                LOGGER.info(
                    "Step %d/%d %s already completed, skipping",
                    index + 1,
                    total,
                    step.id,
                    extra={"event": "step_skipped", "data": {"step": step.id, "index": index}},
                )
                continue
            LOGGER.info(
                "Step %d/%d %s (%s)",
                index + 1,
                total,
                step.id,
                step.kind,
                extra={"event": "step_started", "data": {"step": step.id, "index": index, "kind": step.kind}},
            )
            try:
                self._check_needs(step, ledger)
                self._check_produces(step, ledger)
                self._execute(step, ledger, resolver)
            except DeploymentError as exc:
                LOGGER.error(
                    "Step %d/%d %s failed: %s",
                    index + 1,
                    total,
                    step.id,
                    exc,
                    extra={
                        "event": "step_failed",
                        "data": {"step": step.id, "index": index, "error": type(exc).__name__, "detail": str(exc)},
                    },
                )
                raise StepFailed(step.id, index, exc, ledger.snapshot("failed")) from exc
            ledger.mark_completed(step.id)
            result_executed.append(step.id)
            if self._on_step is not None:
                self._on_step(step, ledger)
        manifest = ledger.snapshot("complete")
        LOGGER.info(
            "Deployment of %s complete: %d components",
            ledger.network,
            len(manifest.components),
            extra={"event": "run_completed", "data": {"network": ledger.network, "components": manifest.addresses()}},
        )
        return RunResult(manifest=manifest, executed=result_executed, skipped=result_skipped)

    @staticmethod
    def _check_needs(step: Any, ledger: Ledger) -> None:
        for need in step.needs:
            if not ledger.is_completed(need):
                raise UnresolvedDependency(need, f"step {step.id!r} needs it to have completed first")

    @staticmethod
    def _check_produces(step: Any, ledger: Ledger) -> None:
        components = ledger.components
        for name in step.produces:
            # A resumed step may already have recorded part of its output.
            if name in components and components[name].step_id != step.id:
                raise DuplicateComponentName(name)

    def _execute(self, step: Any, ledger: Ledger, resolver: ArgumentResolver) -> None:
        if isinstance(step, DeployStep):
            self._deploy(step, ledger, resolver)
        elif isinstance(step, PredictStep):
            self._predict(step, ledger, resolver)
        elif isinstance(step, CreateStep):
            self._create(step, ledger, resolver)
        elif isinstance(step, WireStep):
            self._wiring.apply(step, resolver)
        else:  # pragma: no cover - the plan model only admits the kinds above
            raise ConfigError(f"Unsupported step kind {type(step).__name__}")

    def _deploy(self, step: DeployStep, ledger: Ledger, resolver: ArgumentResolver) -> None:
        spec = step.component
        artifact = self._loader.load(spec.artifact)
        args = resolver.resolve_all(spec.args)
        deployed = self._executor.deploy(artifact, args, name=spec.name)
        self._confirm_prediction(spec.name, deployed.address, ledger)
        ledger.record(spec.name, deployed.model_copy(update={"step_id": step.id}))

    def _predict(self, step: PredictStep, ledger: Ledger, resolver: ArgumentResolver) -> None:
        salt = self._salt(step.salt, resolver)
        if step.call is not None:
            factory = resolver.address_of(step.factory, require_deployed=True)
            component = resolver.component_for(step.factory)
            if component is None or component.artifact is None:
                raise ConfigError(f"No artifact is known for factory {step.factory.describe()}")
            value = self._executor.read(
                factory, self._loader.load(component.artifact).abi, step.call, resolver.resolve_all(step.args)
            )
            prediction = PredictedAddress(
                name=step.name,
                address=self._as_address(step.name, value),
                factory=factory,
                salt=encode_hex(salt),
                scheme="factory",
                method=step.call,
            )
        else:
            factory = resolver.address_of(step.factory)
            code_hash = self._code_hash(self._loader.load(step.code), step.init_args, resolver)
            prediction = PredictedAddress(
                name=step.name,
                address=predict(factory, salt, code_hash),
                factory=factory,
                salt=encode_hex(salt),
                code_hash=encode_hex(code_hash),
            )
        ledger.predict(prediction)

    def _create(self, step: CreateStep, ledger: Ledger, resolver: ArgumentResolver) -> None:
        factory = ledger.resolve_deployed(step.factory)
        factory_abi = self._loader.load(factory.artifact or step.factory).abi
        primary = ledger.components.get(step.name)
        if primary is None:
            primary = self._create_primary(step, factory, factory_abi, ledger, resolver)
        else:
            LOGGER.info(
                "%s was created by an earlier attempt of %s; repeating its follow-up reads",
                step.name,
                step.id,
                extra={"event": "creation_reused", "data": {"step": step.id, "name": step.name}},
            )

        for extra in step.also_record:
            if extra.name in ledger:
                continue
            try:
                value = self._executor.read(
                    factory.address,
                    factory_abi,
                    extra.call,
                    resolver.resolve_all(extra.args, overrides={step.name: primary.address}),
                )
                address = self._as_address(extra.name, value)
            except DeploymentError as exc:
                raise FollowUpFailed(f"{step.method} {step.name}", exc, primary.tx_hash) from exc
            ledger.record(
                extra.name,
                DeployedComponent(
                    name=extra.name,
                    address=address,
                    artifact=extra.artifact,
                    tx_hash=primary.tx_hash,
                    block_number=primary.block_number,
                    step_id=step.id,
                    via=step.factory,
                ),
            )

    def _create_primary(
        self,
        step: CreateStep,
        factory: DeployedComponent,
        factory_abi: List[Dict[str, Any]],
        ledger: Ledger,
        resolver: ArgumentResolver,
    ) -> DeployedComponent:
        call = FactoryCall(
            name=step.name,
            factory=factory.address,
            abi=factory_abi,
            method=step.method,
            args=tuple(resolver.resolve_all(step.args)),
            salt=self._salt(step.salt, resolver),
            code_hash=self._code_hash(self._loader.load(step.code), step.init_args, resolver),
            output=ResolvedOutput(
                event=step.output.event,
                arg=step.output.arg,
                call=step.output.call,
                args=tuple(resolver.resolve_all(step.output.args)),
            ),
        )
        creation = self._executor.create_via_factory(call)
        self._confirm_prediction(step.name, creation.address, ledger)
        # Recorded before any follow-up read: the component now exists on chain.
        component = DeployedComponent(
            name=step.name,
            address=creation.address,
            artifact=step.code,
            tx_hash=creation.receipt.tx_hash,
            block_number=creation.receipt.block_number,
            step_id=step.id,
            via=step.factory,
        )
        ledger.record(step.name, component)
        return component

    @staticmethod
    def _confirm_prediction(name: str, actual: str, ledger: Ledger) -> None:
        prediction = ledger.prediction(name)
        if prediction is None:
            return
        if not is_same_address(prediction.address, actual):
            raise AddressPredictionMismatch(name, prediction.address, actual)
        LOGGER.info(
            "%s confirmed at its predicted address %s",
            name,
            actual,
            extra={"event": "prediction_confirmed", "data": {"name": name, "address": actual}},
        )

    @staticmethod
    def _salt(argument: Argument, resolver: ArgumentResolver) -> bytes:
        try:
            return to_bytes32(resolver.resolve(argument), label="salt")
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid salt {argument.describe()}: {exc}") from exc

    @staticmethod
    def _code_hash(artifact: Artifact, init_args: Sequence[Argument], resolver: ArgumentResolver) -> bytes:
        if not init_args:
            return artifact.code_hash
        try:
            return init_code_hash(artifact.init_code(resolver.resolve_all(init_args)))
        except (TypeError, ValueError, EncodingError) as exc:
            raise ConfigError(f"Cannot encode init arguments for {artifact.name}: {exc}") from exc

    @staticmethod
    def _as_address(name: str, value: Any) -> str:
        if isinstance(value, (bytes, bytearray)) and len(value) == 20:
            return to_checksum_address(value)
        if not isinstance(value, str) or not is_address(value):
            raise ConfigError(f"Read for {name!r} did not return an address (got {value!r})")
        return to_checksum_address(value)


__all__ = ["DeploymentRunner", "RunResult", "StepHook"]
