"""Deterministic in-memory execution layer for dry runs and tests.

Plain deployments land at nonce-derived CREATE addresses of the simulated
deployer and factory creations at their CREATE2 address. A factory that
already reported an address through the view call named as the creation
output creates there instead. Every prediction made against the simulator
holds unless a drift is injected on purpose.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from eth_abi.exceptions import EncodingError
from eth_utils import encode_hex, keccak, to_checksum_address

from .artifacts import Artifact
from .errors import ConfigError, DeploymentError, ExecutionReverted, ExecutionTimeout, FollowUpFailed
from .executor import DeploymentExecutor, FactoryCall, extract_created_address
from .models import CreationReceipt, DeployedComponent, EventLog, TxReceipt
from .predictor import predict, predict_create

LOGGER = logging.getLogger(__name__)

# First account of the well-known development mnemonic.
DEFAULT_DEPLOYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
DEFAULT_CHAIN_ID = 31337


def _args_key(args: Sequence[Any]) -> str:
    return repr(tuple(args))


@dataclass(frozen=True)
class JournalEntry:
    operation: str
    label: str
    address: Optional[str] = None
    args: Tuple[Any, ...] = field(default_factory=tuple)


class SimulatedChain(DeploymentExecutor):
    """In-memory executor with scripted failures.

    ``reject`` and ``stall`` take a label matched against component names,
    artifact names and method names. A scripted failure fires before any
    simulated state changes.
    """

    def __init__(
        self,
        *,
        deployer: str = DEFAULT_DEPLOYER,
        chain_id: int = DEFAULT_CHAIN_ID,
        confirmation_timeout: float = 120.0,
    ) -> None:
        self._deployer = to_checksum_address(deployer)
        self._chain_id = chain_id
        self._confirmation_timeout = confirmation_timeout
        self._nonce = 0
        self._block = 0
        self._code: Dict[str, bytes] = {}
        self._rejections: Dict[str, str] = {}
        self._stalls: Set[str] = set()
        self._drifts: Set[str] = set()
        self._stubs: Dict[Tuple[Optional[str], str], Any] = {}
        self._answers: Dict[Tuple[str, str, str], str] = {}
        self._placeholders: Set[str] = set()
        self.journal: List[JournalEntry] = []

    @property
    def deployer(self) -> str:
        return self._deployer

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def nonce(self) -> int:
        return self._nonce

    def reject(self, label: str, reason: str = "execution reverted") -> None:
        self._rejections[label] = reason

    def stall(self, label: str) -> None:
        self._stalls.add(label)

    def allow(self, label: str) -> None:
        self._rejections.pop(label, None)
        self._stalls.discard(label)

    def drift(self, name: str) -> None:
        """Make the factory place ``name`` somewhere other than its CREATE2 address."""

        self._drifts.add(name)

    def stub_read(self, method: str, value: Any, address: Optional[str] = None) -> None:
        key = (to_checksum_address(address) if address else None, method)
        self._stubs[key] = value

    def set_code(self, address: str, code: bytes) -> None:
        self._code[to_checksum_address(address)] = bytes(code)

    def labels(self, operation: str) -> List[str]:
        return [entry.label for entry in self.journal if entry.operation == operation]

    def deploy(self, artifact: Artifact, args: Sequence[Any], *, name: str) -> DeployedComponent:
        operation = f"deploy {name}"
        self._script(operation, (name, artifact.name))
        try:
            init_code = artifact.init_code(args)
        except (ValueError, TypeError, EncodingError) as exc:
            raise ExecutionReverted(operation, f"constructor arguments rejected: {exc}") from exc
        address = predict_create(self._deployer, self._nonce)
        receipt = self._confirm(operation, contract_address=address)
        self._code[address] = init_code or b"\x00"
        self.journal.append(JournalEntry("deploy", name, address, tuple(args)))
        return DeployedComponent(
            name=name,
            address=address,
            artifact=artifact.name,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )

    def create_via_factory(self, call: FactoryCall) -> CreationReceipt:
        factory = to_checksum_address(call.factory)
        self._require_code(call.operation, factory)
        self._require_method(call.abi, call.method)
        self._script(call.operation, (call.name, call.method))
        promised = None
        if call.output.call:
            promised = self._answers.get((factory, call.output.call, _args_key(call.output.args)))
        if call.name in self._drifts:
            address = predict(factory, keccak(call.salt), call.code_hash)
        elif promised is not None:
            address = promised
        else:
            address = predict(factory, call.salt, call.code_hash)
        if address in self._code and address not in self._placeholders:
            raise ExecutionReverted(call.operation, f"an account already exists at {address}")
        events: List[EventLog] = []
        if call.output.event:
            events.append(EventLog(event=call.output.event, address=factory, args={call.output.arg: address}))
        receipt = self._confirm(call.operation, events=events)
        self._placeholders.discard(address)
        self._code[address] = call.code_hash
        if call.output.call:
            self._stubs[(factory, call.output.call)] = address
        self.journal.append(JournalEntry("create", call.name, address, tuple(call.args)))
        try:
            created = extract_created_address(self, call, receipt)
        except DeploymentError as exc:
            raise FollowUpFailed(call.operation, exc, receipt.tx_hash) from exc
        return CreationReceipt(address=created, receipt=receipt)

    def invoke(self, address: str, abi: List[Dict[str, Any]], method: str, args: Sequence[Any]) -> TxReceipt:
        target = to_checksum_address(address)
        operation = f"{method} on {target}"
        self._require_code(operation, target)
        self._require_method(abi, method)
        self._script(operation, (method,))
        receipt = self._confirm(operation)
        self.journal.append(JournalEntry("invoke", method, target, tuple(args)))
        return receipt

    def read(self, address: str, abi: List[Dict[str, Any]], method: str, args: Sequence[Any] = ()) -> Any:
        target = to_checksum_address(address)
        operation = f"{method} on {target}"
        self._require_code(operation, target)
        if method in self._rejections:
            raise ExecutionReverted(operation, self._rejections[method])
        self.journal.append(JournalEntry("read", method, target, tuple(args)))
        for key in ((target, method), (None, method)):
            if key in self._stubs:
                return self._stubs[key]
        entry = self._require_method(abi, method)
        outputs = [self._default_output(item.get("type", ""), target, method, args) for item in entry.get("outputs", [])]
        if not outputs:
            return None
        if len(outputs) == 1:
            return outputs[0]
        return tuple(outputs)

    def get_code(self, address: str) -> bytes:
        return self._code.get(to_checksum_address(address), b"")

    def _default_output(self, kind: str, target: str, method: str, args: Sequence[Any]) -> Any:
        key = _args_key(args)
        seed = keccak(text=f"{target}:{method}:{key}")
        if kind.endswith("]"):
            return []
        if kind == "address":
            # Reads of component addresses resolve to accounts with code.
            address = to_checksum_address(seed[12:])
            if address not in self._code:
                self._code[address] = b"\x00"
                self._placeholders.add(address)
            # A factory creating through the same view call keeps its word.
            self._answers[(target, method, key)] = address
            return address
        if kind.startswith("bytes"):
            size = kind[len("bytes"):]
            return seed[: int(size)] if size else seed
        if kind == "bool":
            return True
        if kind.startswith(("uint", "int")):
            return 0
        if kind == "string":
            return ""
        return None

    def _confirm(
        self,
        operation: str,
        *,
        contract_address: Optional[str] = None,
        events: Optional[List[EventLog]] = None,
    ) -> TxReceipt:
        tx_hash = encode_hex(keccak(text=f"{self._deployer}:{self._nonce}:{operation}"))
        self._nonce += 1
        self._block += 1
        LOGGER.debug(
            "Simulated %s",
            operation,
            extra={"event": "simulated_tx", "data": {"operation": operation, "tx": tx_hash, "block": self._block}},
        )
        return TxReceipt(
            tx_hash=tx_hash,
            block_number=self._block,
            contract_address=contract_address,
            gas_used=21000,
            events=list(events or []),
        )

    def _script(self, operation: str, labels: Sequence[str]) -> None:
        for label in labels:
            if label in self._rejections:
                raise ExecutionReverted(operation, self._rejections[label])
            if label in self._stalls:
                raise ExecutionTimeout(operation, self._confirmation_timeout)

    def _require_code(self, operation: str, address: str) -> None:
        if not self._code.get(address):
            raise ExecutionReverted(operation, f"no code at {address}")

    @staticmethod
    def _require_method(abi: List[Dict[str, Any]], method: str) -> Dict[str, Any]:
        for entry in abi:
            if entry.get("type") == "function" and entry.get("name") == method:
                return entry
        raise ConfigError(f"ABI has no function {method!r}")


__all__ = ["DEFAULT_CHAIN_ID", "DEFAULT_DEPLOYER", "JournalEntry", "SimulatedChain"]
