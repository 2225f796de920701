"""Deployment executors: the narrow interface to the execution layer."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import requests
from eth_account import Account
from eth_utils import is_address, to_checksum_address
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.logs import DISCARD

from .artifacts import Artifact
from .chain import Web3Config, get_web3
from .config import NetworkConfig
from .errors import ConfigError, DeploymentError, ExecutionReverted, ExecutionTimeout, FollowUpFailed
from .models import CreationReceipt, DeployedComponent, EventLog, TxReceipt

LOGGER = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "00" * 20


@dataclass(frozen=True)
class ResolvedOutput:
    """Where to read a factory-created address from, with arguments already resolved."""

    event: Optional[str] = None
    arg: Optional[str] = None
    call: Optional[str] = None
    args: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class FactoryCall:
    """A fully resolved request for a factory to create a component.

    ``args`` is the complete argument list of ``method``. ``salt`` and
    ``code_hash`` are the CREATE2 inputs the factory is expected to use.
    """

    name: str
    factory: str
    abi: List[Dict[str, Any]]
    method: str
    args: Tuple[Any, ...]
    salt: bytes
    code_hash: bytes
    output: ResolvedOutput = field(default_factory=ResolvedOutput)

    @property
    def operation(self) -> str:
        return f"{self.method} {self.name}"


class DeploymentExecutor:
    """Operations the runner needs from the execution layer.

    Every call blocks until the execution layer confirms success, reports a
    rejection (:class:`ExecutionReverted`) or the wait policy expires
    (:class:`ExecutionTimeout`).
    """

    @property
    def deployer(self) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    @property
    def chain_id(self) -> Optional[int]:  # pragma: no cover - interface
        raise NotImplementedError

    def deploy(self, artifact: Artifact, args: Sequence[Any], *, name: str) -> DeployedComponent:  # pragma: no cover - interface
        raise NotImplementedError

    def create_via_factory(self, call: FactoryCall) -> CreationReceipt:  # pragma: no cover - interface
        raise NotImplementedError

    def invoke(
        self, address: str, abi: List[Dict[str, Any]], method: str, args: Sequence[Any]
    ) -> TxReceipt:  # pragma: no cover - interface
        raise NotImplementedError

    def read(
        self, address: str, abi: List[Dict[str, Any]], method: str, args: Sequence[Any] = ()
    ) -> Any:  # pragma: no cover - interface
        raise NotImplementedError

    def get_code(self, address: str) -> bytes:  # pragma: no cover - interface
        raise NotImplementedError


def _address_from_output(operation: str, value: Any) -> str:
    if isinstance(value, (bytes, bytearray)) and len(value) == 20:
        value = to_checksum_address(value)
    if not isinstance(value, str) or not is_address(value):
        raise ExecutionReverted(operation, f"factory output {value!r} is not an address")
    if int(value, 16) == 0:
        raise ExecutionReverted(operation, "factory reported the zero address")
    return to_checksum_address(value)


def extract_created_address(executor: DeploymentExecutor, call: FactoryCall, receipt: TxReceipt) -> str:
    """Read the created address from the receipt event or the configured view call."""

    output = call.output
    if output.event:
        event = receipt.find_event(output.event)
        if event is None:
            raise ExecutionReverted(call.operation, f"no {output.event} event in receipt", receipt.tx_hash)
        if output.arg not in event.args:
            raise ExecutionReverted(
                call.operation, f"{output.event} event has no argument {output.arg!r}", receipt.tx_hash
            )
        return _address_from_output(call.operation, event.args[output.arg])
    value = executor.read(call.factory, call.abi, output.call or "", output.args)
    return _address_from_output(call.operation, value)


class Web3Executor(DeploymentExecutor):
    """Executor backed by a web3 JSON-RPC connection.

    Transactions are signed locally when a private key is given; otherwise the
    node's first unlocked account sends them.
    """

    def __init__(
        self,
        web3: Web3,
        *,
        private_key: Optional[str] = None,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 0.5,
    ) -> None:
        self._web3 = web3
        self._account = Account.from_key(private_key) if private_key else None
        self._confirmation_timeout = confirmation_timeout
        self._poll_interval = poll_interval
        self._deployer: Optional[str] = self._account.address if self._account else None
        self._chain_id: Optional[int] = None

    @classmethod
    def from_network(
        cls, network: NetworkConfig, environ: Optional[Mapping[str, str]] = None
    ) -> "Web3Executor":
        env = os.environ if environ is None else environ
        web3 = get_web3(Web3Config.from_network(network))
        return cls(
            web3,
            private_key=env.get(network.private_key_env) or None,
            confirmation_timeout=network.confirmation_timeout,
            poll_interval=network.poll_interval,
        )

    @property
    def deployer(self) -> str:
        if self._deployer is None:
            default = self._web3.eth.default_account
            if isinstance(default, str) and is_address(default):
                self._deployer = to_checksum_address(default)
            else:
                accounts = self._web3.eth.accounts
                if not accounts:
                    raise ConfigError("No private key configured and the node exposes no unlocked account")
                self._deployer = to_checksum_address(accounts[0])
        return self._deployer

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            try:
                self._chain_id = int(self._web3.eth.chain_id)
            except (requests.RequestException, ConnectionError) as exc:
                raise self._unreachable("eth_chainId", exc) from exc
        return self._chain_id

    def deploy(self, artifact: Artifact, args: Sequence[Any], *, name: str) -> DeployedComponent:
        contract = self._web3.eth.contract(abi=artifact.abi, bytecode=artifact.bytecode)
        operation = f"deploy {name}"
        receipt = self._submit(operation, contract.constructor(*args), contract)
        if not receipt.contract_address:
            raise ExecutionReverted(operation, "receipt carries no contract address", receipt.tx_hash)
        return DeployedComponent(
            name=name,
            address=receipt.contract_address,
            artifact=artifact.name,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )

    def create_via_factory(self, call: FactoryCall) -> CreationReceipt:
        contract = self._web3.eth.contract(address=to_checksum_address(call.factory), abi=call.abi)
        function = self._function(contract, call.method, call.args)
        receipt = self._submit(call.operation, function, contract)
        try:
            address = extract_created_address(self, call, receipt)
        except DeploymentError as exc:
            raise FollowUpFailed(call.operation, exc, receipt.tx_hash) from exc
        return CreationReceipt(address=address, receipt=receipt)

    def invoke(self, address: str, abi: List[Dict[str, Any]], method: str, args: Sequence[Any]) -> TxReceipt:
        contract = self._web3.eth.contract(address=to_checksum_address(address), abi=abi)
        return self._submit(f"{method} on {address}", self._function(contract, method, args), contract)

    def read(self, address: str, abi: List[Dict[str, Any]], method: str, args: Sequence[Any] = ()) -> Any:
        contract = self._web3.eth.contract(address=to_checksum_address(address), abi=abi)
        function = self._function(contract, method, args)
        try:
            return function.call()
        except ContractLogicError as exc:
            raise ExecutionReverted(f"{method} on {address}", str(exc)) from exc
        except (Web3Exception, ValueError) as exc:
            raise ExecutionReverted(f"{method} on {address}", f"call rejected: {exc}") from exc
        except (requests.RequestException, ConnectionError) as exc:
            raise self._unreachable(f"{method} on {address}", exc) from exc

    def get_code(self, address: str) -> bytes:
        try:
            return bytes(self._web3.eth.get_code(to_checksum_address(address)))
        except (requests.RequestException, ConnectionError) as exc:
            raise self._unreachable(f"eth_getCode {address}", exc) from exc

    def _unreachable(self, operation: str, exc: Exception, tx_hash: Optional[str] = None) -> DeploymentError:
        # Once a transaction is out, a lost connection leaves its outcome unknown.
        if tx_hash is not None or isinstance(exc, requests.Timeout):
            return ExecutionTimeout(operation, self._confirmation_timeout, tx_hash)
        return ExecutionReverted(operation, f"execution layer unreachable: {exc}")

    @staticmethod
    def _function(contract: Any, method: str, args: Sequence[Any]) -> Any:
        try:
            factory = getattr(contract.functions, method)
        except (AttributeError, Web3Exception) as exc:
            raise ConfigError(f"ABI has no function {method!r}") from exc
        return factory(*args)

    def _submit(self, operation: str, function: Any, contract: Any) -> TxReceipt:
        sender = self.deployer
        try:
            params = {
                "from": sender,
                "nonce": self._web3.eth.get_transaction_count(sender, "pending"),
                "chainId": self.chain_id,
            }
            transaction = function.build_transaction(params)
        except ContractLogicError as exc:
            raise ExecutionReverted(operation, str(exc)) from exc
        except (Web3Exception, ValueError, TypeError) as exc:
            raise ExecutionReverted(operation, f"rejected before submission: {exc}") from exc
        except (requests.RequestException, ConnectionError) as exc:
            raise self._unreachable(operation, exc) from exc
        try:
            if self._account is not None:
                signed = self._account.sign_transaction(transaction)
                tx_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
            else:
                tx_hash = self._web3.eth.send_transaction(transaction)
        except (Web3Exception, ValueError) as exc:
            raise ExecutionReverted(operation, f"rejected by node: {exc}") from exc
        except (requests.RequestException, ConnectionError) as exc:
            raise self._unreachable(operation, exc) from exc
        hex_hash = Web3.to_hex(tx_hash)
        LOGGER.info(
            "%s submitted as %s",
            operation,
            hex_hash,
            extra={"event": "tx_submitted", "data": {"operation": operation, "tx": hex_hash}},
        )
        try:
            raw = self._web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._confirmation_timeout, poll_latency=self._poll_interval
            )
        except TimeExhausted as exc:
            raise ExecutionTimeout(operation, self._confirmation_timeout, hex_hash) from exc
        except (requests.RequestException, ConnectionError) as exc:
            raise self._unreachable(operation, exc, hex_hash) from exc
        if raw.get("status") != 1:
            raise ExecutionReverted(operation, "transaction status 0", hex_hash)
        return TxReceipt(
            tx_hash=hex_hash,
            block_number=raw.get("blockNumber"),
            status=1,
            contract_address=raw.get("contractAddress"),
            gas_used=raw.get("gasUsed"),
            events=self._decode_events(contract, raw),
        )

    @staticmethod
    def _decode_events(contract: Any, raw_receipt: Any) -> List[EventLog]:
        events: List[EventLog] = []
        for entry in contract.abi:
            if entry.get("type") != "event":
                continue
            handle = getattr(contract.events, entry["name"])()
            for log in handle.process_receipt(raw_receipt, errors=DISCARD):
                events.append(EventLog(event=log["event"], address=log.get("address"), args=dict(log["args"])))
        return events


__all__ = [
    "DeploymentExecutor",
    "FactoryCall",
    "ResolvedOutput",
    "Web3Executor",
    "ZERO_ADDRESS",
    "extract_created_address",
]
