"""Shared fixtures: a small artifact set and a plan that exercises every step kind."""

from __future__ import annotations

import copy
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from deployment_orchestrator.artifacts import ArtifactLoader  # noqa: E402
from deployment_orchestrator.config import DeploymentConfig  # noqa: E402
from deployment_orchestrator.runner import DeploymentRunner  # noqa: E402
from deployment_orchestrator.simulator import SimulatedChain  # noqa: E402

SALT = "0x3877188e9e5da25b11fdb7f5e8d4fdddce2d22707ba04878a8e14700dd46fa82"


def _function(name: str, inputs=(), outputs=(), mutability: str = "nonpayable") -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": f"arg{index}", "type": kind} for index, kind in enumerate(inputs)],
        "outputs": [{"name": "", "type": kind} for kind in outputs],
    }


def _constructor(*inputs: str) -> Dict[str, Any]:
    return {
        "type": "constructor",
        "stateMutability": "nonpayable",
        "inputs": [{"name": f"arg{index}", "type": kind} for index, kind in enumerate(inputs)],
    }


def _event(name: str, *fields) -> Dict[str, Any]:
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [{"name": field, "type": kind, "indexed": False} for field, kind in fields],
    }


ARTIFACTS: Dict[str, Dict[str, Any]] = {
    "Authorizer": {
        "bytecode": "0x6080600101",
        "abi": [
            _function("grantRole", ["bytes32", "address"]),
            _function("hasRole", ["bytes32", "address"], ["bool"], "view"),
        ],
    },
    "VaultFactory": {
        "bytecode": "0x6080600202",
        "abi": [
            _constructor("address", "bytes32"),
            _function("create", ["bytes32", "address", "address"]),
            _function("getDeploymentAddress", ["bytes32"], ["address"], "view"),
            _function("deployedVaultAdmins", ["address"], ["address"], "view"),
            _event("VaultCreated", ("vault", "address")),
        ],
    },
    "Vault": {
        "bytecode": "0x6080600303",
        "abi": [
            _function("getActionId", ["bytes4"], ["bytes32"], "view"),
            _function("setProtocolFeeController", ["address"]),
            _function("getProtocolFeeController", [], ["address"], "view"),
        ],
    },
    "VaultAdmin": {"bytecode": "0x6080600404", "abi": []},
    "ProtocolFeeController": {
        "bytecode": "0x6080600505",
        "abi": [_constructor("address", "uint256"), _function("vault", [], ["address"], "view")],
    },
    "Router": {
        "bytecode": "0x6080600606",
        "abi": [_constructor("address", "string"), _function("getVault", [], ["address"], "view")],
    },
}

BASE_STEPS: List[Dict[str, Any]] = [
    {"deploy": "Authorizer"},
    {"deploy": "VaultFactory", "args": [{"deployed": "Authorizer"}, {"code_hash": "Vault"}]},
    {"predict": "Vault", "factory": {"deployed": "VaultFactory"}, "salt": {"param": "salt"}, "code": "Vault"},
    {"deploy": "ProtocolFeeController", "args": [{"predicted": "Vault"}, {"param": "swapFee"}]},
    {
        "create": "Vault",
        "factory": "VaultFactory",
        "args": [{"param": "salt"}, {"predicted": "Vault"}, {"deployed": "ProtocolFeeController"}],
        "salt": {"param": "salt"},
        "code": "Vault",
        "output": {"event": "VaultCreated", "arg": "vault"},
        "also_record": [
            {"name": "VaultAdmin", "call": "deployedVaultAdmins", "args": [{"address": "Vault"}], "artifact": "VaultAdmin"}
        ],
    },
    {
        "wire": "grant-fee-controller",
        "grant": {
            "authorizer": {"deployed": "Authorizer"},
            "grantee": {"deployed": "ProtocolFeeController"},
            "target": {"deployed": "Vault"},
            "action": "setProtocolFeeController",
        },
        "call": {
            "target": {"deployed": "Vault"},
            "method": "setProtocolFeeController",
            "args": [{"deployed": "ProtocolFeeController"}],
        },
    },
]

BASE_STEP_IDS = [
    "deploy-authorizer",
    "deploy-vault-factory",
    "predict-vault",
    "deploy-protocol-fee-controller",
    "create-vault",
    "grant-fee-controller",
]


def write_artifact(root: Path, name: str, payload: Dict[str, Any]) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    path = root / f"{name}.json"
    path.write_text(json.dumps({"contractName": name, **payload}), encoding="utf-8")
    return path


@pytest.fixture
def artifact_dir(tmp_path: Path) -> Path:
    root = tmp_path / "artifacts"
    for name, payload in ARTIFACTS.items():
        write_artifact(root, name, payload)
    return root


@pytest.fixture
def loader(artifact_dir: Path) -> ArtifactLoader:
    return ArtifactLoader(artifact_dir)


@pytest.fixture
def chain() -> SimulatedChain:
    return SimulatedChain()


@pytest.fixture
def config_data(artifact_dir: Path) -> Callable[..., Dict[str, Any]]:
    def _build(steps: Optional[List[Dict[str, Any]]] = None, **sections: Any) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "network": {"name": "testnet", "chain_id": 31337},
            "artifacts": {"root": "artifacts"},
            "parameters": {"salt": SALT, "swapFee": "0.5 ether"},
            "metadata": {"router": {"name": "Router", "version": 2}},
            "steps": copy.deepcopy(BASE_STEPS if steps is None else steps),
            "output": {"directory": "deployments"},
        }
        data.update(sections)
        return data

    return _build


@pytest.fixture
def make_config(tmp_path: Path, config_data) -> Callable[..., DeploymentConfig]:
    def _make(steps: Optional[List[Dict[str, Any]]] = None, **sections: Any) -> DeploymentConfig:
        return DeploymentConfig.from_mapping(config_data(steps, **sections), base_path=tmp_path, environ={})

    return _make


@pytest.fixture
def write_config(tmp_path: Path, config_data) -> Callable[..., Path]:
    def _write(steps: Optional[List[Dict[str, Any]]] = None, **sections: Any) -> Path:
        path = tmp_path / "deployment.yaml"
        path.write_text(yaml.safe_dump(config_data(steps, **sections), sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_runner(loader: ArtifactLoader, chain: SimulatedChain) -> Callable[..., DeploymentRunner]:
    def _make(config: DeploymentConfig, **kwargs: Any) -> DeploymentRunner:
        return DeploymentRunner(
            chain,
            loader,
            parameters=config.parameters,
            metadata=config.metadata,
            config_snapshot=config.snapshot(),
            **kwargs,
        )

    return _make
