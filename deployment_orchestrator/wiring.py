"""Post-deployment wiring: permission grants and configuration calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_utils import encode_hex, function_signature_to_4byte_selector, is_hex, keccak

from .artifacts import ArtifactLoader
from .errors import ConfigError
from .executor import DeploymentExecutor
from .models import Argument, GrantSpec, TxReceipt, WireStep
from .predictor import to_bytes32
from .resolution import ArgumentResolver

LOGGER = logging.getLogger(__name__)

ACTION_ID_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "getActionId",
        "stateMutability": "view",
        "inputs": [{"name": "selector", "type": "bytes4"}],
        "outputs": [{"name": "", "type": "bytes32"}],
    }
]


def authorizer_abi(method: str = "grantRole") -> List[Dict[str, Any]]:
    """ABI fragment for ``method(bytes32 role, address account)`` on an authorizer."""

    return [
        {
            "type": "function",
            "name": method,
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "role", "type": "bytes32"},
                {"name": "account", "type": "address"},
            ],
            "outputs": [],
        }
    ]


@dataclass
class WiringOutcome:
    step_id: str
    action_id: Optional[str] = None
    grant: Optional[TxReceipt] = None
    call: Optional[TxReceipt] = None


class WiringStage:
    """Apply one wire step exactly once.

    Every component involved must already be deployed; a predicted address is
    not enough to grant or configure against.
    """

    def __init__(self, executor: DeploymentExecutor, loader: ArtifactLoader) -> None:
        self._executor = executor
        self._loader = loader

    def apply(self, step: WireStep, resolver: ArgumentResolver) -> WiringOutcome:
        outcome = WiringOutcome(step_id=step.id)
        # Resolve everything up front so a missing dependency fails before any transaction.
        grant_plan = self._prepare_grant(step.grant, resolver) if step.grant is not None else None
        call_plan = None
        if step.call is not None:
            target = resolver.address_of(step.call.target, require_deployed=True)
            abi = self._abi_for(step.call.artifact, step.call.target, resolver)
            args = resolver.resolve_all(step.call.args, require_deployed=True)
            call_plan = (target, abi, args)

        if grant_plan is not None:
            authorizer, grantee, action_id = grant_plan
            outcome.action_id = encode_hex(action_id)
            outcome.grant = self._executor.invoke(
                authorizer, authorizer_abi(step.grant.method), step.grant.method, [action_id, grantee]
            )
            LOGGER.info(
                "Granted %s to %s",
                outcome.action_id,
                grantee,
                extra={
                    "event": "permission_granted",
                    "data": {"step": step.id, "authorizer": authorizer, "grantee": grantee, "action": outcome.action_id},
                },
            )
        if call_plan is not None:
            target, abi, args = call_plan
            outcome.call = self._executor.invoke(target, abi, step.call.method, args)
            LOGGER.info(
                "Called %s on %s",
                step.call.method,
                target,
                extra={"event": "component_configured", "data": {"step": step.id, "target": target, "method": step.call.method}},
            )
        return outcome

    def _prepare_grant(self, grant: GrantSpec, resolver: ArgumentResolver) -> tuple:
        authorizer = resolver.address_of(grant.authorizer, require_deployed=True)
        grantee = resolver.address_of(grant.grantee, require_deployed=True)
        if grant.role is not None:
            return authorizer, grantee, self._role_id(grant.role)
        target = resolver.address_of(grant.target, require_deployed=True)
        signature = grant.action
        if "(" not in signature:
            artifact = self._artifact_for(None, grant.target, resolver)
            try:
                signature = artifact.function_signature(signature)
            except KeyError as exc:
                raise ConfigError(f"Cannot derive an action id: {exc}") from exc
        selector = function_signature_to_4byte_selector(signature)
        action_id = self._executor.read(target, ACTION_ID_ABI, "getActionId", [selector])
        return authorizer, grantee, to_bytes32(action_id, label="action id")

    @staticmethod
    def _role_id(role: str) -> bytes:
        if is_hex(role) and role.startswith("0x") and len(role) == 66:
            return to_bytes32(role, label="role")
        # Named roles hash like OpenZeppelin role constants.
        return keccak(text=role)

    def _artifact_for(self, artifact: Optional[str], target: Argument, resolver: ArgumentResolver):
        name = artifact
        if name is None:
            component = resolver.component_for(target)
            name = component.artifact if component is not None else None
        if not name:
            raise ConfigError(f"No artifact known for {target.describe()}; set 'artifact' on the wire step")
        return self._loader.load(name)

    def _abi_for(self, artifact: Optional[str], target: Argument, resolver: ArgumentResolver) -> List[Dict[str, Any]]:
        return self._artifact_for(artifact, target, resolver).abi


__all__ = ["ACTION_ID_ABI", "WiringOutcome", "WiringStage", "authorizer_abi"]
