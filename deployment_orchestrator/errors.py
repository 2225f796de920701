"""Error taxonomy for deployment runs.

Every failure is fatal to the current run. Nothing here is retried: a blind
retry after a partially applied on-chain change risks double deployment.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .ledger import Manifest


class DeploymentError(RuntimeError):
    """Base class for deployment orchestration errors."""


class ConfigError(DeploymentError):
    """Raised when the static deployment configuration is invalid."""


class ArtifactNotFound(DeploymentError):
    """Raised when an artifact file is missing or is not valid artifact JSON."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Artifact {name!r} unavailable: {reason}")
        self.name = name
        self.reason = reason


class UnresolvedDependency(DeploymentError):
    """Raised when a step references a name absent from the resolution table."""

    def __init__(self, name: str, detail: str | None = None) -> None:
        message = f"Unresolved dependency {name!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.name = name


class ExecutionReverted(DeploymentError):
    """Raised when the execution layer rejects an operation."""

    def __init__(self, operation: str, reason: str, tx_hash: str | None = None) -> None:
        super().__init__(f"{operation} reverted: {reason}")
        self.operation = operation
        self.reason = reason
        self.tx_hash = tx_hash


class ExecutionTimeout(DeploymentError):
    """Raised when confirmation is not observed within the wait policy."""

    def __init__(self, operation: str, timeout: float, tx_hash: str | None = None) -> None:
        super().__init__(f"{operation} not confirmed within {timeout:g}s")
        self.operation = operation
        self.timeout = timeout
        self.tx_hash = tx_hash


class FollowUpFailed(DeploymentError):
    """Raised when a transaction was confirmed but a read that depends on it failed.

    The on-chain change has already happened. Whatever the step confirmed is
    recorded, and a resumed run repeats only the reads.
    """

    def __init__(self, operation: str, cause: DeploymentError, tx_hash: str | None = None) -> None:
        where = f" in {tx_hash}" if tx_hash else ""
        super().__init__(f"{operation} was confirmed{where} but a follow-up read failed: {cause}")
        self.operation = operation
        self.cause = cause
        self.tx_hash = tx_hash


class AddressPredictionMismatch(DeploymentError):
    """Raised when a component lands somewhere other than its predicted address."""

    def __init__(self, name: str, predicted: str, actual: str) -> None:
        super().__init__(
            f"{name} predicted at {predicted} but deployed at {actual}; "
            "check the salt, the artifact code hash and the factory version"
        )
        self.name = name
        self.predicted = predicted
        self.actual = actual


class DuplicateComponentName(DeploymentError):
    """Raised when a component name is recorded twice in one run."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Component {name!r} is already recorded in this run")
        self.name = name


class ManifestError(DeploymentError):
    """Raised when a persisted manifest cannot be read, verified or resumed."""


class StepFailed(DeploymentError):
    """Wraps the first failing step of a run together with the partial ledger."""

    def __init__(
        self,
        step_id: str,
        index: int,
        cause: DeploymentError,
        manifest: Optional["Manifest"] = None,
    ) -> None:
        super().__init__(f"Step {index + 1} ({step_id}) failed: {cause}")
        self.step_id = step_id
        self.index = index
        self.cause = cause
        self.manifest = manifest


__all__ = [
    "AddressPredictionMismatch",
    "ArtifactNotFound",
    "ConfigError",
    "DeploymentError",
    "DuplicateComponentName",
    "ExecutionReverted",
    "ExecutionTimeout",
    "FollowUpFailed",
    "ManifestError",
    "StepFailed",
    "UnresolvedDependency",
]
