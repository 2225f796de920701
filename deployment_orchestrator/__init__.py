"""Ordered deployment of interdependent on-chain components."""

from __future__ import annotations

from .artifacts import Artifact, ArtifactLoader
from .config import DeploymentConfig
from .errors import (
    AddressPredictionMismatch,
    ArtifactNotFound,
    ConfigError,
    DeploymentError,
    DuplicateComponentName,
    ExecutionReverted,
    ExecutionTimeout,
    FollowUpFailed,
    ManifestError,
    StepFailed,
    UnresolvedDependency,
)
from .ledger import Ledger, Manifest, ManifestStore
from .planner import build_plan, lint_plan
from .predictor import predict, predict_create
from .runner import DeploymentRunner, RunResult
from .simulator import SimulatedChain

__version__ = "0.1.0"

__all__ = [
    "AddressPredictionMismatch",
    "Artifact",
    "ArtifactLoader",
    "ArtifactNotFound",
    "ConfigError",
    "DeploymentConfig",
    "DeploymentError",
    "DeploymentRunner",
    "DuplicateComponentName",
    "ExecutionReverted",
    "ExecutionTimeout",
    "FollowUpFailed",
    "Ledger",
    "Manifest",
    "ManifestError",
    "ManifestStore",
    "RunResult",
    "SimulatedChain",
    "StepFailed",
    "UnresolvedDependency",
    "build_plan",
    "lint_plan",
    "predict",
    "predict_create",
]
