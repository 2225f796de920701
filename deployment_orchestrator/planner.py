"""Build the ordered deployment plan from static configuration.

The plan keeps the operator's order exactly. :func:`lint_plan` reports
forward references and misplaced ``needs`` edges without rejecting or
reordering anything; the runner is what enforces them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Set

from pydantic import TypeAdapter, ValidationError

from .config import DeploymentConfig
from .errors import ConfigError
from .models import DeploymentPlan, DeploymentStep, PredictStep, WireStep

_KIND_KEYS = ("deploy", "predict", "create", "wire")
_STEP_ADAPTER: TypeAdapter = TypeAdapter(DeploymentStep)
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def slugify(name: str) -> str:
    spaced = _CAMEL_BOUNDARY.sub("-", name.strip())
    return re.sub(r"[^a-z0-9.:-]+", "-", spaced.lower()).strip("-")


def _normalise_step(raw: Mapping[str, Any], position: int) -> Dict[str, Any]:
    kinds = [key for key in _KIND_KEYS if key in raw]
    if "kind" in raw:
        return dict(raw)
    if len(kinds) != 1:
        raise ConfigError(
            f"Step #{position + 1} must name exactly one of {', '.join(_KIND_KEYS)}; found {kinds or 'none'}"
        )
    kind = kinds[0]
    body = {key: value for key, value in raw.items() if key != kind}
    target = raw[kind]
    step: Dict[str, Any] = {"kind": kind}
    if kind == "deploy":
        if not isinstance(target, str):
            raise ConfigError(f"Step #{position + 1}: 'deploy' takes a component name")
        step["component"] = {
            "name": target,
            "artifact": body.pop("artifact", target),
            "args": body.pop("args", []),
        }
        step["id"] = body.pop("id", f"deploy-{slugify(target)}")
    elif kind == "wire":
        step["id"] = body.pop("id", target)
    else:
        step["name"] = target
        step["id"] = body.pop("id", f"{kind}-{slugify(str(target))}")
        if kind == "predict" and isinstance(body.get("factory"), str):
            body["factory"] = {"address": body["factory"]}
    step.update(body)
    return step


def build_plan(config: DeploymentConfig) -> DeploymentPlan:
    steps = []
    for position, raw in enumerate(config.steps):
        normalised = _normalise_step(raw, position)
        try:
            steps.append(_STEP_ADAPTER.validate_python(normalised))
        except ValidationError as exc:
            raise ConfigError(f"Invalid step #{position + 1} ({normalised.get('id')}): {exc}") from exc
    try:
        return DeploymentPlan(network=config.network.name, steps=tuple(steps))
    except ValidationError as exc:
        raise ConfigError(f"Invalid plan: {exc}") from exc


@dataclass(frozen=True)
class PlanIssue:
    step_id: str
    message: str


def lint_plan(plan: DeploymentPlan) -> List[PlanIssue]:
    issues: List[PlanIssue] = []
    deployed: Set[str] = set()
    predicted: Set[str] = set()
    seen_steps: Set[str] = set()
    all_steps = set(plan.step_ids())
    for step in plan.steps:
        for need in step.needs:
            if need not in all_steps:
                issues.append(PlanIssue(step.id, f"needs unknown step {need!r}"))
            elif need not in seen_steps:
                issues.append(PlanIssue(step.id, f"needs step {need!r}, which runs later"))
        for argument in step.arguments():
            name = argument.reference
            if name is None:
                continue
            if argument.source == "predicted" and name not in predicted:
                issues.append(PlanIssue(step.id, f"uses prediction {name!r} before it is computed"))
            elif argument.source == "deployed" or isinstance(step, WireStep):
                if name not in deployed:
                    issues.append(PlanIssue(step.id, f"requires {name!r} to be deployed first"))
            elif name not in deployed and name not in predicted:
                issues.append(PlanIssue(step.id, f"references {name!r} before any step provides it"))
        if isinstance(step, PredictStep):
            predicted.add(step.name)
        for produced in step.produces:
            if produced in deployed:
                issues.append(PlanIssue(step.id, f"records {produced!r} a second time"))
            deployed.add(produced)
        seen_steps.add(step.id)
    return issues


__all__ = ["PlanIssue", "build_plan", "lint_plan", "slugify"]
