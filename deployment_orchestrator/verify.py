"""Post-deployment checks of a written manifest against the execution layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence

from eth_utils import is_address, is_same_address

from .artifacts import ArtifactLoader
from .config import CheckConfig
from .errors import DeploymentError
from .executor import DeploymentExecutor
from .ledger import Ledger, Manifest
from .models import Argument
from .resolution import ArgumentResolver

LOGGER = logging.getLogger(__name__)


@dataclass
class VerificationFinding:
    subject: str
    check: str
    ok: bool
    detail: str = ""


@dataclass
class VerificationReport:
    network: str
    findings: List[VerificationFinding] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(finding.ok for finding in self.findings)

    @property
    def failures(self) -> List[VerificationFinding]:
        return [finding for finding in self.findings if not finding.ok]

    def require_success(self) -> None:
        if not self.ok:
            summary = "; ".join(f"{item.subject} {item.check}: {item.detail}" for item in self.failures)
            raise DeploymentError(f"Verification of {self.network} failed: {summary}")


def _matches(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str) and is_address(actual) and is_address(expected):
        return is_same_address(actual, expected)
    return actual == expected


class ManifestVerifier:
    """Check that every recorded component has code and that configured connections hold."""

    def __init__(
        self,
        executor: DeploymentExecutor,
        loader: ArtifactLoader,
        *,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._executor = executor
        self._loader = loader
        self._parameters = dict(parameters or {})

    def verify(self, manifest: Manifest, checks: Sequence[CheckConfig] = ()) -> VerificationReport:
        report = VerificationReport(network=manifest.network)
        for name, component in manifest.components.items():
            code = self._executor.get_code(component.address)
            report.findings.append(
                VerificationFinding(
                    subject=name,
                    check="code",
                    ok=len(code) > 0,
                    detail=f"{len(code)} bytes at {component.address}" if code else f"no code at {component.address}",
                )
            )
        resolver = ArgumentResolver(
            Ledger.from_manifest(manifest),
            self._loader,
            parameters=self._parameters,
            deployer=manifest.deployer,
        )
        for check in checks:
            report.findings.append(self._run_check(manifest, check, resolver))
        LOGGER.info(
            "Verified %s: %d findings, %d failures",
            manifest.network,
            len(report.findings),
            len(report.failures),
            extra={"event": "manifest_verified", "data": {"network": manifest.network, "ok": report.ok}},
        )
        return report

    def _run_check(self, manifest: Manifest, check: CheckConfig, resolver: ArgumentResolver) -> VerificationFinding:
        label = f"{check.call}()"
        component = manifest.components.get(check.component)
        if component is None:
            return VerificationFinding(check.component, label, False, "not recorded in the manifest")
        try:
            artifact = self._loader.load(check.artifact or component.artifact or check.component)
            args = resolver.resolve_all([Argument.model_validate(raw) for raw in check.args])
            expected = resolver.resolve(Argument.model_validate(check.expect))
            actual = self._executor.read(component.address, artifact.abi, check.call, args)
        except DeploymentError as exc:
            return VerificationFinding(check.component, label, False, str(exc))
        if not _matches(actual, expected):
            return VerificationFinding(check.component, label, False, f"expected {expected!r}, got {actual!r}")
        return VerificationFinding(check.component, label, True, f"returned {actual!r}")


__all__ = ["ManifestVerifier", "VerificationFinding", "VerificationReport"]
