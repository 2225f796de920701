"""Typer CLI entrypoint for deployment runs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .artifacts import ArtifactLoader
from .config import DeploymentConfig
from .errors import DeploymentError, StepFailed
from .executor import DeploymentExecutor, Web3Executor
from .ledger import Ledger, Manifest, ManifestStore, config_digest
from .logging_utils import configure_logging
from .planner import build_plan, lint_plan
from .predictor import predict as predict_address
from .runner import DeploymentRunner
from .simulator import SimulatedChain
from .verify import ManifestVerifier

app = typer.Typer(help="Deploy interdependent on-chain components from compiled artifacts")
console = Console()


def _load_config(path: Path) -> DeploymentConfig:
    try:
        return DeploymentConfig.load(path)
    except DeploymentError as exc:
        console.print(Panel(str(exc), title="Configuration error", style="bold red"))
        raise typer.Exit(code=2) from exc


def _executor_for(config: DeploymentConfig, dry_run: bool) -> Tuple[DeploymentExecutor, str]:
    if dry_run:
        return SimulatedChain(), f"{config.network.name}.dry-run"
    try:
        return Web3Executor.from_network(config.network), config.network.name
    except (DeploymentError, ConnectionError) as exc:
        console.print(Panel(str(exc), title="Execution layer unavailable", style="bold red"))
        raise typer.Exit(code=2) from exc


def _components_table(manifest: Manifest) -> Table:
    table = Table(title=f"{manifest.network} ({manifest.status})")
    table.add_column("Component")
    table.add_column("Address")
    table.add_column("Step")
    table.add_column("Via")
    for name, component in manifest.components.items():
        table.add_row(name, component.address, component.step_id or "", component.via or "")
    return table


@app.command()
def deploy(
    config_path: Path,
    dry_run: bool = typer.Option(False, help="Run against the in-memory simulator"),
    resume: bool = typer.Option(False, help="Continue from the partial manifest of a failed run"),
    fresh: bool = typer.Option(False, help="Ignore an existing partial manifest"),
    output_dir: Optional[Path] = typer.Option(None, help="Directory for manifests"),
    log_file: Optional[Path] = typer.Option(None, help="JSON lines audit log"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Execute the configured plan in order and write the manifest."""
    config = _load_config(config_path)
    configure_logging(
        str(log_file) if log_file else None,
        level=logging.DEBUG if verbose else logging.INFO,
        network=f"{config.network.name}.dry-run" if dry_run else config.network.name,
    )
    if resume and dry_run:
        console.print("[red]--resume cannot be combined with --dry-run[/]")
        raise typer.Exit(code=2)
    try:
        deployment_plan = build_plan(config)
    except DeploymentError as exc:
        console.print(Panel(str(exc), title="Invalid plan", style="bold red"))
        raise typer.Exit(code=2) from exc
    for issue in lint_plan(deployment_plan):
        console.print(f"[yellow]warning[/] {issue.step_id}: {issue.message}")

    store = ManifestStore(output_dir or config.output_directory())
    executor, network = _executor_for(config, dry_run)
    snapshot = config.snapshot()

    ledger: Optional[Ledger] = None
    try:
        partial = store.load(network, partial=True)
    except DeploymentError as exc:
        console.print(Panel(str(exc), title="Unreadable partial manifest", style="bold red"))
        raise typer.Exit(code=2) from exc
    if resume:
        if partial is None:
            console.print("No partial manifest found; starting a new run")
        elif partial.config_hash != config_digest(snapshot):
            console.print(Panel("Configuration changed since the partial run; refusing to resume", style="bold red"))
            raise typer.Exit(code=2)
        else:
            ledger = Ledger.from_manifest(partial)
            console.print(f"Resuming after {len(partial.completed_steps)} completed steps")
    elif partial is not None and not fresh:
        console.print(
            Panel(
                f"A partial manifest exists at {store.path_for(network, partial=True)}.\n"
                "Use --resume to continue it or --fresh to start over.",
                style="bold red",
            )
        )
        raise typer.Exit(code=2)

    def _checkpoint(step, current: Ledger) -> None:
        store.write(current.snapshot("partial"))

    runner = DeploymentRunner(
        executor,
        ArtifactLoader(config.artifact_root(), config.artifacts.paths),
        parameters=config.parameters,
        metadata=config.metadata,
        config_snapshot=snapshot,
        on_step=_checkpoint if config.output.checkpoint else None,
    )
    if ledger is None:
        try:
            ledger = runner.new_ledger(network)
        except DeploymentError as exc:
            console.print(Panel(str(exc), title="Execution layer unavailable", style="bold red"))
            raise typer.Exit(code=2) from exc
    try:
        result = runner.run(deployment_plan, ledger)
    except StepFailed as exc:
        path = store.write(exc.manifest) if exc.manifest is not None else None
        console.print(
            Panel(
                f"Step {exc.index + 1} ({exc.step_id}) failed\n{type(exc.cause).__name__}: {exc.cause}",
                title="Deployment halted",
                style="bold red",
            )
        )
        if path is not None:
            console.print(f"Partial manifest written to [bold]{path}[/]")
        raise typer.Exit(code=1) from exc
    except DeploymentError as exc:
        console.print(Panel(str(exc), title="Deployment halted", style="bold red"))
        raise typer.Exit(code=1) from exc

    path = store.write(result.manifest)
    console.print(_components_table(result.manifest))
    console.print(
        Panel(
            f"{len(result.executed)} steps executed, {len(result.skipped)} skipped\nManifest: {path}",
            style="bold green",
        )
    )


@app.command()
def plan(
    config_path: Path,
    strict: bool = typer.Option(False, help="Exit non-zero when the plan has warnings"),
) -> None:
    """Print the ordered plan and any ordering warnings."""
    config = _load_config(config_path)
    try:
        deployment_plan = build_plan(config)
    except DeploymentError as exc:
        console.print(Panel(str(exc), title="Invalid plan", style="bold red"))
        raise typer.Exit(code=2) from exc
    table = Table(title=f"Plan for {deployment_plan.network}")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Kind")
    table.add_column("Produces")
    table.add_column("References")
    for index, step in enumerate(deployment_plan.steps, start=1):
        table.add_row(str(index), step.id, step.kind, ", ".join(step.produces), ", ".join(step.references()))
    console.print(table)
    issues = lint_plan(deployment_plan)
    for issue in issues:
        console.print(f"[yellow]warning[/] {issue.step_id}: {issue.message}")
    if issues and strict:
        raise typer.Exit(code=1)


@app.command()
def predict(
    factory: str,
    salt: str,
    code_hash: Optional[str] = typer.Option(None, help="keccak-256 of the creation code"),
    artifact: Optional[str] = typer.Option(None, help="Artifact name to hash instead of --code-hash"),
    artifacts_root: Path = typer.Option(Path("artifacts"), help="Directory holding artifact JSON files"),
) -> None:
    """Compute the CREATE2 address a factory will deploy to."""
    if (code_hash is None) == (artifact is None):
        console.print("[red]Pass exactly one of --code-hash or --artifact[/]")
        raise typer.Exit(code=2)
    try:
        digest = code_hash if code_hash is not None else ArtifactLoader(artifacts_root).load(artifact).code_hash
        salt_value = int(salt) if salt.isdigit() else salt
        address = predict_address(factory, salt_value, digest)
    except (DeploymentError, TypeError, ValueError) as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=2) from exc
    console.print(address)


@app.command()
def verify(
    config_path: Path,
    manifest_path: Optional[Path] = typer.Option(None, "--manifest", help="Manifest to verify"),
) -> None:
    """Check code presence and configured connections for a written manifest."""
    config = _load_config(config_path)
    configure_logging(network=config.network.name)
    store = ManifestStore(config.output_directory())
    try:
        manifest = store.load_path(manifest_path) if manifest_path else store.load(config.network.name)
    except DeploymentError as exc:
        console.print(Panel(str(exc), title="Unreadable manifest", style="bold red"))
        raise typer.Exit(code=2) from exc
    if manifest is None:
        console.print("[red]No manifest found[/]")
        raise typer.Exit(code=2)
    executor, _ = _executor_for(config, dry_run=False)
    verifier = ManifestVerifier(
        executor,
        ArtifactLoader(config.artifact_root(), config.artifacts.paths),
        parameters=config.parameters,
    )
    try:
        report = verifier.verify(manifest, config.checks)
    except DeploymentError as exc:
        console.print(Panel(str(exc), title="Execution layer unavailable", style="bold red"))
        raise typer.Exit(code=2) from exc
    table = Table(title=f"Verification of {report.network}")
    table.add_column("Subject")
    table.add_column("Check")
    table.add_column("Result")
    table.add_column("Detail")
    for finding in report.findings:
        table.add_row(finding.subject, finding.check, "ok" if finding.ok else "[red]FAIL[/]", finding.detail)
    console.print(table)
    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def show(manifest_path: Path) -> None:
    """Print the components recorded in a manifest."""
    try:
        manifest = ManifestStore(manifest_path.parent).load_path(manifest_path)
    except DeploymentError as exc:
        console.print(Panel(str(exc), title="Unreadable manifest", style="bold red"))
        raise typer.Exit(code=2) from exc
    if manifest is None:
        console.print(f"[red]{manifest_path} does not exist[/]")
        raise typer.Exit(code=2)
    console.print(_components_table(manifest))
    if manifest.status != "complete":
        console.print(f"Completed steps: {', '.join(manifest.completed_steps) or 'none'}")


if __name__ == "__main__":  # pragma: no cover
    app()
