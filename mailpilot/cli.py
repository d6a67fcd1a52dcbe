"""Command line interface for deploying and supervising mail automations."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer
import yaml
from pydantic import ValidationError

from .config import load_config
from .contracts import AutomationConfig
from .customize import validate_config
from .errors import ConfigValidationError, DeploymentFailed
from .services import Services, build_services

T = TypeVar("T")

app = typer.Typer(help="CLI for mailpilot automation deployments")

engine_app = typer.Typer(help="Commands for the workflow engine")
app.add_typer(engine_app, name="engine")

_state = {"config_path": None}


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None, "--config", help="YAML configuration file (default: config.yaml)"
    ),
    log_level: str = typer.Option("INFO", help="Logging level"),
) -> None:
    """mailpilot CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _state["config_path"] = str(config) if config else None


def _run(action: Callable[[Services], Awaitable[T]]) -> T:
    async def _inner() -> T:
        services = build_services(load_config(_state["config_path"]))
        try:
            return await action(services)
        finally:
            await services.close()

    return asyncio.run(_inner())


def _read_automation_config(path: Path) -> AutomationConfig:
    if not path.exists():
        typer.secho(f"Config file not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    # YAML is a superset of JSON, so both formats load here
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    try:
        return AutomationConfig.model_validate(data)
    except ValidationError as exc:
        typer.secho(f"Invalid automation config: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_json(data: object) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.command("deploy")
def deploy(
    user_id: str,
    config_file: Optional[Path] = typer.Option(
        None, "--config-file", help="Automation config (default: the stored business profile)"
    ),
) -> None:
    """
    Deploy the automation for a user.

    Customizes the master template, creates and verifies the workflow on the
    engine, and retries on the fixed backoff schedule.

    Example:
        mailpilot deploy user-42 --config-file ./automation.yaml
    """

    async def action(services: Services) -> None:
        if config_file is not None:
            automation = _read_automation_config(config_file)
        else:
            profile = await services.repository.get_business_profile(user_id)
            if profile is None:
                typer.secho(f"No business profile for user {user_id}", fg=typer.colors.RED)
                raise typer.Exit(code=1)
            automation = profile.automation_config
        try:
            result = await services.orchestrator.deploy(user_id, automation)
        except ConfigValidationError as exc:
            typer.secho(exc.summary, fg=typer.colors.RED)
            for error in exc.errors:
                typer.echo(f"  - {error}")
            raise typer.Exit(code=2)
        except DeploymentFailed as exc:
            typer.secho(exc.summary, fg=typer.colors.RED)
            raise typer.Exit(code=1)
        typer.echo(f"Deployed workflow {result.workflow_id}: {result.status.value}")
        if result.webhook_url:
            typer.echo(f"Webhook: {result.webhook_url}")

    _run(action)


@app.command("undeploy")
def undeploy(user_id: str) -> None:
    """Deactivate and delete a user's workflow."""

    async def action(services: Services) -> bool:
        return await services.orchestrator.undeploy(user_id)

    if not _run(action):
        typer.echo("Deployment not found")
        raise typer.Exit(code=1)
    typer.echo(f"Removed deployment for {user_id}")


@app.command("sweep")
def sweep(user_id: Optional[str] = typer.Argument(None)) -> None:
    """
    Run one recovery sweep.

    Sweeps a single user when USER_ID is given, otherwise every user with a
    supervised deployment.

    Example:
        mailpilot sweep
        # Output: user-42    checked=1    health=healthy    actions=-
    """

    async def action(services: Services) -> list:
        if user_id:
            return [await services.monitor.sweep(user_id)]
        return await services.monitor.sweep_all()

    results = _run(action)
    if not results:
        typer.echo("No deployments to sweep")
        return
    for result in results:
        health = ",".join(sorted(set(result.health.values()))) or "-"
        actions = ",".join(a.action for a in result.actions_taken) or "-"
        line = f"{result.user_id}\tchecked={result.workflows_checked}\thealth={health}\tactions={actions}"
        if result.error:
            line += f"\terror={result.error}"
        typer.echo(line)


@app.command("monitor")
def monitor(
    interval: Optional[float] = typer.Option(None, help="Seconds between sweeps"),
) -> None:
    """Run recovery sweeps on an interval until interrupted."""

    async def action(services: Services) -> None:
        if interval is not None:
            services.monitor.interval = interval
        await services.monitor.run()

    typer.echo("Starting recovery monitor")
    try:
        _run(action)
    except KeyboardInterrupt:
        typer.echo("Recovery monitor stopped")


@app.command("status")
def status(user_id: str) -> None:
    """Show the automation status of a user."""

    async def action(services: Services) -> dict:
        current = await services.monitor.automation_status(user_id)
        data = current.model_dump(mode="json")
        if current.workflow_id:
            metrics = await services.monitor.workflow_metrics(current.workflow_id)
            data["metrics"] = metrics.model_dump(mode="json")
        return data

    _echo_json(_run(action))


@app.command("onboarding")
def onboarding(user_id: str) -> None:
    """Recompute onboarding progress for a user."""

    async def action(services: Services) -> dict:
        progress = await services.onboarding.progress(user_id)
        return progress.model_dump(mode="json")

    progress = _run(action)
    typer.echo(f"Onboarding for {user_id}: {progress['completion_rate']}%")
    for name, step in progress["steps"].items():
        mark = "x" if step["completed"] else " "
        typer.echo(f"[{mark}] {name}: {step['message']}")
    if progress["next_step"]:
        typer.echo(f"Next: {progress['next_step']['message']}")


@engine_app.command("health")
def engine_health() -> None:
    """Probe the workflow engine."""

    async def action(services: Services):
        return await services.engine.ping()

    health = _run(action)
    colour = typer.colors.GREEN if health.connected else typer.colors.RED
    typer.secho(f"Engine {health.status}", fg=colour)
    typer.echo(f"Workflows: {health.workflow_count}  Version: {health.version}")
    if health.error:
        typer.echo(f"Error: {health.error}")
    if not health.connected:
        raise typer.Exit(code=1)


@app.command("validate-config")
def validate_config_command(path: Path) -> None:
    """Check an automation config file and print its completeness score."""
    report = validate_config(_read_automation_config(path))
    for error in report.errors:
        typer.secho(f"error: {error}", fg=typer.colors.RED)
    for warning in report.warnings:
        typer.secho(f"warning: {warning}", fg=typer.colors.YELLOW)
    typer.echo(f"Score: {report.score}/100")
    if not report.valid:
        raise typer.Exit(code=1)
    typer.echo("Config is valid")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
