from __future__ import annotations

from dataclasses import dataclass, fields, is_dataclass
from datetime import datetime
from enum import Enum
import logging
from pathlib import Path
import threading
from typing import Any, Callable, Iterator, Mapping, TypeVar

import typer
import yaml

from tfprov.cancellation import CancellationToken
from tfprov.config import ProviderSettings
from tfprov.errors import ProvisioningException
from tfprov.logging_config import configure_logging
from tfprov.models import DestroyOptions, Environment, Options, ProgressReport, SubscriptionScope
from tfprov.provider import TerraformProvider
from tfprov.task import AsyncProvisioningTask

configure_logging()
logger = logging.getLogger(__name__)
app = typer.Typer(help="Terraform provisioning CLI", pretty_exceptions_show_locals=False)

T = TypeVar("T")


@dataclass
class _CliState:
    project: Path
    options: Options
    env: Environment


def _parse_assignments(assignments: list[str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Expected KEY=VALUE, got {assignment!r}")
        values[key.strip()] = value
    return values


def _plain(entity: Any) -> Any:
    if is_dataclass(entity) and not isinstance(entity, type):
        return {f.name: _plain(getattr(entity, f.name)) for f in fields(entity)}
    if isinstance(entity, Mapping):
        return {str(key): _plain(value) for key, value in entity.items()}
    if isinstance(entity, (list, tuple)):
        return [_plain(item) for item in entity]
    if isinstance(entity, Enum):
        return entity.value
    if isinstance(entity, (datetime, Path)):
        return str(entity)
    return entity


def _masked(entity: Any) -> Any:
    """Replace the value of every sensitive parameter/output with a marker."""
    plain = _plain(entity)

    def _walk(node: Any) -> Any:
        if isinstance(node, dict):
            if node.get("sensitive") is True and "value" in node:
                return {**node, "value": "(sensitive value)"}
            return {key: _walk(value) for key, value in node.items()}
        if isinstance(node, list):
            return [_walk(item) for item in node]
        return node

    return _walk(plain)


def _echo_yaml_entity(entity: object) -> None:
    typer.echo(yaml.safe_dump(_masked(entity), sort_keys=False), nl=False)


def _exit_for_domain_error(exc: ProvisioningException) -> None:
    logger.warning("CLI command failed with domain error: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _echo_progress(report: ProgressReport) -> None:
    typer.echo(f"[{report.phase.value}] {report.message}", err=True)


def _echo_interactive(interactive: bool) -> None:
    logger.debug("Operator attention %s", "required" if interactive else "released")


def _drain(items: Iterator[Any], handler: Callable[[Any], None]) -> threading.Thread:
    def _consume() -> None:
        for item in items:
            handler(item)

    thread = threading.Thread(target=_consume, daemon=True)
    thread.start()
    return thread


def _await(task: AsyncProvisioningTask[T], token: CancellationToken) -> T:
    # both streams are drained while waiting so progress shows up live
    consumers = [_drain(task.progress(), _echo_progress), _drain(task.interactive(), _echo_interactive)]
    try:
        while not task.done():
            try:
                task.exception(timeout=0.5)
            except TimeoutError:
                continue
    except KeyboardInterrupt:
        token.cancel("interrupted by user")
    for consumer in consumers:
        consumer.join()
    return task.result()


def _state(ctx: typer.Context) -> _CliState:
    return ctx.obj


def _provider(state: _CliState) -> TerraformProvider:
    return TerraformProvider(state.env, state.project, state.options, settings=ProviderSettings.from_env())


def _scope(env: Environment) -> SubscriptionScope:
    return SubscriptionScope(
        location=env.get_location(),
        subscription_id=env.get_subscription_id(),
        name=env.get_env_name(),
    )


@app.callback()
def main(
    ctx: typer.Context,
    project: Path = typer.Option(Path("."), "--project", help="Project root containing the infra module."),
    infra_path: str = typer.Option("infra", "--infra-path", help="Module directory relative to the project."),
    module: str = typer.Option("main", "--module", help="Module name used for parameter and plan files."),
    env_name: str = typer.Option(..., "--env-name", help="Environment name scoping the generated artifacts."),
    location: str | None = typer.Option(None, "--location", help="Target location (AZURE_LOCATION)."),
    subscription_id: str | None = typer.Option(
        None, "--subscription-id", help="Target subscription (AZURE_SUBSCRIPTION_ID)."
    ),
    assignments: list[str] = typer.Option([], "--set", help="Extra environment value as KEY=VALUE; repeatable."),
) -> None:
    try:
        extra = _parse_assignments(assignments)
    except ValueError as e:
        logger.warning("Invalid --set input: %s", e)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    env = Environment(extra)
    env.set_env_name(env_name)
    if location is not None:
        env.set_location(location)
    if subscription_id is not None:
        env.set_subscription_id(subscription_id)
    ctx.obj = _CliState(project=project, options=Options(path=infra_path, module=module), env=env)


@app.command("plan")
def plan(ctx: typer.Context) -> None:
    state = _state(ctx)
    token = CancellationToken()
    try:
        deployment_plan = _await(_provider(state).plan(token), token)
    except ProvisioningException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(deployment_plan)


@app.command("provision")
def provision(ctx: typer.Context) -> None:
    state = _state(ctx)
    provider = _provider(state)
    token = CancellationToken()
    try:
        deployment_plan = _await(provider.plan(token), token)
        result = _await(provider.deploy(deployment_plan, _scope(state.env), token), token)
    except ProvisioningException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(result.deployment)


@app.command("show")
def show(ctx: typer.Context) -> None:
    state = _state(ctx)
    token = CancellationToken()
    try:
        result = _await(_provider(state).get_deployment(_scope(state.env), token), token)
    except ProvisioningException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(result.deployment)


@app.command("destroy")
def destroy(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Skip the destroy confirmation prompt."),
    purge: bool = typer.Option(False, "--purge", help="Purge soft-deleted resources on destroy."),
) -> None:
    state = _state(ctx)
    provider = _provider(state)
    token = CancellationToken()
    try:
        current = _await(provider.get_deployment(_scope(state.env), token), token)
        result = _await(
            provider.destroy(current.deployment, DestroyOptions(force_delete=force, force_purge=purge), token),
            token,
        )
    except ProvisioningException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(result)


if __name__ == "__main__":
    app()
