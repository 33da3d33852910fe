from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

from jsonschema import ValidationError
from jsonschema import validate as jsonschema_validate

from tfprov.cancellation import CancellationToken
from tfprov.config import ProviderSettings
from tfprov.errors import (
    ApplyFailed,
    CommandError,
    DestroyFailed,
    InitFailed,
    OutputParseFailed,
    PlanFailed,
    ToolUnavailable,
    ToolVersionUnsupported,
    ValidateFailed,
)
from tfprov.models import OutputParameter
from tfprov.outputs import decode_json, parse_outputs
from tfprov.proc import CommandRunner, JsonOutput, RunArgs, TextOutput, run_command

logger = logging.getLogger(__name__)

VERSION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"terraform_version": {"type": "string"}},
    "required": ["terraform_version"],
}

FORCE_PURGE_ENV = "TF_VAR_force_purge"


def parse_version(version_str: str) -> tuple[int, int, int]:
    """Parse a `major.minor.patch` string, ignoring any pre-release suffix."""
    core = version_str.strip().lstrip("v").split("-", 1)[0]
    parts = core.split(".")
    if len(parts) != 3:
        raise ValueError(f"Invalid version format: {version_str!r} (expected major.minor.patch)")
    try:
        return (int(parts[0]), int(parts[1]), int(parts[2]))
    except ValueError as exc:
        raise ValueError(f"Non-numeric version components in: {version_str!r}") from exc


class TerraformCli:
    """Adapter for the terraform subcommands used by the provisioning lifecycle."""

    def __init__(
        self,
        *,
        settings: ProviderSettings | None = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self._settings = settings or ProviderSettings()
        self._runner = runner

    def _cmd(self, module_path: Path, subcommand: str, *flags: str) -> list[str]:
        return [self._settings.terraform_path, f"-chdir={module_path}", subcommand, *flags]

    def _run(
        self,
        cmd: list[str],
        *,
        error_cls: type[CommandError],
        error_message: str,
        token: CancellationToken | None,
        env: Mapping[str, str] | None = None,
        interactive: bool = False,
    ) -> TextOutput:
        result = run_command(
            RunArgs(cmd=cmd, env=dict(env or {}), interactive=interactive, token=token),
            runner=self._runner,
            error_cls=error_cls,
            error_message=error_message,
        )
        return TextOutput(result=result)

    def version(self, *, token: CancellationToken | None = None) -> str:
        """Return the installed terraform version, failing if it is below the minimum."""
        logger.debug("Checking terraform version (minimum %s)", self._settings.min_terraform_version)
        output = self._run(
            [self._settings.terraform_path, "version", "-json"],
            error_cls=ToolUnavailable,
            error_message="Unable to query terraform version",
            token=token,
        )
        parsed = decode_json(output.result, error_cls=ToolVersionUnsupported, what="terraform version")
        try:
            jsonschema_validate(instance=parsed.payload, schema=VERSION_SCHEMA)
        except ValidationError as exc:
            raise ToolVersionUnsupported(
                f"Unexpected terraform version payload: {exc.message}", result=parsed.result
            ) from exc

        version = parsed.payload["terraform_version"]
        try:
            current = parse_version(version)
            minimum = parse_version(self._settings.min_terraform_version)
        except ValueError as exc:
            raise ToolVersionUnsupported(str(exc), result=parsed.result) from exc
        if current < minimum:
            raise ToolVersionUnsupported(
                f"terraform {version} is not supported; version {self._settings.min_terraform_version} "
                "or later is required",
                result=parsed.result,
            )
        logger.info("Using terraform %s", version)
        return version

    def init(
        self,
        module_path: Path,
        *,
        backend_config: Path | None = None,
        env: Mapping[str, str] | None = None,
        token: CancellationToken | None = None,
    ) -> TextOutput:
        flags = ["-upgrade"]
        if backend_config is not None:
            flags.append(f"-backend-config={backend_config}")
        try:
            return self._run(
                self._cmd(module_path, "init", *flags),
                error_cls=InitFailed,
                error_message=f"Failed to initialize terraform module {module_path}",
                token=token,
                env=env,
            )
        except InitFailed as exc:
            if "already initialized" in exc.diagnostic.lower():
                logger.debug("Terraform module already initialized: %s", module_path)
                return TextOutput(result=exc.result)
            raise

    def validate(
        self,
        module_path: Path,
        *,
        env: Mapping[str, str] | None = None,
        token: CancellationToken | None = None,
    ) -> TextOutput:
        return self._run(
            self._cmd(module_path, "validate"),
            error_cls=ValidateFailed,
            error_message=f"Terraform validation failed for {module_path}",
            token=token,
            env=env,
        )

    def plan(
        self,
        module_path: Path,
        *,
        var_file: Path,
        plan_file: Path,
        state_file: Path | None = None,
        env: Mapping[str, str] | None = None,
        token: CancellationToken | None = None,
    ) -> TextOutput:
        flags = [f"-var-file={var_file}", f"-out={plan_file}"]
        if state_file is not None:
            flags.append(f"-state={state_file}")
        return self._run(
            self._cmd(module_path, "plan", *flags),
            error_cls=PlanFailed,
            error_message=f"Terraform plan failed for {module_path}",
            token=token,
            env=env,
        )

    def apply(
        self,
        module_path: Path,
        *,
        var_file: Path,
        plan_file: Path,
        state_file: Path | None = None,
        env: Mapping[str, str] | None = None,
        token: CancellationToken | None = None,
    ) -> TextOutput:
        flags = [f"-var-file={var_file}"]
        if state_file is not None:
            flags.append(f"-state={state_file}")
        if self._settings.auto_approve:
            flags.append("-auto-approve")
        flags.append(str(plan_file))
        return self._run(
            self._cmd(module_path, "apply", *flags),
            error_cls=ApplyFailed,
            error_message=f"Terraform apply failed for {module_path}",
            token=token,
            env=env,
            interactive=not self._settings.auto_approve,
        )

    def destroy(
        self,
        module_path: Path,
        *,
        var_file: Path | None = None,
        state_file: Path | None = None,
        force_delete: bool = False,
        force_purge: bool = False,
        env: Mapping[str, str] | None = None,
        token: CancellationToken | None = None,
    ) -> TextOutput:
        flags: list[str] = []
        if var_file is not None:
            flags.append(f"-var-file={var_file}")
        if state_file is not None:
            flags.append(f"-state={state_file}")
        if force_delete:
            flags.append("-auto-approve")
        overrides = dict(env or {})
        if force_purge:
            overrides[FORCE_PURGE_ENV] = "true"
        return self._run(
            self._cmd(module_path, "destroy", *flags),
            error_cls=DestroyFailed,
            error_message=f"Terraform destroy failed for {module_path}",
            token=token,
            env=overrides,
            interactive=not force_delete,
        )

    def output(
        self,
        module_path: Path,
        *,
        state_file: Path | None = None,
        env: Mapping[str, str] | None = None,
        token: CancellationToken | None = None,
    ) -> dict[str, OutputParameter]:
        flags = ["-json"]
        if state_file is not None:
            flags.append(f"-state={state_file}")
        output = self._run(
            self._cmd(module_path, "output", *flags),
            error_cls=OutputParseFailed,
            error_message=f"Failed to read terraform outputs for {module_path}",
            token=token,
            env=env,
        )
        parsed: JsonOutput = decode_json(output.result, error_cls=OutputParseFailed, what="terraform output")
        return parse_outputs(parsed)
