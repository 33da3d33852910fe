from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path

from tfprov.cancellation import CancellationToken
from tfprov.config import ProviderSettings
from tfprov.errors import InvalidDeploymentPlan, MissingEnvironmentValue
from tfprov.logging_config import register_secret
from tfprov.models import (
    ENV_NAME_KEY,
    Deployment,
    DeploymentPlan,
    DeployResult,
    DestroyOptions,
    DestroyResult,
    Environment,
    GetDeploymentResult,
    Options,
    ProvisioningPhase,
    SubscriptionScope,
    TerraformDeploymentDetails,
)
from tfprov.module import declared_variables, uses_remote_backend
from tfprov.outputs import redact, sensitive_values
from tfprov.parameters import ParameterFileWriter, build_input_parameters
from tfprov.proc import CommandRunner
from tfprov.task import AsyncProvisioningTask, TaskContext
from tfprov.terraform import TerraformCli

logger = logging.getLogger(__name__)

ENV_DIR_NAME = ".azure"
BACKEND_CONFIG_FILE = "provider.conf.json"
LOCAL_STATE_FILE = "terraform.tfstate"
SUBSCRIPTION_ENV = "ARM_SUBSCRIPTION_ID"


@dataclass(frozen=True)
class ArtifactPaths:
    env_dir: Path
    parameters_template: Path
    parameter_file: Path
    plan_file: Path
    local_state_file: Path


class TerraformProvider:
    """Drives terraform through plan, deploy, destroy and output queries for one environment.

    Each operation returns an `AsyncProvisioningTask` whose worker runs the phases in
    order and stops at the first failing phase. Operations against the same environment
    share artifact paths and must be serialized by the caller.
    """

    def __init__(
        self,
        env: Environment,
        project_path: str | Path,
        options: Options | None = None,
        *,
        settings: ProviderSettings | None = None,
        runner: CommandRunner | None = None,
        cli: TerraformCli | None = None,
    ) -> None:
        self.env = env
        self.project_path = Path(project_path)
        self.options = options or Options()
        self.settings = settings or ProviderSettings.from_env()
        self.module_path = self.project_path / self.options.path
        self._cli = cli or TerraformCli(settings=self.settings, runner=runner)

    def artifact_paths(self) -> ArtifactPaths:
        env_name = self.env.get_env_name()
        if not env_name:
            raise MissingEnvironmentValue(ENV_NAME_KEY, source="the artifact layout")
        env_dir = self.project_path / ENV_DIR_NAME / env_name
        module = self.options.module
        return ArtifactPaths(
            env_dir=env_dir,
            parameters_template=self.module_path / f"{module}.tfvars.json",
            parameter_file=env_dir / f"{module}.tfvars.json",
            plan_file=env_dir / f"{module}.tfplan",
            local_state_file=env_dir / LOCAL_STATE_FILE,
        )

    def plan(self, token: CancellationToken | None = None) -> AsyncProvisioningTask[DeploymentPlan]:
        token = token or CancellationToken()

        def _plan(ctx: TaskContext) -> DeploymentPlan:
            paths = self.artifact_paths()
            token.raise_if_cancelled()
            self._cli.version(token=token)

            self._begin(ctx, token, "Initialize terraform", ProvisioningPhase.INITIALIZE)
            self._init(token)

            self._begin(ctx, token, "Generating terraform parameters", ProvisioningPhase.GENERATE_PARAMETERS)
            values = ParameterFileWriter(self.env).write(
                template_path=paths.parameters_template,
                output_path=paths.parameter_file,
            )
            parameters = build_input_parameters(values, declared_variables(self.module_path))
            secrets = self._protect(Deployment(parameters=parameters))

            self._begin(ctx, token, "Validate terraform template", ProvisioningPhase.VALIDATE)
            validated = self._cli.validate(self.module_path, env=self._tool_env(), token=token)
            ctx.report(
                redact(f"terraform validate result : {validated.text}", secrets),
                ProvisioningPhase.VALIDATE_RESULT,
            )

            self._begin(ctx, token, "Plan terraform template", ProvisioningPhase.PLAN)
            planned = self._cli.plan(
                self.module_path,
                var_file=paths.parameter_file,
                plan_file=paths.plan_file,
                state_file=self._state_file(paths),
                env=self._tool_env(),
                token=token,
            )
            ctx.report(redact(f"terraform plan result : {planned.text}", secrets), ProvisioningPhase.PLAN_RESULT)

            self._begin(ctx, token, "Create terraform template", ProvisioningPhase.CREATE_TEMPLATE)
            return DeploymentPlan(
                deployment=Deployment(parameters=parameters),
                details=TerraformDeploymentDetails(
                    parameter_file_path=str(paths.parameter_file),
                    plan_file_path=str(paths.plan_file),
                    local_state_file_path=str(paths.local_state_file),
                ),
            )

        return AsyncProvisioningTask.run(_plan, name="terraform-plan")

    def deploy(
        self,
        plan: DeploymentPlan,
        scope: SubscriptionScope,
        token: CancellationToken | None = None,
    ) -> AsyncProvisioningTask[DeployResult]:
        token = token or CancellationToken()

        def _deploy(ctx: TaskContext) -> DeployResult:
            details = self._require_details(plan)
            paths = self.artifact_paths()
            env = self._tool_env(scope)
            secrets = self._protect(plan.deployment)
            logger.info("Deploying environment '%s' to subscription %s", scope.name, scope.subscription_id)

            self._begin(ctx, token, "Validate terraform template", ProvisioningPhase.VALIDATE)
            validated = self._cli.validate(self.module_path, env=env, token=token)
            ctx.report(
                redact(f"terraform validate result : {validated.text}", secrets),
                ProvisioningPhase.VALIDATE_RESULT,
            )

            self._begin(ctx, token, "Deploying terraform template", ProvisioningPhase.APPLY)
            needs_attention = not self.settings.auto_approve
            if needs_attention:
                ctx.set_interactive(True)
            try:
                self._cli.apply(
                    self.module_path,
                    var_file=Path(details.parameter_file_path),
                    plan_file=Path(details.plan_file_path),
                    state_file=self._state_file(paths),
                    env=env,
                    token=token,
                )
            finally:
                if needs_attention:
                    ctx.set_interactive(False)

            self._begin(ctx, token, "Retrieving terraform outputs", ProvisioningPhase.OUTPUTS)
            outputs = self._cli.output(self.module_path, state_file=self._state_file(paths), env=env, token=token)
            deployment = Deployment(parameters=plan.deployment.parameters, outputs=outputs)
            self._protect(deployment)
            return DeployResult(deployment=deployment)

        return AsyncProvisioningTask.run(_deploy, name="terraform-deploy")

    def destroy(
        self,
        deployment: Deployment,
        options: DestroyOptions,
        token: CancellationToken | None = None,
    ) -> AsyncProvisioningTask[DestroyResult]:
        token = token or CancellationToken()

        def _destroy(ctx: TaskContext) -> DestroyResult:
            paths = self.artifact_paths()
            env = self._tool_env()
            self._protect(deployment)

            self._begin(ctx, token, "Initialize terraform", ProvisioningPhase.INITIALIZE)
            self._init(token)

            self._begin(ctx, token, "Destroying terraform deployment", ProvisioningPhase.DESTROY)
            needs_attention = not options.force_delete
            if needs_attention:
                ctx.set_interactive(True)
            try:
                self._cli.destroy(
                    self.module_path,
                    var_file=paths.parameter_file if paths.parameter_file.exists() else None,
                    state_file=self._state_file(paths),
                    force_delete=options.force_delete,
                    force_purge=options.force_purge,
                    env=env,
                    token=token,
                )
            finally:
                if needs_attention:
                    ctx.set_interactive(False)

            self._begin(ctx, token, "Retrieving terraform outputs", ProvisioningPhase.OUTPUTS)
            outputs = self._cli.output(self.module_path, state_file=self._state_file(paths), env=env, token=token)
            self._protect(Deployment(outputs=outputs))
            return DestroyResult(outputs=outputs)

        return AsyncProvisioningTask.run(_destroy, name="terraform-destroy")

    def get_deployment(
        self,
        scope: SubscriptionScope,
        token: CancellationToken | None = None,
    ) -> AsyncProvisioningTask[GetDeploymentResult]:
        token = token or CancellationToken()

        def _get_deployment(ctx: TaskContext) -> GetDeploymentResult:
            paths = self.artifact_paths()
            self._begin(ctx, token, "Retrieving terraform outputs", ProvisioningPhase.OUTPUTS)
            outputs = self._cli.output(
                self.module_path,
                state_file=self._state_file(paths),
                env=self._tool_env(scope),
                token=token,
            )
            deployment = Deployment(outputs=outputs)
            self._protect(deployment)
            return GetDeploymentResult(deployment=deployment)

        return AsyncProvisioningTask.run(_get_deployment, name="terraform-get-deployment")

    @staticmethod
    def _begin(ctx: TaskContext, token: CancellationToken, message: str, phase: ProvisioningPhase) -> None:
        token.raise_if_cancelled()
        logger.info("%s", message)
        ctx.report(message, phase)

    def _init(self, token: CancellationToken) -> None:
        backend_config = None
        if uses_remote_backend(self.module_path):
            candidate = self.module_path / BACKEND_CONFIG_FILE
            backend_config = candidate if candidate.exists() else None
        self._cli.init(self.module_path, backend_config=backend_config, env=self._tool_env(), token=token)

    def _state_file(self, paths: ArtifactPaths) -> Path | None:
        if uses_remote_backend(self.module_path):
            return None
        return paths.local_state_file

    def _tool_env(self, scope: SubscriptionScope | None = None) -> dict[str, str]:
        subscription_id = scope.subscription_id if scope else self.env.get_subscription_id()
        return {SUBSCRIPTION_ENV: subscription_id} if subscription_id else {}

    def _require_details(self, plan: DeploymentPlan) -> TerraformDeploymentDetails:
        details = plan.details
        if not isinstance(details, TerraformDeploymentDetails):
            raise InvalidDeploymentPlan(
                f"Deployment plan details of type {type(details).__name__} cannot be applied by terraform"
            )
        paths = self.artifact_paths()
        expected = {
            "parameter file": (details.parameter_file_path, paths.parameter_file),
            "plan file": (details.plan_file_path, paths.plan_file),
            "local state file": (details.local_state_file_path, paths.local_state_file),
        }
        for label, (actual, wanted) in expected.items():
            if Path(actual).resolve() != wanted.resolve():
                raise InvalidDeploymentPlan(
                    f"Deployment plan {label} {actual} was not produced for environment "
                    f"'{self.env.get_env_name()}' (expected {wanted})"
                )
        for label in ("parameter file", "plan file"):
            if not expected[label][1].exists():
                raise InvalidDeploymentPlan(f"Deployment plan {label} {expected[label][1]} does not exist")
        return details

    @staticmethod
    def _protect(deployment: Deployment) -> set[str]:
        secrets = sensitive_values(deployment)
        for secret in secrets:
            register_secret(secret)
        return secrets
