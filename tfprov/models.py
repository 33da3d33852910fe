from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

ENV_NAME_KEY = "AZURE_ENV_NAME"
LOCATION_KEY = "AZURE_LOCATION"
SUBSCRIPTION_ID_KEY = "AZURE_SUBSCRIPTION_ID"


class Environment:
    """Named set of key/value settings for one target deployment.

    The provider keeps a reference to the instance it was given, so values set by the
    caller after construction are visible to later operations.
    """

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = values if values is not None else {}

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.values.get(key, default)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def get_env_name(self) -> str:
        return self.values.get(ENV_NAME_KEY, "")

    def set_env_name(self, name: str) -> None:
        self.values[ENV_NAME_KEY] = name

    def get_location(self) -> str:
        return self.values.get(LOCATION_KEY, "")

    def set_location(self, location: str) -> None:
        self.values[LOCATION_KEY] = location

    def get_subscription_id(self) -> str:
        return self.values.get(SUBSCRIPTION_ID_KEY, "")

    def set_subscription_id(self, subscription_id: str) -> None:
        self.values[SUBSCRIPTION_ID_KEY] = subscription_id


@dataclass(frozen=True)
class Options:
    provider: str = "terraform"
    path: str = "infra"
    module: str = "main"


class ProvisioningPhase(str, Enum):
    INITIALIZE = "initialize"
    GENERATE_PARAMETERS = "generate-parameters"
    VALIDATE = "validate"
    VALIDATE_RESULT = "validate-result"
    PLAN = "plan"
    PLAN_RESULT = "plan-result"
    CREATE_TEMPLATE = "create-template"
    APPLY = "apply"
    OUTPUTS = "outputs"
    DESTROY = "destroy"


@dataclass(frozen=True)
class ProgressReport:
    message: str
    phase: ProvisioningPhase
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class InputParameter:
    type: str
    value: Any
    sensitive: bool = False


@dataclass(frozen=True)
class OutputParameter:
    type: Any
    value: Any
    sensitive: bool = False


def _frozen(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Deployment:
    parameters: Mapping[str, InputParameter] = field(default_factory=dict)
    outputs: Mapping[str, OutputParameter] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", _frozen(self.parameters))
        object.__setattr__(self, "outputs", _frozen(self.outputs))


@dataclass(frozen=True)
class TerraformDeploymentDetails:
    parameter_file_path: str
    plan_file_path: str
    local_state_file_path: str


# One details shape per provisioning backend; only terraform is implemented.
DeploymentDetails = TerraformDeploymentDetails


@dataclass(frozen=True)
class DeploymentPlan:
    deployment: Deployment
    details: DeploymentDetails


@dataclass(frozen=True)
class DestroyOptions:
    force_delete: bool = False
    force_purge: bool = False


@dataclass(frozen=True)
class SubscriptionScope:
    location: str
    subscription_id: str
    name: str


@dataclass(frozen=True)
class DeployResult:
    deployment: Deployment


@dataclass(frozen=True)
class DestroyResult:
    outputs: Mapping[str, OutputParameter] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "outputs", _frozen(self.outputs))


@dataclass(frozen=True)
class GetDeploymentResult:
    deployment: Deployment
