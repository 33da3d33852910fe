import json
from pathlib import Path

import pytest

from tfprov.config import ProviderSettings
from tfprov.models import Environment, Options
from tfprov.provider import TerraformProvider
from tests.runner_utils import MockCommandRunner, prepare_generic_mocks

MAIN_TF = """
variable "location" {
  type        = string
  description = "Primary location for all resources"
}

variable "name" {
  type = string
}
"""


@pytest.fixture
def project(tmp_path) -> Path:
    module_dir = tmp_path / "infra"
    module_dir.mkdir()
    (module_dir / "main.tf").write_text(MAIN_TF)
    (module_dir / "main.tfvars.json").write_text(
        json.dumps({"location": "${AZURE_LOCATION}", "name": "${AZURE_ENV_NAME}"})
    )
    return tmp_path


@pytest.fixture
def env() -> Environment:
    environment = Environment()
    environment.set_location("westus2")
    environment.set_env_name("test-env")
    return environment


@pytest.fixture
def mock_runner() -> MockCommandRunner:
    runner = MockCommandRunner()
    prepare_generic_mocks(runner)
    return runner


@pytest.fixture
def settings() -> ProviderSettings:
    return ProviderSettings()


@pytest.fixture
def provider(env, project, mock_runner, settings) -> TerraformProvider:
    return TerraformProvider(env, project, Options(module="main"), settings=settings, runner=mock_runner)
