from __future__ import annotations

import json

import pytest

from tfprov.errors import MissingEnvironmentValue, ParameterWriteFailed
from tfprov.models import Environment
from tfprov.module import VariableDeclaration
from tfprov.parameters import ParameterFileWriter, build_input_parameters, infer_type


def test_write_expands_placeholders_into_environment_scoped_file(tmp_path) -> None:
    template = tmp_path / "infra" / "main.tfvars.json"
    template.parent.mkdir()
    template.write_text(
        json.dumps({"location": "${AZURE_LOCATION}", "name": "${AZURE_ENV_NAME}", "tags": {"env": "env-${AZURE_ENV_NAME}"}})
    )
    env = Environment({"AZURE_LOCATION": "westus2", "AZURE_ENV_NAME": "test-env"})
    output = tmp_path / ".azure" / "test-env" / "main.tfvars.json"

    values = ParameterFileWriter(env).write(template_path=template, output_path=output)

    assert values == {"location": "westus2", "name": "test-env", "tags": {"env": "env-test-env"}}
    assert json.loads(output.read_text()) == values


def test_write_keeps_non_string_values(tmp_path) -> None:
    template = tmp_path / "main.tfvars.json"
    template.write_text(json.dumps({"replicas": 2, "enabled": True}))

    values = ParameterFileWriter(Environment()).write(template_path=template, output_path=tmp_path / "out.json")

    assert values == {"replicas": 2, "enabled": True}


def test_write_names_the_missing_environment_key(tmp_path) -> None:
    template = tmp_path / "main.tfvars.json"
    template.write_text(json.dumps({"location": "${AZURE_LOCATION}"}))
    output = tmp_path / "out.json"

    with pytest.raises(MissingEnvironmentValue) as exc_info:
        ParameterFileWriter(Environment()).write(template_path=template, output_path=output)

    assert exc_info.value.key == "AZURE_LOCATION"
    assert "AZURE_LOCATION" in str(exc_info.value)
    assert not output.exists()


@pytest.mark.parametrize("content", ["not json", json.dumps(["location"])])
def test_write_rejects_invalid_templates(tmp_path, content: str) -> None:
    template = tmp_path / "main.tfvars.json"
    template.write_text(content)

    with pytest.raises(ParameterWriteFailed):
        ParameterFileWriter(Environment()).write(template_path=template, output_path=tmp_path / "out.json")


def test_write_requires_a_template(tmp_path) -> None:
    with pytest.raises(ParameterWriteFailed):
        ParameterFileWriter(Environment()).write(
            template_path=tmp_path / "missing.tfvars.json", output_path=tmp_path / "out.json"
        )


def test_build_input_parameters_uses_declarations_then_inference() -> None:
    parameters = build_input_parameters(
        {"location": "westus2", "admin_password": "pw", "replicas": 3},
        {
            "location": VariableDeclaration(name="location", type="string"),
            "admin_password": VariableDeclaration(name="admin_password", sensitive=True),
        },
    )

    assert parameters["location"].type == "string"
    assert parameters["admin_password"].type == "string"
    assert parameters["admin_password"].sensitive is True
    assert parameters["replicas"].type == "number"
    assert parameters["replicas"].sensitive is False


def test_infer_type_maps_json_values_to_terraform_types() -> None:
    assert infer_type(True) == "bool"
    assert infer_type(1.5) == "number"
    assert infer_type(["a"]) == "list"
    assert infer_type({"a": 1}) == "map"
    assert infer_type("x") == "string"
