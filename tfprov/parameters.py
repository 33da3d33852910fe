from __future__ import annotations

import json
import logging
from pathlib import Path
import re
from typing import Any

from jsonschema import ValidationError
from jsonschema import validate as jsonschema_validate

from tfprov.errors import MissingEnvironmentValue, ParameterWriteFailed
from tfprov.models import Environment, InputParameter
from tfprov.module import VariableDeclaration

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

PARAMETER_TEMPLATE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "propertyNames": {"pattern": "^[A-Za-z_][A-Za-z0-9_-]*$"},
}


class ParameterFileWriter:
    """Expands a `.tfvars.json` template against an environment and writes the result."""

    def __init__(self, env: Environment) -> None:
        self._env = env

    def write(self, *, template_path: Path, output_path: Path) -> dict[str, Any]:
        logger.info("Generating terraform parameters from %s", template_path)
        template = self._load_template(template_path)
        values = {name: self._expand(value, source=str(template_path)) for name, value in template.items()}
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(json.dumps(values, indent=2), encoding="utf-8")
        except OSError as exc:
            raise ParameterWriteFailed(f"Unable to write parameter file {output_path}: {exc}") from exc
        logger.debug("Wrote parameter file %s with keys %s", output_path, sorted(values))
        return values

    @staticmethod
    def _load_template(template_path: Path) -> dict[str, Any]:
        try:
            content = template_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ParameterWriteFailed(f"Unable to read parameters template {template_path}: {exc}") from exc
        try:
            template = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ParameterWriteFailed(f"Invalid JSON in parameters template {template_path}: {exc.msg}") from exc
        try:
            jsonschema_validate(instance=template, schema=PARAMETER_TEMPLATE_SCHEMA)
        except ValidationError as exc:
            raise ParameterWriteFailed(f"Parameters template {template_path} is invalid: {exc.message}") from exc
        return template

    def _expand(self, value: Any, *, source: str) -> Any:
        if isinstance(value, str):
            return _PLACEHOLDER_RE.sub(lambda match: self._lookup(match.group(1), source=source), value)
        if isinstance(value, list):
            return [self._expand(item, source=source) for item in value]
        if isinstance(value, dict):
            return {key: self._expand(item, source=source) for key, item in value.items()}
        return value

    def _lookup(self, key: str, *, source: str) -> str:
        value = self._env.get(key)
        if value is None:
            raise MissingEnvironmentValue(key, source=source)
        return value


def infer_type(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "map"
    return "string"


def build_input_parameters(
    values: dict[str, Any],
    declarations: dict[str, VariableDeclaration],
) -> dict[str, InputParameter]:
    """Match generated parameter values against the module's declared inputs."""
    parameters: dict[str, InputParameter] = {}
    for name, value in values.items():
        declaration = declarations.get(name)
        if declarations and declaration is None:
            logger.warning("Parameter '%s' is not declared as a module variable", name)
        parameters[name] = InputParameter(
            type=(declaration.type if declaration and declaration.type else infer_type(value)),
            value=value,
            sensitive=declaration.sensitive if declaration else False,
        )
    return parameters
