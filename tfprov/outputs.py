from __future__ import annotations

import json
import re
from typing import Any, Iterable, Mapping

from jsonschema import ValidationError
from jsonschema import validate as jsonschema_validate

from tfprov.errors import CommandError, OutputParseFailed
from tfprov.models import Deployment, OutputParameter
from tfprov.proc import CommandResult, JsonOutput

REDACTED = "******"
MIN_SECRET_LENGTH = 4

OUTPUTS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": {
        "type": "object",
        "properties": {
            "sensitive": {"type": "boolean"},
            # complex outputs report their type as a nested list, e.g. ["list", "string"]
            "type": {"type": ["string", "array"]},
            "value": {},
        },
        "required": ["sensitive", "type", "value"],
    },
}


def decode_json(result: CommandResult, *, error_cls: type[CommandError], what: str) -> JsonOutput:
    try:
        payload = json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise error_cls(f"Invalid JSON from {what}: {exc.msg}", result=result) from exc
    return JsonOutput(result=result, payload=payload)


def parse_outputs(output: JsonOutput) -> dict[str, OutputParameter]:
    """Map `terraform output -json` onto output parameters, one per key, fields verbatim."""
    try:
        jsonschema_validate(instance=output.payload, schema=OUTPUTS_SCHEMA)
    except ValidationError as exc:
        raise OutputParseFailed(f"Unexpected terraform output shape: {exc.message}", result=output.result) from exc

    return {
        name: OutputParameter(type=entry["type"], value=entry["value"], sensitive=entry["sensitive"])
        for name, entry in output.payload.items()
    }


def sensitive_values(deployment: Deployment) -> set[str]:
    """Collect the scalar text of every sensitive parameter and output."""
    values: set[str] = set()
    for entries in (deployment.parameters, deployment.outputs):
        for entry in entries.values():
            if entry.sensitive:
                values.update(_flatten(entry.value))
    return values


def _flatten(value: Any) -> Iterable[str]:
    # a sensitive flag carries no text worth masking
    if value is None or isinstance(value, bool):
        return []
    if isinstance(value, Mapping):
        return [text for item in value.values() for text in _flatten(item)]
    if isinstance(value, (list, tuple)):
        return [text for item in value for text in _flatten(item)]
    # numbers render as terraform prints them
    text = value if isinstance(value, str) else json.dumps(value)
    return [text] if text else []


def redact(text: str, secrets: Iterable[str]) -> str:
    """Mask whole occurrences of each secret; shorter values are left alone."""
    # longest first so a secret containing another is masked whole
    candidates = sorted({s for s in secrets if len(s) >= MIN_SECRET_LENGTH}, key=len, reverse=True)
    if not candidates:
        return text
    pattern = re.compile("|".join(_bounded(secret) for secret in candidates))
    return pattern.sub(REDACTED, text)


def _bounded(secret: str) -> str:
    head = r"(?<!\w)" if re.match(r"\w", secret[0]) else ""
    tail = r"(?!\w)" if re.match(r"\w", secret[-1]) else ""
    return f"{head}{re.escape(secret)}{tail}"
