from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import re

logger = logging.getLogger(__name__)

_VARIABLE_RE = re.compile(r'^\s*variable\s+"([^"]+)"\s*\{', re.MULTILINE)
_BACKEND_RE = re.compile(r'^\s*backend\s+"([^"]+)"', re.MULTILINE)
_TYPE_RE = re.compile(r"^\s*type\s*=\s*(.+?)\s*$", re.MULTILINE)
_SENSITIVE_RE = re.compile(r"^\s*sensitive\s*=\s*true\b", re.MULTILINE)
_COMMENT_RE = re.compile(r"^\s*(#|//).*$", re.MULTILINE)


@dataclass(frozen=True)
class VariableDeclaration:
    name: str
    type: str | None = None
    sensitive: bool = False


def _read_sources(module_path: Path) -> list[tuple[Path, str]]:
    sources = []
    for path in sorted(module_path.glob("*.tf")):
        try:
            sources.append((path, _COMMENT_RE.sub("", path.read_text(encoding="utf-8"))))
        except OSError as exc:
            logger.warning("Skipping unreadable terraform file %s: %s", path, exc)
    return sources


def _block_body(text: str, open_brace: int) -> str:
    depth = 0
    for index in range(open_brace, len(text)):
        char = text[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[open_brace + 1 : index]
    return text[open_brace + 1 :]


def declared_variables(module_path: Path) -> dict[str, VariableDeclaration]:
    """Return the `variable` blocks declared by the module's top-level .tf files."""
    declarations: dict[str, VariableDeclaration] = {}
    for path, text in _read_sources(module_path):
        for match in _VARIABLE_RE.finditer(text):
            body = _block_body(text, match.end() - 1)
            # nested blocks (validation, ...) never carry these attributes
            type_match = _TYPE_RE.search(body)
            declarations[match.group(1)] = VariableDeclaration(
                name=match.group(1),
                type=type_match.group(1) if type_match else None,
                sensitive=bool(_SENSITIVE_RE.search(body)),
            )
        logger.debug("Scanned %s for variable declarations", path)
    return declarations


def backend_type(module_path: Path) -> str | None:
    for _, text in _read_sources(module_path):
        match = _BACKEND_RE.search(text)
        if match:
            return match.group(1)
    return None


def uses_remote_backend(module_path: Path) -> bool:
    backend = backend_type(module_path)
    return backend is not None and backend != "local"
