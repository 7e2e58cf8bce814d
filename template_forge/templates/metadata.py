"""Load and check ``template.json`` descriptors.

A missing or malformed descriptor is never fatal: loading falls back to
placeholder metadata and reports what went wrong as warnings.
"""

from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from template_forge.models import TemplateMetadata, VariableType

DESCRIPTOR_NAME = "template.json"

_SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+(?:-[\w.-]+)?(?:\+[\w.-]+)?$")


def fallback_metadata(name: str | None = None) -> TemplateMetadata:
    """Placeholder metadata used when no usable descriptor exists."""
    return TemplateMetadata(name=name or "Unknown")


def check_descriptor(data: Any) -> tuple[list[str], list[str]]:
    """Check raw descriptor data.

    Returns:
        ``(errors, warnings)``.  Errors make the descriptor unusable;
        warnings are informational.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not isinstance(data, dict):
        return ["Descriptor must be a JSON object"], warnings

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append("Descriptor 'name' must be a non-empty string")

    for field in ("description", "version", "author", "nodeVersion"):
        if field in data and not isinstance(data[field], str):
            errors.append(f"Descriptor '{field}' must be a string")

    version = data.get("version")
    if isinstance(version, str) and not _SEMVER_RE.match(version):
        warnings.append(f"Descriptor version '{version}' is not a semantic version")

    for field in ("tags", "dependencies"):
        value = data.get(field)
        if value is not None and not (
            isinstance(value, list) and all(isinstance(v, str) for v in value)
        ):
            errors.append(f"Descriptor '{field}' must be a list of strings")

    variables = data.get("variables")
    if variables is not None:
        if not isinstance(variables, list):
            errors.append("Descriptor 'variables' must be a list")
        else:
            for index, variable in enumerate(variables):
                errors.extend(_check_variable(index, variable))

    return errors, warnings


def _check_variable(index: int, variable: Any) -> list[str]:
    if not isinstance(variable, dict):
        return [f"Variable {index} must be an object"]
    problems: list[str] = []
    label = variable.get("name") or f"#{index}"
    if not isinstance(variable.get("name"), str) or not variable["name"]:
        problems.append(f"Variable {index} needs a name")
    if not isinstance(variable.get("description"), str):
        problems.append(f"Variable '{label}' needs a description")
    allowed = {t.value for t in VariableType}
    if variable.get("type") not in allowed:
        problems.append(
            f"Variable '{label}' has invalid type; expected one of {', '.join(sorted(allowed))}"
        )
    if variable.get("type") == VariableType.SELECT.value and not variable.get("options"):
        problems.append(f"Select variable '{label}' needs options")
    return problems


def read_metadata(
    template_dir: str | Path,
    descriptor_name: str = DESCRIPTOR_NAME,
    fallback_name: str | None = None,
) -> tuple[TemplateMetadata, list[str]]:
    """Read the descriptor in *template_dir*.

    Returns:
        ``(metadata, warnings)``.  Metadata is the placeholder fallback when
        the descriptor is absent, unparseable or invalid.
    """
    path = Path(template_dir) / descriptor_name
    if not path.is_file():
        return fallback_metadata(fallback_name), []

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        return fallback_metadata(fallback_name), [f"Could not read {descriptor_name}: {exc}"]

    errors, warnings = check_descriptor(data)
    if errors:
        return fallback_metadata(fallback_name), [
            f"Ignoring invalid {descriptor_name}: {'; '.join(errors)}",
            *warnings,
        ]

    try:
        return TemplateMetadata.model_validate(data), warnings
    except ValidationError as exc:
        return fallback_metadata(fallback_name), [f"Ignoring invalid {descriptor_name}: {exc}"]


async def load_metadata(
    template_dir: str | Path,
    descriptor_name: str = DESCRIPTOR_NAME,
    fallback_name: str | None = None,
) -> tuple[TemplateMetadata, list[str]]:
    """Async wrapper around :func:`read_metadata`."""
    return await asyncio.to_thread(read_metadata, template_dir, descriptor_name, fallback_name)
