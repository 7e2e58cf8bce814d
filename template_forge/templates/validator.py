"""Read-only structural checks on a fetched template directory.

Errors make the template unusable (the pipeline stops); warnings point at
things the template author probably wants to fix but which do not prevent
rendering.  Nothing here writes to disk.
"""

from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path

from template_forge.config import Config
from template_forge.models import ValidationReport
from template_forge.templates.metadata import check_descriptor
from template_forge.utils import format_bytes, iter_files

MAX_FILE_SIZE = 10 * 1024 * 1024

SUSPICIOUS_EXTENSIONS = {".exe", ".dll", ".so", ".dylib", ".bin"}

PROBLEMATIC_ENTRIES = ["node_modules", ".git", "dist", "build", ".env", ".env.local"]

PLACEHOLDER_TOKENS = ["YOUR_NAME", "YOUR_EMAIL", "PROJECT_NAME", "DESCRIPTION", "TODO:", "FIXME:", "XXX:"]

PLACEHOLDER_PACKAGE_NAMES = {"template-name", "my-template"}
PLACEHOLDER_DESCRIPTIONS = {"Template description", "My template"}

_NESTED_TAG_RE = re.compile(r"<%(?:(?!%>)[^\n])*<%")


class TemplateValidator:
    """Inspects a template tree and reports errors and warnings."""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()

    async def validate(self, path: str | Path) -> ValidationReport:
        return await asyncio.to_thread(self._validate, Path(path))

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _validate(self, root: Path) -> ValidationReport:
        report = ValidationReport()

        if not root.exists():
            report.errors.append(f"Template path does not exist: {root}")
        elif not root.is_dir():
            report.errors.append(f"Template path is not a directory: {root}")
        if report.errors:
            report.valid = False
            return report

        descriptor = self.config.pipeline.descriptor_name
        excluded = [*self.config.pipeline.ignore_patterns, descriptor]
        files = list(iter_files(root, excluded))

        if not files:
            report.errors.append("Template contains no renderable files")
            report.valid = False
            return report

        top_level = {p.name for p in root.iterdir()}
        if not any(name.lower().startswith("readme") for name in top_level):
            report.warnings.append("Template has no README file")
        if ".gitignore" not in top_level:
            report.warnings.append("Template has no .gitignore file")
        for name in PROBLEMATIC_ENTRIES:
            if name in top_level:
                report.warnings.append(f"Template contains '{name}', which will be skipped when rendering")

        texts: dict[Path, str] = {}
        for rel in files:
            full = root / rel
            size = full.stat().st_size
            if size > MAX_FILE_SIZE:
                report.warnings.append(f"Large file {rel.as_posix()} ({format_bytes(size)})")
                continue
            if full.suffix.lower() in SUSPICIOUS_EXTENSIONS:
                report.warnings.append(f"Binary file {rel.as_posix()} may not belong in a template")
                continue
            text = _read_text(full)
            if text is not None:
                texts[rel] = text
                report.warnings.extend(_check_text(rel.as_posix(), text))

        package_json = texts.get(Path("package.json"))
        if package_json is not None:
            report.warnings.extend(_check_package_json(package_json))

        report.warnings.extend(self._check_descriptor(root / descriptor, texts, package_json))
        return report

    def _check_descriptor(
        self, path: Path, texts: dict[Path, str], package_json: str | None
    ) -> list[str]:
        if not path.is_file():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            return [f"Malformed {path.name}: {exc}"]

        errors, warnings = check_descriptor(data)
        found = [f"Malformed {path.name}: {e}" for e in errors] + warnings
        if errors:
            return found

        corpus = "\n".join(texts.values()) + "\n" + "\n".join(p.as_posix() for p in texts)
        for variable in data.get("variables") or []:
            name = variable.get("name", "")
            if name and name not in corpus:
                found.append(f"Variable '{name}' is declared but never used")

        if package_json is not None:
            try:
                manifest = json.loads(package_json)
            except json.JSONDecodeError:
                manifest = {}
            declared = {
                **(manifest.get("dependencies") or {}),
                **(manifest.get("devDependencies") or {}),
            } if isinstance(manifest, dict) else {}
            for dep in data.get("dependencies") or []:
                if dep not in declared:
                    found.append(f"Dependency '{dep}' is listed in {path.name} but not in package.json")
        return found


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_text(path: Path) -> str | None:
    try:
        raw = path.read_bytes()
    except OSError:
        return None
    if b"\x00" in raw:
        return None
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _check_text(rel: str, text: str) -> list[str]:
    warnings: list[str] = []
    opens, closes = text.count("<%"), text.count("%>")
    if opens != closes:
        warnings.append(f"Unbalanced template tags in {rel} ({opens} '<%' vs {closes} '%>')")
    if _NESTED_TAG_RE.search(text):
        warnings.append(f"Nested template tags in {rel}")
    tokens = [token for token in PLACEHOLDER_TOKENS if token in text]
    if tokens:
        warnings.append(f"Placeholder text in {rel}: {', '.join(tokens)}")
    return warnings


def _check_package_json(text: str) -> list[str]:
    warnings: list[str] = []
    if "<%" not in text:
        warnings.append("package.json contains no template variables")
    try:
        manifest = json.loads(text)
    except json.JSONDecodeError:
        # Templated manifests are often not valid JSON before rendering.
        return warnings
    if not isinstance(manifest, dict):
        return warnings
    if manifest.get("name") in PLACEHOLDER_PACKAGE_NAMES:
        warnings.append("package.json has a placeholder name that should be templated")
    if manifest.get("description") in PLACEHOLDER_DESCRIPTIONS:
        warnings.append("package.json has a placeholder description that should be templated")
    return warnings
