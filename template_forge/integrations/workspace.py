"""Register a generated package with its surrounding workspace.

A workspace root is the nearest ancestor holding ``pnpm-workspace.yaml``,
``lerna.json`` or a ``package.json`` with a ``workspaces`` key.  Inside one:

1. the package path is added to the workspace's package patterns unless an
   existing entry or ``/*`` / ``/**`` glob already covers it
2. a scoped package is added to the root ``devDependencies`` as
   ``workspace:*`` unless already listed
3. the installer runs from the workspace root

Steps 1 and 2 only ever produce warnings.  A failed install is the one
error this component reports.
"""

from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from typing import Any

import yaml

from template_forge.config import WorkspaceConfig
from template_forge.exceptions import TemplateForgeError
from template_forge.models import PackageManager, TemplateContext, WorkspaceResult
from template_forge.utils import console, print_warning, run_command

PNPM_WORKSPACE_FILE = "pnpm-workspace.yaml"
LERNA_FILE = "lerna.json"
PACKAGE_JSON = "package.json"

_PACKAGES_KEY_RE = re.compile(r"^packages:\s*(?:\[\s*\])?\s*(?:#.*)?$")
_LIST_ITEM_RE = re.compile(r"^(?P<indent>[ \t]*)-\s*(?P<value>.*?)\s*(?:#.*)?$")


class WorkspaceError(TemplateForgeError):
    """Raised when a workspace manifest cannot be read or updated."""

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(message)


# ---------------------------------------------------------------------------
# Detection & pattern matching
# ---------------------------------------------------------------------------


def _has_workspaces_key(package_json: Path) -> bool:
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return False
    return isinstance(data, dict) and "workspaces" in data


def find_workspace_root(start: str | Path) -> Path | None:
    """Nearest ancestor of *start* (excluding *start* itself) that is a workspace root."""
    current = Path(start).resolve()
    for directory in current.parents:
        if (directory / PNPM_WORKSPACE_FILE).is_file() or (directory / LERNA_FILE).is_file():
            return directory
        package_json = directory / PACKAGE_JSON
        if package_json.is_file() and _has_workspaces_key(package_json):
            return directory
    return None


def pattern_covers(pattern: str, rel_path: str) -> bool:
    """Whether a workspace package pattern already includes *rel_path*.

    Exact entries match themselves, ``dir/*`` matches direct children of
    ``dir`` and ``dir/**`` matches anything below it.
    """
    candidate = pattern.strip().strip("'\"").rstrip("/")
    target = rel_path.strip("/")
    if not candidate or candidate.startswith("!"):
        return False
    if candidate.removeprefix("./") == target:
        return True
    if candidate.endswith("/**"):
        base = candidate[: -len("/**")].removeprefix("./")
        return target.startswith(base + "/")
    if candidate.endswith("/*"):
        base = candidate[: -len("/*")].removeprefix("./")
        if not target.startswith(base + "/"):
            return False
        return "/" not in target[len(base) + 1:]
    return False


def _unquote(value: str) -> str:
    return value.strip().strip("'\"")


# ---------------------------------------------------------------------------
# Manifest editing
# ---------------------------------------------------------------------------


def add_pnpm_workspace_entry(text: str, rel_path: str) -> str | None:
    """Return *text* with ``- "<rel_path>"`` added under ``packages:``.

    Returns ``None`` when an existing entry already covers the path.  The new
    line goes before the first entry that sorts after it, so an alphabetical
    list stays alphabetical; comments and formatting elsewhere are kept.

    Raises:
        WorkspaceError: If the YAML cannot be parsed.
    """
    try:
        data = yaml.safe_load(text) if text.strip() else {}
    except yaml.YAMLError as exc:
        raise WorkspaceError(f"Invalid {PNPM_WORKSPACE_FILE}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise WorkspaceError(f"{PNPM_WORKSPACE_FILE} must contain a mapping")

    packages = data.get("packages") or []
    if not isinstance(packages, list):
        raise WorkspaceError(f"'packages' in {PNPM_WORKSPACE_FILE} must be a list")
    if any(isinstance(p, str) and pattern_covers(p, rel_path) for p in packages):
        return None

    lines = text.splitlines()
    header = next((i for i, line in enumerate(lines) if _PACKAGES_KEY_RE.match(line)), None)

    if header is None:
        if packages:
            # Flow-style list such as ``packages: ["apps/*"]``: rewrite the document.
            data["packages"] = [*packages, rel_path]
            return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
        block = ["packages:", f'  - "{rel_path}"']
        prefix = lines + ([""] if lines and lines[-1].strip() else [])
        return "\n".join(prefix + block) + "\n"

    lines[header] = "packages:"
    entries: list[tuple[int, str, str]] = []
    index = header + 1
    while index < len(lines):
        line = lines[index]
        if not line.strip() or line.lstrip().startswith("#"):
            index += 1
            continue
        match = _LIST_ITEM_RE.match(line)
        if match is None:
            break
        entries.append((index, match.group("indent"), _unquote(match.group("value"))))
        index += 1

    indent = entries[0][1] if entries else "  "
    new_line = f'{indent}- "{rel_path}"'
    insert_at = entries[-1][0] + 1 if entries else header + 1
    for line_no, _, value in entries:
        if value.lstrip("!") > rel_path:
            insert_at = line_no
            break

    lines.insert(insert_at, new_line)
    return "\n".join(lines) + "\n"


def add_json_workspace_entry(data: dict[str, Any], key: str, rel_path: str) -> bool:
    """Add *rel_path* to a JSON manifest's package list; ``False`` if already covered.

    Handles both ``"workspaces": [...]`` and ``"workspaces": {"packages": [...]}``.
    """
    container: Any = data.get(key)
    target_list: list[Any]
    if isinstance(container, dict):
        target_list = container.setdefault("packages", [])
    elif isinstance(container, list):
        target_list = container
    else:
        target_list = []
        data[key] = target_list

    if any(isinstance(p, str) and pattern_covers(p, rel_path) for p in target_list):
        return False

    position = next(
        (i for i, p in enumerate(target_list) if isinstance(p, str) and p > rel_path),
        len(target_list),
    )
    target_list.insert(position, rel_path)
    return True


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise WorkspaceError(f"Cannot read {path.name}: {exc}", str(path)) from exc
    if not isinstance(data, dict):
        raise WorkspaceError(f"{path.name} must contain a JSON object", str(path))
    return data


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def register_package(root: Path, rel_path: str) -> bool:
    """Add *rel_path* to whichever package-pattern manifest *root* uses.

    Returns ``True`` if a manifest was changed.
    """
    pnpm_file = root / PNPM_WORKSPACE_FILE
    if pnpm_file.is_file():
        updated = add_pnpm_workspace_entry(pnpm_file.read_text(encoding="utf-8"), rel_path)
        if updated is None:
            return False
        pnpm_file.write_text(updated, encoding="utf-8")
        return True

    package_json = root / PACKAGE_JSON
    if package_json.is_file():
        data = _read_json(package_json)
        if "workspaces" in data:
            changed = add_json_workspace_entry(data, "workspaces", rel_path)
            if changed:
                _write_json(package_json, data)
            return changed

    lerna_file = root / LERNA_FILE
    if lerna_file.is_file():
        data = _read_json(lerna_file)
        changed = add_json_workspace_entry(data, "packages", rel_path)
        if changed:
            _write_json(lerna_file, data)
        return changed

    raise WorkspaceError(f"No package-pattern manifest found in {root}", str(root))


def workspace_scope(root_manifest: dict[str, Any]) -> str | None:
    """``"@acme/"`` for a root package named ``@acme/monorepo``."""
    name = root_manifest.get("name")
    if isinstance(name, str) and name.startswith("@") and "/" in name:
        return name.split("/", 1)[0] + "/"
    return None


def add_workspace_dependency(root: Path, package_name: str, scope: str | None) -> bool:
    """Add ``"<package_name>": "workspace:*"`` to the root ``devDependencies``.

    Only scoped packages are added, and only when not already a dependency.
    """
    package_json = root / PACKAGE_JSON
    if not package_json.is_file():
        return False
    data = _read_json(package_json)
    scope = scope or workspace_scope(data)
    if not scope or not package_name.startswith(scope):
        return False

    dependencies = data.get("dependencies") or {}
    dev_dependencies = data.get("devDependencies") or {}
    if package_name in dependencies or package_name in dev_dependencies:
        return False

    dev_dependencies[package_name] = "workspace:*"
    data["devDependencies"] = dict(sorted(dev_dependencies.items()))
    _write_json(package_json, data)
    return True


def detect_package_manager(root: Path) -> PackageManager:
    if (root / PNPM_WORKSPACE_FILE).is_file() or (root / "pnpm-lock.yaml").is_file():
        return PackageManager.PNPM
    if (root / "yarn.lock").is_file():
        return PackageManager.YARN
    if (root / "bun.lockb").is_file():
        return PackageManager.BUN
    return PackageManager.NPM


def _package_name(package_path: Path, fallback: str) -> str:
    manifest = package_path / PACKAGE_JSON
    if manifest.is_file():
        try:
            name = _read_json(manifest).get("name")
        except WorkspaceError:
            return fallback
        if isinstance(name, str) and name:
            return name
    return fallback


# ---------------------------------------------------------------------------
# WorkspaceIntegrator
# ---------------------------------------------------------------------------


class WorkspaceIntegrator:
    """Wires a generated package into the workspace that contains it."""

    def __init__(self, config: WorkspaceConfig | None = None) -> None:
        self.config = config or WorkspaceConfig()

    async def integrate(
        self,
        package_path: str | Path,
        context: TemplateContext,
        skip_install: bool = False,
        verbose: bool = False,
    ) -> WorkspaceResult:
        """Register *package_path* and optionally install dependencies."""
        result = WorkspaceResult()
        path = Path(package_path).resolve()

        root = (
            Path(self.config.workspace_root).resolve()
            if self.config.workspace_root
            else await asyncio.to_thread(find_workspace_root, path)
        )
        if root is None:
            result.warnings.append("Not inside a workspace; skipping workspace integration")
            return result
        result.workspace_root = root

        try:
            rel_path = path.relative_to(root).as_posix()
        except ValueError:
            result.warnings.append(f"{path} is outside the workspace root {root}")
            return result

        if rel_path in ("", "."):
            result.warnings.append("Package is the workspace root; nothing to register")
        else:
            try:
                result.manifest_updated = await asyncio.to_thread(register_package, root, rel_path)
            except (WorkspaceError, OSError) as exc:
                result.warnings.append(f"Failed to update workspace manifest: {exc}")

            package_name = await asyncio.to_thread(_package_name, path, context.project_name)
            try:
                result.root_manifest_updated = await asyncio.to_thread(
                    add_workspace_dependency, root, package_name, self.config.dependency_scope
                )
            except (WorkspaceError, OSError) as exc:
                result.warnings.append(f"Failed to update root package.json: {exc}")

        if verbose:
            console.print(
                f"[cyan]Workspace[/cyan] {root}: manifest "
                f"{'updated' if result.manifest_updated else 'unchanged'}, root dependencies "
                f"{'updated' if result.root_manifest_updated else 'unchanged'}"
            )

        if not skip_install and self.config.auto_install:
            await self._install(root, context, result, verbose)

        if verbose:
            for warning in result.warnings:
                print_warning(warning)
        return result

    async def _install(
        self, root: Path, context: TemplateContext, result: WorkspaceResult, verbose: bool
    ) -> None:
        manager = (
            self.config.package_manager
            or (context.package_manager.value if context.package_manager else None)
            or detect_package_manager(root).value
        )
        if verbose:
            console.print(f"[cyan]Running[/cyan] {manager} install in {root}")

        returncode, _, stderr = await run_command(
            [manager, "install"], cwd=root, timeout=self.config.install_timeout
        )
        if returncode != 0:
            result.errors.append(
                f"{manager} install failed (exit {returncode}): {stderr or 'no output'}"
            )
            return
        result.dependencies_installed = True
