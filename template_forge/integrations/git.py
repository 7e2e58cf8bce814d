"""Version control setup for a freshly materialized project.

Steps, in order, each tolerant of failure:

1. check that ``git`` is available (missing -> warning, stop)
2. check whether the directory is already inside a repository (yes -> stop)
3. ``git init`` plus optional author identity (failure -> error, stop)
4. write ``.gitignore`` unless one exists
5. ``git add .`` and one initial commit
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

from template_forge.config import GitConfig
from template_forge.exceptions import TemplateForgeError
from template_forge.models import GitResult, GitStatus, PackageManager, TemplateContext
from template_forge.utils import console, print_warning


class GitError(TemplateForgeError):
    """Raised when a git command fails."""

    def __init__(self, message: str, command: str = "", stderr: str = ""):
        self.command = command
        self.stderr = stderr
        super().__init__(message)


async def _run_git(
    *args: str,
    cwd: str | Path | None = None,
    timeout: float = 60.0,
) -> tuple[str, str]:
    """Run a git command asynchronously and return (stdout, stderr).

    Raises GitError if git cannot be started, times out or exits non-zero.
    """
    cmd = ["git"] + list(args)
    cmd_str = " ".join(cmd)

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
        )
    except OSError as exc:
        raise GitError(f"Could not run {cmd_str}: {exc}", command=cmd_str) from exc

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        raise GitError(
            f"Git command timed out after {timeout}s: {cmd_str}",
            command=cmd_str,
        )

    stdout = stdout_bytes.decode("utf-8", errors="replace").strip()
    stderr = stderr_bytes.decode("utf-8", errors="replace").strip()

    if process.returncode != 0:
        raise GitError(
            f"Git command failed (exit {process.returncode}): {cmd_str}\n{stderr}",
            command=cmd_str,
            stderr=stderr,
        )

    return stdout, stderr


# ---------------------------------------------------------------------------
# Generated content
# ---------------------------------------------------------------------------

LOCKFILES: dict[PackageManager, str] = {
    PackageManager.NPM: "package-lock.json",
    PackageManager.YARN: "yarn.lock",
    PackageManager.PNPM: "pnpm-lock.yaml",
    PackageManager.BUN: "bun.lockb",
}

_GITIGNORE_SECTIONS: list[tuple[str, list[str]]] = [
    ("Dependencies", ["node_modules/", ".pnp", ".pnp.js", "jspm_packages/"]),
    ("Build output", ["dist/", "build/", "lib/", "*.tsbuildinfo", ".turbo/"]),
    ("Coverage", ["coverage/", ".nyc_output/", "*.lcov"]),
    (
        "Logs",
        ["logs", "*.log", "npm-debug.log*", "yarn-debug.log*", "yarn-error.log*", "pnpm-debug.log*"],
    ),
    ("Editors", [".vscode/", ".idea/", "*.swp", "*.swo", "*~"]),
    ("OS artifacts", [".DS_Store", "Thumbs.db", "desktop.ini"]),
    (
        "Environment",
        [".env", ".env.local", ".env.development.local", ".env.test.local", ".env.production.local"],
    ),
    ("Caches", [".cache/", ".eslintcache", ".npm", ".yarn-integrity"]),
]

COMMIT_TOOLING = [
    "TypeScript support",
    "ESLint and Prettier configuration",
    "Test setup",
    "Build configuration",
    "Documentation",
]


def build_gitignore(package_manager: PackageManager | str | None = None) -> str:
    """Standard ignore rules plus one lockfile line for *package_manager*.

    npm is assumed when no installer was chosen.
    """
    lines: list[str] = []
    for title, patterns in _GITIGNORE_SECTIONS:
        lines.append(f"# {title}")
        lines.extend(patterns)
        lines.append("")

    manager = PackageManager(package_manager) if package_manager else PackageManager.NPM
    lines.append("# Lockfile")
    lines.append(LOCKFILES[manager])
    lines.append("")
    return "\n".join(lines)


def build_commit_message(context: TemplateContext) -> str:
    """``feat: add <name> package`` with the description and included tooling."""
    header = f"feat: add {context.project_name} package"
    if not context.description:
        return (
            f"{header}\n\nInitial implementation with TypeScript, testing, "
            "and build configuration."
        )
    bullets = "\n".join(f"- {item}" for item in COMMIT_TOOLING)
    return f"{header}\n\n{context.description}\n\nInitial implementation with:\n{bullets}"


_AUTHOR_RE = re.compile(r"^\s*(?P<name>[^<]*?)\s*(?:<(?P<email>[^>]+)>)?\s*$")


def parse_author(author: str | None) -> tuple[str | None, str | None]:
    """Split ``"Jane Doe <jane@example.com>"`` into name and email."""
    if not author:
        return None, None
    match = _AUTHOR_RE.match(author)
    if match is None:
        return author.strip() or None, None
    return match.group("name") or None, match.group("email")


# ---------------------------------------------------------------------------
# GitIntegrator
# ---------------------------------------------------------------------------


class GitIntegrator:
    """Initializes a repository in a generated package and commits it.

    Nothing here raises: every outcome is reported on the returned
    :class:`GitResult` so project creation can carry on regardless.
    """

    def __init__(self, config: GitConfig | None = None) -> None:
        self.config = config or GitConfig()

    async def is_available(self) -> bool:
        try:
            await _run_git("--version", timeout=self.config.timeout)
        except GitError:
            return False
        return True

    async def is_repository(self, path: str | Path) -> bool:
        """``True`` if *path* is inside a git work tree (including a parent's)."""
        try:
            await _run_git("rev-parse", "--git-dir", cwd=path, timeout=self.config.timeout)
        except GitError:
            return False
        return True

    async def status(self, path: str | Path) -> GitStatus:
        """Summarise the repository state of *path*."""
        if not await self.is_repository(path):
            return GitStatus()

        status = GitStatus(is_repo=True)
        try:
            await _run_git("rev-parse", "--verify", "HEAD", cwd=path, timeout=self.config.timeout)
            status.has_commits = True
        except GitError:
            status.has_commits = False

        try:
            porcelain, _ = await _run_git("status", "--porcelain", cwd=path, timeout=self.config.timeout)
            status.is_dirty = bool(porcelain)
        except GitError:
            pass

        try:
            branch, _ = await _run_git("branch", "--show-current", cwd=path, timeout=self.config.timeout)
            status.current_branch = branch or None
        except GitError:
            pass
        return status

    async def integrate(
        self,
        package_path: str | Path,
        context: TemplateContext,
        skip: bool = False,
        verbose: bool = False,
    ) -> GitResult:
        """Run the repository setup steps for *package_path*."""
        result = GitResult()
        if skip or not self.config.initialize_repo:
            return result

        path = Path(package_path)
        timeout = self.config.timeout

        if not await self.is_available():
            result.warnings.append("Git is not available; skipping repository initialization")
            return result

        if await self.is_repository(path):
            if verbose:
                console.print(f"[dim]{path} is already under version control[/dim]")
            return result

        try:
            await _run_git("init", cwd=path, timeout=timeout)
        except GitError as exc:
            result.errors.append(f"Failed to initialize git repository: {exc}")
            return result
        result.initialized = True
        if verbose:
            console.print(f"[cyan]Initialized git repository[/cyan] in {path}")

        await self._configure_identity(path, context, result)

        if self.config.add_gitignore:
            try:
                result.gitignore_added = await asyncio.to_thread(
                    _write_gitignore, path, context.package_manager
                )
            except OSError as exc:
                result.warnings.append(f"Failed to write .gitignore: {exc}")

        if self.config.create_initial_commit:
            try:
                await _run_git("add", ".", cwd=path, timeout=timeout)
                await _run_git(
                    "commit", "-m", build_commit_message(context), cwd=path, timeout=timeout
                )
                result.committed = True
            except GitError as exc:
                result.warnings.append(f"Failed to create initial commit: {exc}")

        if verbose:
            for warning in result.warnings:
                print_warning(warning)
        return result

    async def _configure_identity(
        self, path: Path, context: TemplateContext, result: GitResult
    ) -> None:
        name, email = self.config.user_name, self.config.user_email
        if self.config.use_context_author:
            author_name, author_email = parse_author(context.author)
            name = name or author_name
            email = email or author_email

        for key, value in (("user.name", name), ("user.email", email)):
            if not value:
                continue
            try:
                await _run_git("config", key, value, cwd=path, timeout=self.config.timeout)
            except GitError as exc:
                result.warnings.append(f"Failed to set {key}: {exc}")


def _write_gitignore(path: Path, package_manager: PackageManager | None) -> bool:
    target = path / ".gitignore"
    if target.exists():
        return False
    target.write_text(build_gitignore(package_manager), encoding="utf-8")
    return True
