"""Unit tests for repository setup (template_forge.integrations.git).

Tests cover:
- _run_git success, non-zero exit, missing executable
- .gitignore content and lockfile selection
- Commit message variants
- Author parsing
- GitIntegrator.integrate step ordering and failure tolerance
- GitIntegrator.status
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from template_forge.config import GitConfig
from template_forge.exceptions import TemplateForgeError
from template_forge.integrations.git import (
    GitError,
    GitIntegrator,
    _run_git,
    build_commit_message,
    build_gitignore,
    parse_author,
)
from template_forge.models import PackageManager, TemplateContext


def _subcommands(mock: AsyncMock) -> list[str]:
    return [c.args[1] for c in mock.call_args_list if len(c.args) > 1]


def _call_for(mock: AsyncMock, subcommand: str) -> tuple[Any, ...]:
    return next(c.args for c in mock.call_args_list if len(c.args) > 1 and c.args[1] == subcommand)


# ---------------------------------------------------------------------------
# _run_git
# ---------------------------------------------------------------------------

class TestRunGit:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success_returns_stripped_output(self, mock_subprocess):
        proc = mock_subprocess(stdout="git version 2.45.0\n")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            stdout, stderr = await _run_git("--version")
        assert stdout == "git version 2.45.0"
        assert stderr == ""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_zero_exit_raises(self, mock_subprocess):
        proc = mock_subprocess(stderr="fatal: not a git repository", returncode=128)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(GitError, match="exit 128") as exc_info:
                await _run_git("rev-parse", "--git-dir")
        assert exc_info.value.command == "git rev-parse --git-dir"
        assert "not a git repository" in exc_info.value.stderr

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_executable_raises(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("git"))):
            with pytest.raises(GitError, match="Could not run") as exc_info:
                await _run_git("--version")
        assert isinstance(exc_info.value, TemplateForgeError)


# ---------------------------------------------------------------------------
# Generated content
# ---------------------------------------------------------------------------

class TestGitignore:
    @pytest.mark.unit
    def test_standard_sections(self):
        content = build_gitignore()
        for line in ("node_modules/", "dist/", "coverage/", "*.log", ".vscode/", ".DS_Store", ".env"):
            assert line in content.splitlines()

    @pytest.mark.unit
    def test_npm_lockfile_by_default(self):
        lines = build_gitignore().splitlines()
        assert "package-lock.json" in lines
        assert "pnpm-lock.yaml" not in lines

    @pytest.mark.unit
    @pytest.mark.parametrize("manager,lockfile", [
        (PackageManager.NPM, "package-lock.json"),
        (PackageManager.YARN, "yarn.lock"),
        (PackageManager.PNPM, "pnpm-lock.yaml"),
        (PackageManager.BUN, "bun.lockb"),
    ])
    def test_exactly_one_lockfile(self, manager, lockfile):
        lines = build_gitignore(manager).splitlines()
        lockfiles = {"package-lock.json", "yarn.lock", "pnpm-lock.yaml", "bun.lockb"}
        assert [line for line in lines if line in lockfiles] == [lockfile]

    @pytest.mark.unit
    def test_accepts_plain_string(self):
        assert "yarn.lock" in build_gitignore("yarn").splitlines()


class TestCommitMessage:
    @pytest.mark.unit
    def test_with_description(self, context):
        message = build_commit_message(context)
        lines = message.splitlines()
        assert lines[0] == "feat: add widget package"
        assert lines[2] == "A widget package"
        assert "Initial implementation with:" in lines
        assert "- TypeScript support" in lines

    @pytest.mark.unit
    def test_without_description(self):
        message = build_commit_message(TemplateContext(project_name="bare"))
        assert message == (
            "feat: add bare package\n\n"
            "Initial implementation with TypeScript, testing, and build configuration."
        )


class TestParseAuthor:
    @pytest.mark.unit
    @pytest.mark.parametrize("author,expected", [
        ("Jane Doe <jane@example.com>", ("Jane Doe", "jane@example.com")),
        ("Jane Doe", ("Jane Doe", None)),
        ("<jane@example.com>", (None, "jane@example.com")),
        ("", (None, None)),
        (None, (None, None)),
    ])
    def test_parse(self, author, expected):
        assert parse_author(author) == expected


# ---------------------------------------------------------------------------
# GitIntegrator.integrate
# ---------------------------------------------------------------------------

class TestIntegrate:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_full_setup(self, tmp_path, context, git_script):
        exec_mock = git_script({"rev-parse": 128})
        with patch("asyncio.create_subprocess_exec", exec_mock):
            result = await GitIntegrator().integrate(tmp_path, context)

        assert result.initialized
        assert result.gitignore_added
        assert result.committed
        assert result.warnings == []
        assert result.errors == []
        assert _subcommands(exec_mock) == [
            "--version", "rev-parse", "init", "config", "config", "add", "commit",
        ]
        assert "pnpm-lock.yaml" in (tmp_path / ".gitignore").read_text(encoding="utf-8").splitlines()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_identity_from_context_author(self, tmp_path, context, git_script):
        exec_mock = git_script({"rev-parse": 128})
        with patch("asyncio.create_subprocess_exec", exec_mock):
            await GitIntegrator().integrate(tmp_path, context)

        configs = [c.args[2:] for c in exec_mock.call_args_list if c.args[1] == "config"]
        assert configs == [("user.name", "Jane Doe"), ("user.email", "jane@example.com")]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_configured_identity_wins(self, tmp_path, context, git_script):
        exec_mock = git_script({"rev-parse": 128})
        integrator = GitIntegrator(GitConfig(user_name="Bot", user_email="bot@example.com"))
        with patch("asyncio.create_subprocess_exec", exec_mock):
            await integrator.integrate(tmp_path, context)

        configs = [c.args[2:] for c in exec_mock.call_args_list if c.args[1] == "config"]
        assert configs == [("user.name", "Bot"), ("user.email", "bot@example.com")]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_commit_message_passed(self, tmp_path, context, git_script):
        exec_mock = git_script({"rev-parse": 128})
        with patch("asyncio.create_subprocess_exec", exec_mock):
            await GitIntegrator().integrate(tmp_path, context)
        commit = _call_for(exec_mock, "commit")
        assert commit[2] == "-m"
        assert commit[3] == build_commit_message(context)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_git_missing_is_a_warning(self, tmp_path, context, git_script):
        exec_mock = git_script(missing=True)
        with patch("asyncio.create_subprocess_exec", exec_mock):
            result = await GitIntegrator().integrate(tmp_path, context)
        assert not result.initialized
        assert result.errors == []
        assert any("not available" in w for w in result.warnings)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_existing_repository_left_alone(self, tmp_path, context, git_script):
        exec_mock = git_script()
        with patch("asyncio.create_subprocess_exec", exec_mock):
            result = await GitIntegrator().integrate(tmp_path, context)

        assert not result.initialized
        assert not result.committed
        assert result.warnings == []
        assert _subcommands(exec_mock) == ["--version", "rev-parse"]
        assert not (tmp_path / ".gitignore").exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_init_failure_is_an_error_and_stops(self, tmp_path, context, git_script):
        exec_mock = git_script({"rev-parse": 128, "init": 1})
        with patch("asyncio.create_subprocess_exec", exec_mock):
            result = await GitIntegrator().integrate(tmp_path, context)

        assert not result.initialized
        assert len(result.errors) == 1
        assert "Failed to initialize git repository" in result.errors[0]
        assert "add" not in _subcommands(exec_mock)
        assert "commit" not in _subcommands(exec_mock)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_commit_failure_is_a_warning(self, tmp_path, context, git_script):
        exec_mock = git_script({"rev-parse": 128, "commit": 1})
        with patch("asyncio.create_subprocess_exec", exec_mock):
            result = await GitIntegrator().integrate(tmp_path, context)

        assert result.initialized
        assert result.gitignore_added
        assert not result.committed
        assert result.errors == []
        assert any("Failed to create initial commit" in w for w in result.warnings)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_identity_failure_is_a_warning(self, tmp_path, context, git_script):
        exec_mock = git_script({"rev-parse": 128, "config": 1})
        with patch("asyncio.create_subprocess_exec", exec_mock):
            result = await GitIntegrator().integrate(tmp_path, context)
        assert result.committed
        assert len(result.warnings) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_existing_gitignore_kept(self, tmp_path, context, git_script):
        (tmp_path / ".gitignore").write_text("custom\n", encoding="utf-8")
        exec_mock = git_script({"rev-parse": 128})
        with patch("asyncio.create_subprocess_exec", exec_mock):
            result = await GitIntegrator().integrate(tmp_path, context)

        assert not result.gitignore_added
        assert result.committed
        assert (tmp_path / ".gitignore").read_text(encoding="utf-8") == "custom\n"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_skip_runs_nothing(self, tmp_path, context, git_script):
        exec_mock = git_script()
        with patch("asyncio.create_subprocess_exec", exec_mock):
            result = await GitIntegrator().integrate(tmp_path, context, skip=True)
        assert exec_mock.call_count == 0
        assert result.warnings == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_commit_disabled(self, tmp_path, context, git_script):
        exec_mock = git_script({"rev-parse": 128})
        with patch("asyncio.create_subprocess_exec", exec_mock):
            result = await GitIntegrator(GitConfig(create_initial_commit=False)).integrate(tmp_path, context)
        assert result.initialized
        assert not result.committed
        assert "commit" not in _subcommands(exec_mock)


# ---------------------------------------------------------------------------
# GitIntegrator.status
# ---------------------------------------------------------------------------

class TestStatus:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_not_a_repository(self, tmp_path, git_script):
        with patch("asyncio.create_subprocess_exec", git_script({"rev-parse": 128})):
            status = await GitIntegrator().status(tmp_path)
        assert not status.is_repo
        assert not status.has_commits

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dirty_repository_on_branch(self, tmp_path, mock_subprocess):
        outputs = {
            "rev-parse": "abc123",
            "status": " M README.md",
            "branch": "main",
        }

        async def _exec(*cmd: Any, **kwargs: Any):
            return mock_subprocess(stdout=outputs.get(cmd[1], ""))

        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=_exec)):
            status = await GitIntegrator().status(tmp_path)

        assert status.is_repo
        assert status.has_commits
        assert status.is_dirty
        assert status.current_branch == "main"
