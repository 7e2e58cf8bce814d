"""Shared pytest fixtures for the Template Forge test suite.

Provides reusable fixtures for:
- Sample template trees on disk
- Render contexts
- Configurations pointing caches at temporary directories
- Mock subprocess helpers
- A counting fake downloader for remote sources
- A fake workspace (pnpm monorepo) layout
"""

from __future__ import annotations

import json
import textwrap
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from template_forge.config import CacheConfig, Config
from template_forge.models import PackageManager, TemplateContext, TemplateSource


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

def _write_tree(root: Path, files: dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


SAMPLE_TEMPLATE_FILES: dict[str, str] = {
    "template.json": json.dumps({
        "name": "sample",
        "description": "Sample template for tests",
        "version": "2.1.0",
        "author": "Template Author",
        "tags": ["test"],
        "nodeVersion": ">=20",
        "variables": [
            {"name": "license", "description": "License", "type": "string", "default": "MIT"},
        ],
    }),
    "package.json": textwrap.dedent("""\
        {
          "name": "<%= projectName %>",
          "description": "<%= description %>",
          "license": "<%= license %>"
        }
        """),
    "README.md": "# <%= projectName %>\n\n<%= description %>\n",
    ".gitignore": "node_modules/\n",
    "src/index.ts.template": "export const name = '<%= projectName %>'\n",
    "node_modules/leftover/index.js": "module.exports = {}\n",
    "debug.log": "noise\n",
}


@pytest.fixture
def sample_template(tmp_path: Path) -> Path:
    """A small but complete template directory with a descriptor."""
    return _write_tree(tmp_path / "sample-template", SAMPLE_TEMPLATE_FILES)


@pytest.fixture
def make_template(tmp_path: Path):
    """Factory fixture: build a template tree from a ``{relpath: content}`` dict."""
    counter = {"n": 0}

    def factory(files: dict[str, str], name: str | None = None) -> Path:
        counter["n"] += 1
        return _write_tree(tmp_path / (name or f"template-{counter['n']}"), files)

    return factory


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Target directory for rendered projects (not created in advance)."""
    return tmp_path / "output" / "widget"


# ---------------------------------------------------------------------------
# Contexts & Config
# ---------------------------------------------------------------------------

@pytest.fixture
def context() -> TemplateContext:
    return TemplateContext(
        project_name="widget",
        description="A widget package",
        author="Jane Doe <jane@example.com>",
        version="0.1.0",
        package_manager=PackageManager.PNPM,
        variables={"license": "Apache-2.0"},
    )


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Default configuration with the cache redirected into ``tmp_path``."""
    return Config(cache=CacheConfig(dir=tmp_path / "cache", ttl_seconds=3600))


@pytest.fixture
def hosted_source() -> TemplateSource:
    return TemplateSource(type="hosted-repo", location="my-org/my-template", ref="v2")


# ---------------------------------------------------------------------------
# Fake downloader
# ---------------------------------------------------------------------------

class CountingDownloader:
    """Stands in for ``ArchiveDownloader``: writes *files* and counts calls."""

    def __init__(self, files: dict[str, str] | None = None, error: Exception | None = None):
        self.files = files or {
            "README.md": "# <%= projectName %>\n",
            "package.json": '{"name": "<%= projectName %>"}\n',
            ".gitignore": "node_modules/\n",
        }
        self.error = error
        self.calls: list[TemplateSource] = []

    async def download(self, source: TemplateSource, dest: Path) -> Path:
        self.calls.append(source)
        if self.error is not None:
            raise self.error
        return _write_tree(Path(dest), self.files)


@pytest.fixture
def counting_downloader() -> CountingDownloader:
    return CountingDownloader()


# ---------------------------------------------------------------------------
# Fake workspace
# ---------------------------------------------------------------------------

@pytest.fixture
def pnpm_workspace(tmp_path: Path) -> Path:
    """A pnpm monorepo root with ``packages/*`` and a scoped root manifest."""
    root = tmp_path / "monorepo"
    _write_tree(root, {
        "pnpm-workspace.yaml": textwrap.dedent("""\
            packages:
              - "apps/web"
              - "packages/*"
            """),
        "package.json": json.dumps({
            "name": "@acme/monorepo",
            "private": True,
            "devDependencies": {"typescript": "^5.6.0"},
        }, indent=2) + "\n",
    })
    return root


# ---------------------------------------------------------------------------
# Mock subprocess
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_subprocess():
    """Factory fixture for creating mock subprocess objects.

    Usage::

        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="ok", returncode=0)
            with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
                ...
    """

    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory


@pytest.fixture
def git_script(mock_subprocess):
    """Factory fixture that scripts git responses by subcommand.

    ``git_script({"rev-parse": 128})`` makes every ``git rev-parse ...`` exit
    with 128 and everything else succeed.  The returned mock records calls.
    """

    def factory(failures: dict[str, int] | None = None, missing: bool = False) -> AsyncMock:
        failures = failures or {}

        async def _exec(*cmd: Any, **kwargs: Any) -> AsyncMock:
            if missing:
                raise FileNotFoundError("git")
            subcommand = cmd[1] if len(cmd) > 1 else ""
            code = failures.get(subcommand, 0)
            return mock_subprocess(stderr="fatal: scripted failure" if code else "", returncode=code)

        return AsyncMock(side_effect=_exec)

    return factory


@pytest.fixture
def downloader_factory():
    """The ``CountingDownloader`` class, for tests that need custom files or errors."""
    return CountingDownloader
