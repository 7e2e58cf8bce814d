"""Template Forge configuration.

Centralised, typed configuration for template materialization. All settings
use Pydantic v2 models so they can be validated at construction time and
serialised to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

# Entries excluded from every template walk: the filtered local copy, the
# structure validator and the renderer all read this one list.
DEFAULT_IGNORE_PATTERNS: list[str] = [
    "node_modules",
    ".git",
    "dist",
    "build",
    "coverage",
    "*.log",
    ".cache-meta.json",
    ".DS_Store",
    "Thumbs.db",
    ".env",
    ".env.local",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "bun.lockb",
]

DEFAULT_ARCHIVE_EXTENSIONS: list[str] = [".zip", ".tar.gz", ".tgz", ".tar"]

DEFAULT_KNOWN_HOSTS: list[str] = [
    "github.com",
    "raw.githubusercontent.com",
    "codeload.github.com",
    "gitlab.com",
    "bitbucket.org",
]


def _default_cache_dir() -> Path:
    xdg = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "template-forge"


class CacheConfig(BaseModel):
    """On-disk cache of fetched remote templates."""

    enabled: bool = Field(default=True)
    dir: Path = Field(default_factory=_default_cache_dir)
    ttl_seconds: int = Field(default=3600, ge=0, description="Entry lifetime in seconds")


class FetchConfig(BaseModel):
    """Remote retrieval settings."""

    hosted_host: str = Field(default="github.com", description="Host for owner/repo shorthands")
    download_timeout: int = Field(default=60, ge=1, description="Per-download timeout in seconds")
    allowed_schemes: list[str] = Field(default=["http", "https"])
    archive_extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_ARCHIVE_EXTENSIONS))
    known_hosts: list[str] = Field(default_factory=lambda: list(DEFAULT_KNOWN_HOSTS))


class PipelineConfig(BaseModel):
    """Tuning knobs for the resolve/fetch/validate/render pipeline."""

    dry_run: bool = Field(default=False, description="Run every stage except render")
    ignore_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    template_extensions: list[str] = Field(default=[".eta", ".template", ".j2"])
    descriptor_name: str = Field(default="template.json")
    verbose: bool = Field(default=False)


class GitConfig(BaseModel):
    """Post-materialization version control settings."""

    initialize_repo: bool = Field(default=True)
    add_gitignore: bool = Field(default=True)
    create_initial_commit: bool = Field(default=True)
    user_name: str | None = Field(default=None)
    user_email: str | None = Field(default=None)
    use_context_author: bool = Field(
        default=True, description="Derive the commit identity from 'Name <email>' in the context author"
    )
    timeout: int = Field(default=60, ge=1, description="Per-command timeout in seconds")


class WorkspaceConfig(BaseModel):
    """Multi-package workspace registration settings."""

    workspace_root: Path | None = Field(default=None, description="Skip detection and use this root")
    auto_install: bool = Field(default=True)
    package_manager: str | None = Field(
        default=None, description="Installer to run; defaults to the context's package manager"
    )
    dependency_scope: str | None = Field(
        default=None, description="Scope prefix (e.g. '@acme/') that marks workspace packages"
    )
    install_timeout: int = Field(default=600, ge=10, description="Installer timeout in seconds")


class Config(BaseModel):
    """Global Template Forge configuration.

    Instances are typically created once by the composition root and then
    passed through to the resolver, fetcher, validator, renderer and the
    integrators.
    """

    cache: CacheConfig = Field(default_factory=CacheConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file and return its path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            TEMPLATE_FORGE_CACHE_DIR, TEMPLATE_FORGE_CACHE_TTL,
            TEMPLATE_FORGE_NO_CACHE, TEMPLATE_FORGE_HOST,
            TEMPLATE_FORGE_DOWNLOAD_TIMEOUT, TEMPLATE_FORGE_DRY_RUN,
            TEMPLATE_FORGE_VERBOSE, TEMPLATE_FORGE_GIT_USER_NAME,
            TEMPLATE_FORGE_GIT_USER_EMAIL, TEMPLATE_FORGE_WORKSPACE_ROOT,
            TEMPLATE_FORGE_SKIP_INSTALL, TEMPLATE_FORGE_SCOPE.
        """
        cache_kwargs: dict[str, Any] = {}
        if os.environ.get("TEMPLATE_FORGE_CACHE_DIR"):
            cache_kwargs["dir"] = Path(os.environ["TEMPLATE_FORGE_CACHE_DIR"])
        if os.environ.get("TEMPLATE_FORGE_CACHE_TTL"):
            cache_kwargs["ttl_seconds"] = int(os.environ["TEMPLATE_FORGE_CACHE_TTL"])
        if _env_flag("TEMPLATE_FORGE_NO_CACHE"):
            cache_kwargs["enabled"] = False

        fetch_kwargs: dict[str, Any] = {}
        if os.environ.get("TEMPLATE_FORGE_HOST"):
            fetch_kwargs["hosted_host"] = os.environ["TEMPLATE_FORGE_HOST"]
        if os.environ.get("TEMPLATE_FORGE_DOWNLOAD_TIMEOUT"):
            fetch_kwargs["download_timeout"] = int(os.environ["TEMPLATE_FORGE_DOWNLOAD_TIMEOUT"])

        git_kwargs: dict[str, Any] = {}
        if os.environ.get("TEMPLATE_FORGE_GIT_USER_NAME"):
            git_kwargs["user_name"] = os.environ["TEMPLATE_FORGE_GIT_USER_NAME"]
        if os.environ.get("TEMPLATE_FORGE_GIT_USER_EMAIL"):
            git_kwargs["user_email"] = os.environ["TEMPLATE_FORGE_GIT_USER_EMAIL"]

        workspace_kwargs: dict[str, Any] = {}
        if os.environ.get("TEMPLATE_FORGE_WORKSPACE_ROOT"):
            workspace_kwargs["workspace_root"] = Path(os.environ["TEMPLATE_FORGE_WORKSPACE_ROOT"])
        if _env_flag("TEMPLATE_FORGE_SKIP_INSTALL"):
            workspace_kwargs["auto_install"] = False
        if os.environ.get("TEMPLATE_FORGE_SCOPE"):
            workspace_kwargs["dependency_scope"] = os.environ["TEMPLATE_FORGE_SCOPE"]

        return cls(
            cache=CacheConfig(**cache_kwargs),
            fetch=FetchConfig(**fetch_kwargs),
            pipeline=PipelineConfig(
                dry_run=_env_flag("TEMPLATE_FORGE_DRY_RUN"),
                verbose=_env_flag("TEMPLATE_FORGE_VERBOSE"),
            ),
            git=GitConfig(**git_kwargs),
            workspace=WorkspaceConfig(**workspace_kwargs),
        )


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}
