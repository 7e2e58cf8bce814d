"""Pydantic v2 models shared across Template Forge.

Defines template sources, descriptor metadata, the caller-supplied render
context, and the result records returned by the pipeline and the
integrators.  Result models never raise; they carry ``warnings`` and
``errors`` lists for the caller to display.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class SourceType(str, Enum):
    """Where a template comes from."""
    LOCAL = "local"
    URL = "url"
    HOSTED_REPO = "hosted-repo"
    BUILTIN = "builtin"


class PackageManager(str, Enum):
    """Interchangeable dependency installers."""
    NPM = "npm"
    YARN = "yarn"
    PNPM = "pnpm"
    BUN = "bun"


class StageName(str, Enum):
    """Ordered pipeline stages."""
    RESOLVE = "resolve"
    FETCH = "fetch"
    VALIDATE = "validate"
    RENDER = "render"


class FileAction(str, Enum):
    """What the renderer did to a target file."""
    CREATE = "create"
    OVERWRITE = "overwrite"


class VariableType(str, Enum):
    """Declared type of a descriptor variable."""
    STRING = "string"
    BOOLEAN = "boolean"
    NUMBER = "number"
    SELECT = "select"


# ---------------------------------------------------------------------------
# Sources & Metadata
# ---------------------------------------------------------------------------

class TemplateSource(BaseModel):
    """A classified template identifier. Immutable once resolved."""
    model_config = ConfigDict(frozen=True)

    type: SourceType = Field(..., description="Retrieval strategy")
    location: str = Field(..., description="Path, URL, owner/repo or builtin name")
    ref: Optional[str] = Field(default=None, description="Branch, tag or commit")
    subdir: Optional[str] = Field(default=None, description="Subdirectory inside the source")
    fallback_from: Optional[str] = Field(
        default=None, description="Unknown builtin name replaced by the default entry"
    )


class TemplateVariable(BaseModel):
    """A variable declared in a template descriptor."""
    name: str
    description: str = ""
    type: VariableType = VariableType.STRING
    default: Any = None
    required: bool = False
    options: Optional[list[str]] = None
    pattern: Optional[str] = None


class TemplateMetadata(BaseModel):
    """Descriptor data loaded from ``template.json``."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(default="Unknown")
    description: str = Field(default="Template description not available")
    version: str = Field(default="1.0.0")
    author: Optional[str] = None
    tags: Optional[list[str]] = None
    node_version: Optional[str] = Field(default=None, alias="nodeVersion")
    variables: list[TemplateVariable] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)


class TemplateContext(BaseModel):
    """Caller-supplied values for rendering. Never mutated by the pipeline."""
    model_config = ConfigDict(frozen=True)

    project_name: str = Field(..., min_length=1)
    description: Optional[str] = None
    author: Optional[str] = None
    version: Optional[str] = None
    package_manager: Optional[PackageManager] = None
    variables: dict[str, str] = Field(default_factory=dict)

    def render_variables(self) -> dict[str, Any]:
        """Build the placeholder namespace exposed to templates.

        Free-form variables are applied last so a caller can override any of
        the built-in names.
        """
        namespace: dict[str, Any] = {"projectName": self.project_name}
        if self.description is not None:
            namespace["description"] = self.description
        if self.author is not None:
            namespace["author"] = self.author
        if self.version is not None:
            namespace["version"] = self.version
        if self.package_manager is not None:
            namespace["packageManager"] = self.package_manager.value
        namespace.update(self.variables)
        return namespace


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class CacheEntry(BaseModel):
    """A cached template tree on disk."""
    key: str
    path: Path
    timestamp: float = Field(..., description="Write time, seconds since the epoch")
    ttl_seconds: int

    def is_valid(self, now: float) -> bool:
        return now - self.timestamp < self.ttl_seconds


class CacheStats(BaseModel):
    """Snapshot of the cache directory plus this process's hit counters."""
    entries: int = 0
    expired: int = 0
    size_bytes: int = 0
    hits: int = 0
    misses: int = 0

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


# ---------------------------------------------------------------------------
# Stage results
# ---------------------------------------------------------------------------

class FetchResult(BaseModel):
    """Outcome of retrieving a template into a local directory."""
    success: bool = True
    path: Optional[Path] = None
    metadata: Optional[TemplateMetadata] = None
    cache_hit: bool = False
    warnings: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    location: str = ""


class ValidationReport(BaseModel):
    """Read-only structural checks on a fetched template."""
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class FileOperation(BaseModel):
    """One write performed by the renderer."""
    path: str = Field(..., description="Target path relative to the output directory")
    action: FileAction = FileAction.CREATE
    source: str = Field(default="", description="Template path it was rendered from")


class ResolvedTemplate(BaseModel):
    """A fetched and validated template ready to render."""
    metadata: TemplateMetadata
    source: TemplateSource
    path: Path
    context: TemplateContext


class PipelineStats(BaseModel):
    """Timing and volume figures for one pipeline run."""
    total_time_ms: float = 0.0
    stage_timings: dict[str, float] = Field(
        default_factory=lambda: {stage.value: 0.0 for stage in StageName}
    )
    files_processed: int = 0
    cache_hit: bool = False


class StageFailure(BaseModel):
    """A stage error tagged with where and when it happened."""
    stage: StageName
    message: str
    elapsed_ms: float = 0.0
    location: Optional[str] = None

    def describe(self) -> str:
        """e.g. ``"failed at render after 340ms: disk full"``."""
        return f"failed at {self.stage.value} after {int(round(self.elapsed_ms))}ms: {self.message}"


class PipelineResult(BaseModel):
    """Everything the pipeline produced, success or not."""
    success: bool = True
    template: Optional[ResolvedTemplate] = None
    operations: list[FileOperation] = Field(default_factory=list)
    stats: PipelineStats = Field(default_factory=PipelineStats)
    warnings: list[str] = Field(default_factory=list)
    error: Optional[StageFailure] = None


# ---------------------------------------------------------------------------
# Integration results
# ---------------------------------------------------------------------------

class GitResult(BaseModel):
    """Flags for each version-control step that was performed."""
    initialized: bool = False
    committed: bool = False
    gitignore_added: bool = False
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class GitStatus(BaseModel):
    """Repository state of a directory."""
    is_repo: bool = False
    has_commits: bool = False
    is_dirty: bool = False
    current_branch: Optional[str] = None


class WorkspaceResult(BaseModel):
    """Flags for each workspace registration step that was performed."""
    dependencies_installed: bool = False
    manifest_updated: bool = False
    root_manifest_updated: bool = False
    workspace_root: Optional[Path] = None
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
