"""Post-materialization integrations: version control and package workspaces."""

from template_forge.integrations.git import GitError, GitIntegrator
from template_forge.integrations.workspace import WorkspaceError, WorkspaceIntegrator

__all__ = [
    "GitError",
    "GitIntegrator",
    "WorkspaceError",
    "WorkspaceIntegrator",
]
