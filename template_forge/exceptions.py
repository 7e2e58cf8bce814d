"""Exceptions raised inside Template Forge components.

Component boundaries (the fetcher, the pipeline and both integrators) turn
these into result models, so callers normally only see them in tests or when
calling lower-level helpers directly.
"""

from __future__ import annotations


class TemplateForgeError(Exception):
    """Base class for all Template Forge failures."""


class FetchError(TemplateForgeError):
    """Raised when a template cannot be retrieved."""

    def __init__(self, message: str, location: str = "") -> None:
        self.location = location
        super().__init__(message)


class RenderError(TemplateForgeError):
    """Raised when rendered output cannot be written."""

    def __init__(self, message: str, path: str = "") -> None:
        self.path = path
        super().__init__(message)
