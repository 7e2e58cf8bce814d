"""Template resolution, retrieval, validation and rendering.

Quick usage::

    from template_forge.templates import SourceResolver, TemplateFetcher

    source = SourceResolver().resolve("my-org/my-template#v2")
    result = await TemplateFetcher().fetch(source, "/tmp/work")
"""

from template_forge.templates.cache import CacheStore
from template_forge.templates.downloader import ArchiveDownloader
from template_forge.templates.fetcher import TemplateFetcher, build_hosted_url, check_url
from template_forge.templates.metadata import load_metadata, read_metadata
from template_forge.templates.renderer import TemplateRenderer, check_context
from template_forge.templates.resolver import BUILTIN_TEMPLATES, SourceResolver, describe_source
from template_forge.templates.validator import TemplateValidator

__all__ = [
    "ArchiveDownloader",
    "BUILTIN_TEMPLATES",
    "CacheStore",
    "SourceResolver",
    "TemplateFetcher",
    "TemplateRenderer",
    "TemplateValidator",
    "build_hosted_url",
    "check_context",
    "check_url",
    "describe_source",
    "load_metadata",
    "read_metadata",
]
