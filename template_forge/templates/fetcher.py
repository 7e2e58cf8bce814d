"""Retrieve templates into local directories.

One strategy per :class:`SourceType`, selected from a fixed table:

* ``local``       -- filtered copy of a directory on disk
* ``hosted-repo`` -- cache lookup, else archive download, then copy
* ``url``         -- URL check, then the same cache-then-copy flow
* ``builtin``     -- copy from the bundled ``builtin_templates`` directory

Every failure comes back as ``FetchResult(success=False)`` annotated with the
offending location; :meth:`TemplateFetcher.fetch` never raises.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

import httpx

from template_forge.config import Config, FetchConfig
from template_forge.exceptions import FetchError
from template_forge.models import FetchResult, SourceType, TemplateSource
from template_forge.templates.cache import META_FILE, CacheStore
from template_forge.templates.downloader import ArchiveDownloader
from template_forge.templates.metadata import load_metadata
from template_forge.utils import console, copy_tree

BUILTIN_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "builtin_templates"


class Downloader(Protocol):
    async def download(self, source: TemplateSource, dest: Path) -> Path: ...


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


def build_hosted_url(source: TemplateSource, host: str = "github.com") -> str:
    """``https://<host>/<location>[#<ref>][/<subdir>]``"""
    url = f"https://{host}/{source.location}"
    if source.ref:
        url += f"#{source.ref}"
    if source.subdir:
        url += f"/{source.subdir}"
    return url


def check_url(url: str, config: FetchConfig | None = None) -> list[str]:
    """Validate a template URL.

    Returns:
        Heuristic warnings (unknown archive type on an unknown host).

    Raises:
        FetchError: If the scheme is not allowed or the URL has no host.
    """
    config = config or FetchConfig()
    parsed = urlparse(url)
    if parsed.scheme not in config.allowed_schemes:
        raise FetchError(
            f"Unsupported protocol '{parsed.scheme or '(none)'}'; "
            f"allowed: {', '.join(config.allowed_schemes)}",
            location=url,
        )
    if not parsed.netloc:
        raise FetchError(f"Invalid URL: {url}", location=url)

    host = (parsed.hostname or "").lower()
    path = parsed.path.lower()
    if host not in config.known_hosts and not any(
        path.endswith(ext) for ext in config.archive_extensions
    ):
        return [
            f"URL does not look like a template archive ({', '.join(config.archive_extensions)}): {url}"
        ]
    return []


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class TemplateFetcher:
    """Produces a local directory for any :class:`TemplateSource`.

    Args:
        config: Global configuration (cache, fetch and ignore settings).
        cache: Cache store for remote sources; built from ``config`` if omitted.
        downloader: Object with an async ``download(source, dest)``; defaults
            to :class:`ArchiveDownloader`.
        builtin_dir: Directory holding the bundled templates.
    """

    def __init__(
        self,
        config: Config | None = None,
        cache: CacheStore | None = None,
        downloader: Downloader | None = None,
        builtin_dir: str | Path | None = None,
    ) -> None:
        self.config = config or Config()
        self.cache = cache or CacheStore(self.config.cache)
        self.downloader = downloader or ArchiveDownloader(self.config.fetch)
        self.builtin_dir = Path(builtin_dir) if builtin_dir else BUILTIN_TEMPLATE_DIR
        self._strategies: dict[
            SourceType, Callable[[TemplateSource, Path, list[str]], Awaitable[tuple[Path, bool]]]
        ] = {
            SourceType.LOCAL: self._fetch_local,
            SourceType.HOSTED_REPO: self._fetch_hosted,
            SourceType.URL: self._fetch_url,
            SourceType.BUILTIN: self._fetch_builtin,
        }

    async def fetch(self, source: TemplateSource, target_dir: str | Path) -> FetchResult:
        """Retrieve *source* into *target_dir* and load its metadata."""
        strategy = self._strategies.get(source.type)
        if strategy is None:
            return FetchResult(
                success=False,
                error=f"Unsupported template source type: {source.type}",
                location=source.location,
            )

        warnings: list[str] = []
        target = Path(target_dir)
        try:
            metadata_dir, cache_hit = await strategy(source, target, warnings)
        except FetchError as exc:
            return FetchResult(
                success=False,
                error=str(exc),
                warnings=warnings,
                location=exc.location or source.location,
            )
        except OSError as exc:
            return FetchResult(
                success=False,
                error=f"Failed to fetch template from {source.location}: {exc}",
                warnings=warnings,
                location=source.location,
            )

        metadata, metadata_warnings = await load_metadata(
            metadata_dir,
            self.config.pipeline.descriptor_name,
            fallback_name=_default_name(source),
        )
        warnings.extend(metadata_warnings)

        if self.config.pipeline.verbose:
            origin = "cache" if cache_hit else source.type.value
            console.print(f"[cyan]Fetched[/cyan] [bold]{metadata.name}[/bold] from {origin}")

        return FetchResult(
            success=True,
            path=target,
            metadata=metadata,
            cache_hit=cache_hit,
            warnings=warnings,
            location=source.location,
        )

    # ------------------------------------------------------------------
    # Strategies: each returns (directory holding the descriptor, cache_hit)
    # ------------------------------------------------------------------

    async def _fetch_local(
        self, source: TemplateSource, target: Path, warnings: list[str]
    ) -> tuple[Path, bool]:
        path = Path(source.location).expanduser()
        if not path.is_absolute():
            path = Path.cwd() / path
        if source.subdir:
            path = path / source.subdir

        if not path.exists():
            raise FetchError(f"Local template path does not exist: {source.location}", source.location)
        if not path.is_dir():
            raise FetchError(f"Local template path is not a directory: {source.location}", source.location)

        excluded = [*self.config.pipeline.ignore_patterns, self.config.pipeline.descriptor_name]
        await asyncio.to_thread(copy_tree, path, target, excluded)
        return path, False

    async def _fetch_hosted(
        self, source: TemplateSource, target: Path, warnings: list[str]
    ) -> tuple[Path, bool]:
        if self.config.pipeline.verbose:
            console.print(
                f"[dim]Hosted template: {build_hosted_url(source, self.config.fetch.hosted_host)}[/dim]"
            )
        return await self._fetch_remote(source, target, warnings)

    async def _fetch_url(
        self, source: TemplateSource, target: Path, warnings: list[str]
    ) -> tuple[Path, bool]:
        warnings.extend(check_url(source.location, self.config.fetch))
        return await self._fetch_remote(source, target, warnings)

    async def _fetch_builtin(
        self, source: TemplateSource, target: Path, warnings: list[str]
    ) -> tuple[Path, bool]:
        if source.fallback_from is not None:
            warnings.append(
                f"Unknown template '{source.fallback_from}', using built-in '{source.location}' instead"
            )
        path = self.builtin_dir / source.location
        if not path.is_dir():
            raise FetchError(f"Built-in template not found: {source.location}", source.location)
        await asyncio.to_thread(copy_tree, path, target)
        return target, False

    async def _fetch_remote(
        self, source: TemplateSource, target: Path, warnings: list[str]
    ) -> tuple[Path, bool]:
        entry = await self.cache.get(source)
        if entry is not None:
            await asyncio.to_thread(copy_tree, entry.path, target, [META_FILE])
            return target, True

        scratch = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="template-forge-"))
        try:
            try:
                tree = await self.downloader.download(source, scratch / "tree")
            except httpx.HTTPError as exc:
                raise FetchError(f"Could not download {source.location}: {exc}", source.location) from exc
            try:
                await self.cache.put(source, tree)
            except OSError as exc:
                warnings.append(f"Could not write template cache: {exc}")
            await asyncio.to_thread(copy_tree, tree, target)
        finally:
            await asyncio.to_thread(shutil.rmtree, scratch, True)
        return target, False


def _default_name(source: TemplateSource) -> str:
    if source.type is SourceType.URL:
        return "Unknown"
    tail = source.subdir or source.location
    return Path(tail.rstrip("/")).name or "Unknown"
