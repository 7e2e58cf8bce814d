"""Download and unpack remote template archives.

Hosted repositories are fetched as tarballs from the host's archive
endpoint; plain URLs are downloaded as-is.  Either way the archive is
unpacked, a single wrapping top-level directory is stripped, and the
optional ``subdir`` is selected before the tree is copied to its
destination.
"""

from __future__ import annotations

import asyncio
import shutil
import tarfile
import tempfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath

import httpx

from template_forge.config import FetchConfig
from template_forge.exceptions import FetchError
from template_forge.models import SourceType, TemplateSource
from template_forge.utils import copy_tree


class ArchiveDownloader:
    """Fetches remote template sources into local directories."""

    def __init__(self, config: FetchConfig | None = None) -> None:
        self.config = config or FetchConfig()

    def _client(self) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` that follows redirects."""
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.download_timeout, connect=10.0),
            follow_redirects=True,
        )

    def archive_url(self, source: TemplateSource) -> str:
        """URL of the archive to download for *source*."""
        if source.type is SourceType.HOSTED_REPO:
            ref = source.ref or "HEAD"
            return f"https://codeload.{self.config.hosted_host}/{source.location}/tar.gz/{ref}"
        return source.location

    async def download(self, source: TemplateSource, dest: str | Path) -> Path:
        """Download *source* and unpack it into *dest*.

        Raises:
            FetchError: On HTTP failures, unsupported archives or a missing
                subdirectory.
        """
        url = self.archive_url(source)
        destination = Path(dest)
        scratch = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="template-forge-dl-"))
        archive_path = scratch / _archive_name(url)

        try:
            try:
                async with self._client() as client:
                    async with client.stream("GET", url) as response:
                        response.raise_for_status()
                        with archive_path.open("wb") as fh:
                            async for chunk in response.aiter_bytes():
                                fh.write(chunk)
            except httpx.HTTPStatusError as exc:
                raise FetchError(
                    f"Download failed with HTTP {exc.response.status_code}: {url}",
                    location=source.location,
                ) from exc
            except httpx.HTTPError as exc:
                raise FetchError(f"Download failed: {url} ({exc})", location=source.location) from exc

            await asyncio.to_thread(
                extract_archive,
                archive_path,
                destination,
                source.subdir,
                scratch / "unpacked",
                source.location,
            )
        finally:
            await asyncio.to_thread(shutil.rmtree, scratch, True)

        return destination


# ---------------------------------------------------------------------------
# Archive helpers
# ---------------------------------------------------------------------------


def _archive_name(url: str) -> str:
    name = PurePosixPath(httpx.URL(url).path).name
    return name or "archive"


def _check_member(name: str) -> None:
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts:
        raise FetchError(f"Archive member escapes the destination: {name}")


def extract_archive(
    archive: Path,
    dest: Path,
    subdir: str | None = None,
    workdir: Path | None = None,
    location: str = "",
) -> Path:
    """Unpack a ``.zip`` or tar archive and copy the template tree to *dest*.

    The archive is unpacked into *workdir*, or into a temporary directory
    that is removed afterwards.  Symlinks and device entries in tarballs are
    skipped.

    Raises:
        FetchError: When the archive is corrupt, truncated, unsupported or
            escapes *dest*, or when *subdir* is missing.
    """
    if workdir is not None:
        workdir.mkdir(parents=True, exist_ok=True)
        return _extract(archive, dest, subdir, workdir, location)
    with tempfile.TemporaryDirectory(prefix="template-forge-x-") as scratch:
        return _extract(archive, dest, subdir, Path(scratch), location)


def _extract(archive: Path, dest: Path, subdir: str | None, unpacked: Path, location: str) -> Path:
    try:
        _unpack(archive, unpacked)
    except FetchError as exc:
        exc.location = exc.location or location
        raise
    except (zipfile.BadZipFile, tarfile.TarError, EOFError, zlib.error) as exc:
        raise FetchError(f"Corrupt archive {archive.name}: {exc}", location=location) from exc

    root = unpacked
    children = list(root.iterdir())
    if len(children) == 1 and children[0].is_dir():
        root = children[0]

    if subdir:
        root = root / subdir
        if not root.is_dir():
            raise FetchError(f"Subdirectory '{subdir}' not found in archive", location=location)

    copy_tree(root, dest)
    return dest


def _unpack(archive: Path, unpacked: Path) -> None:
    if zipfile.is_zipfile(archive):
        with zipfile.ZipFile(archive) as zf:
            for name in zf.namelist():
                _check_member(name)
            zf.extractall(unpacked)
    elif tarfile.is_tarfile(archive):
        with tarfile.open(archive) as tf:
            members = []
            for member in tf.getmembers():
                _check_member(member.name)
                if member.isfile() or member.isdir():
                    members.append(member)
            if hasattr(tarfile, "data_filter"):
                tf.extractall(unpacked, members=members, filter="data")
            else:
                tf.extractall(unpacked, members=members)
    else:
        raise FetchError(f"Unsupported archive format: {archive.name}")
