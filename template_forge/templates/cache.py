"""TTL-bounded on-disk cache of fetched template trees.

Layout::

    <cache_dir>/
        <type>-<hash>/            one directory per source key
            ...template files...
            .cache-meta.json      {"timestamp": ..., "ttl": ..., "source": {...}}

An entry is valid while ``now - timestamp < ttl``.  Expired entries are
treated as misses and left on disk until :meth:`CacheStore.prune` or
:meth:`CacheStore.clear` removes them.  There is no cross-process locking:
writes are staged in a sibling directory and swapped into place, so
concurrent writers of the same key never expose a half-copied tree and the
last writer wins.
"""

from __future__ import annotations

import asyncio
import hashlib
import shutil
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from template_forge.config import CacheConfig
from template_forge.models import CacheEntry, CacheStats, TemplateSource
from template_forge.utils import copy_tree, dir_size, load_json, write_json

META_FILE = ".cache-meta.json"


class CacheStore:
    """Content-keyed template cache.

    Args:
        config: Cache location, TTL and on/off switch.
        clock: Returns the current time in seconds; injectable for tests.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self.hits = 0
        self.misses = 0

    @property
    def root(self) -> Path:
        return Path(self.config.dir).expanduser()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def key_for(source: TemplateSource) -> str:
        """Stable key derived from ``(type, location, ref, subdir)``."""
        material = "|".join(
            [source.type.value, source.location, source.ref or "", source.subdir or ""]
        )
        digest = hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]
        return f"{source.type.value}-{digest}"

    def entry_path(self, source: TemplateSource) -> Path:
        return self.root / self.key_for(source)

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    async def get(self, source: TemplateSource) -> CacheEntry | None:
        """Return the valid entry for *source*, or ``None`` on a miss."""
        if not self.enabled:
            return None
        entry = await asyncio.to_thread(self._read_entry, self.entry_path(source))
        if entry is not None and entry.is_valid(self._clock()):
            self.hits += 1
            return entry
        self.misses += 1
        return None

    async def put(self, source: TemplateSource, tree: str | Path) -> CacheEntry | None:
        """Store a copy of *tree* under the key for *source*.

        Returns ``None`` when caching is disabled.
        """
        if not self.enabled:
            return None
        return await asyncio.to_thread(self._write_entry, source, Path(tree))

    async def remove(self, source: TemplateSource) -> bool:
        """Delete the entry for *source*; ``True`` if one existed."""
        path = self.entry_path(source)
        if not path.exists():
            return False
        await asyncio.to_thread(shutil.rmtree, path, True)
        return True

    async def clear(self) -> int:
        """Delete every entry. Returns the number removed."""
        return await asyncio.to_thread(self._remove_matching, lambda entry: True)

    async def prune(self) -> int:
        """Delete expired or unreadable entries. Returns the number removed."""
        now = self._clock()
        return await asyncio.to_thread(
            self._remove_matching, lambda entry: entry is None or not entry.is_valid(now)
        )

    async def stats(self) -> CacheStats:
        return await asyncio.to_thread(self._collect_stats)

    # ------------------------------------------------------------------
    # Blocking helpers (run in worker threads)
    # ------------------------------------------------------------------

    def _entry_dirs(self) -> list[Path]:
        if not self.root.is_dir():
            return []
        return sorted(
            p for p in self.root.iterdir() if p.is_dir() and not p.name.startswith(".")
        )

    @staticmethod
    def _read_entry(path: Path) -> CacheEntry | None:
        meta_path = path / META_FILE
        if not meta_path.is_file():
            return None
        try:
            meta = load_json(meta_path)
            return CacheEntry(
                key=path.name,
                path=path,
                timestamp=float(meta["timestamp"]),
                ttl_seconds=int(meta["ttl"]),
            )
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def _write_entry(self, source: TemplateSource, tree: Path) -> CacheEntry:
        key = self.key_for(source)
        target = self.root / key
        self.root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{key}-", dir=self.root))
        try:
            copy_tree(tree, staging, [META_FILE])
            timestamp = self._clock()
            # Sidecar goes in last: a tree without it reads as a miss.
            write_json(
                {
                    "timestamp": timestamp,
                    "ttl": self.config.ttl_seconds,
                    "source": source.model_dump(mode="json"),
                },
                staging / META_FILE,
            )
            self._swap_into_place(staging, target)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        return CacheEntry(
            key=key, path=target, timestamp=timestamp, ttl_seconds=self.config.ttl_seconds
        )

    @staticmethod
    def _swap_into_place(staging: Path, target: Path) -> None:
        for _ in range(3):
            if target.exists():
                shutil.rmtree(target, ignore_errors=True)
            try:
                staging.rename(target)
                return
            except OSError:
                # Another writer landed between the delete and the rename.
                continue
        staging.rename(target)

    def _remove_matching(self, predicate: Callable[[CacheEntry | None], bool]) -> int:
        removed = 0
        for path in self._entry_dirs():
            if predicate(self._read_entry(path)):
                shutil.rmtree(path, ignore_errors=True)
                removed += 1
        return removed

    def _collect_stats(self) -> CacheStats:
        now = self._clock()
        stats = CacheStats(hits=self.hits, misses=self.misses)
        for path in self._entry_dirs():
            entry = self._read_entry(path)
            stats.entries += 1
            stats.size_bytes += dir_size(path)
            if entry is None or not entry.is_valid(now):
                stats.expired += 1
        return stats
