"""Shared utility functions for Template Forge.

Provides async command execution, JSON I/O, ignore-aware tree copying,
duration formatting, and Rich-based console output.  Every component prints
through the single module-level ``console`` so output can be captured or
silenced in one place.
"""

from __future__ import annotations

import asyncio
import json
import os
import shutil
from collections.abc import Iterable, Iterator
from fnmatch import fnmatch
from pathlib import Path, PurePosixPath
from typing import Any

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# Async command execution
# ---------------------------------------------------------------------------


async def run_command(
    cmd: list[str],
    cwd: str | Path | None = None,
    timeout: int = 120,
) -> tuple[int, str, str]:
    """Run a command asynchronously and capture its output.

    Args:
        cmd: Program and arguments.
        cwd: Working directory for the child process.
        timeout: Maximum wall-clock seconds before the process is killed.

    Returns:
        A ``(returncode, stdout, stderr)`` tuple.  A missing executable is
        reported as return code 127 rather than raised.
    """
    cmd_str = " ".join(cmd)

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
        )
    except FileNotFoundError:
        return (127, "", f"Command not found: {cmd_str}")

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return (-1, "", f"Command timed out after {timeout}s: {cmd_str}")

    stdout_str = (stdout_bytes or b"").decode("utf-8", errors="replace").strip()
    stderr_str = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
    return (process.returncode or 0, stdout_str, stderr_str)


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        return {"_root": data}
    return data


def write_json(data: dict[str, Any] | list[Any], path: str | Path) -> Path:
    """Write *data* as pretty-printed JSON with a trailing newline."""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=2, ensure_ascii=False, default=str) + "\n"
    file_path.write_text(content, encoding="utf-8")
    return file_path


# ---------------------------------------------------------------------------
# File-system helpers
# ---------------------------------------------------------------------------


def ensure_dir(path: str | Path) -> Path:
    """Create a directory (and parents) if it does not exist."""
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path.resolve()


def is_ignored(relative_path: str | Path, patterns: Iterable[str]) -> bool:
    """Return ``True`` if any component of *relative_path* matches a pattern.

    Patterns are shell globs matched against individual path components, so
    ``"node_modules"`` excludes the directory at any depth and ``"*.log"``
    excludes log files anywhere in the tree.
    """
    parts = PurePosixPath(Path(relative_path).as_posix()).parts
    pattern_list = list(patterns)
    return any(fnmatch(part, pattern) for part in parts for pattern in pattern_list)


def iter_files(root: str | Path, ignore_patterns: Iterable[str] = ()) -> Iterator[Path]:
    """Yield every regular file under *root* (sorted) as a path relative to it.

    Ignored directories are pruned without being descended into.
    """
    base = Path(root)
    patterns = list(ignore_patterns)
    for dirpath, dirnames, filenames in os.walk(base):
        current = Path(dirpath)
        rel_dir = current.relative_to(base)
        dirnames[:] = sorted(
            d for d in dirnames if not is_ignored(rel_dir / d, patterns)
        )
        for filename in sorted(filenames):
            rel = rel_dir / filename
            if not is_ignored(rel, patterns):
                yield rel


def copy_tree(
    src: str | Path,
    dst: str | Path,
    ignore_patterns: Iterable[str] = (),
) -> int:
    """Copy the contents of *src* into *dst*, skipping ignored entries.

    *dst* is created if needed and existing files are overwritten.

    Returns:
        The number of files copied.
    """
    source = Path(src)
    target = Path(dst)
    target.mkdir(parents=True, exist_ok=True)
    copied = 0
    for rel in iter_files(source, ignore_patterns):
        destination = target / rel
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source / rel, destination)
        copied += 1
    return copied


def dir_size(path: str | Path) -> int:
    """Total size in bytes of all files under *path*."""
    return sum(f.stat().st_size for f in Path(path).rglob("*") if f.is_file())


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(0.34)   -> "340ms"
        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
    """
    if seconds < 0:
        return "0ms"
    if seconds < 1:
        return f"{int(round(seconds * 1000))}ms"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


def format_bytes(size: int) -> str:
    """Format a byte count, e.g. ``2048 -> "2.0 KB"``."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)} B" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


def print_summary_table(
    data: dict[str, str],
    title: str = "Summary",
    columns: tuple[str, str] = ("Item", "Value"),
) -> None:
    """Print *data* as a two-column table with a header row."""
    key_header, value_header = columns
    table = Table(title=title, header_style="bold cyan")
    table.add_column(key_header, style="dim", no_wrap=True)
    table.add_column(value_header, justify="right")
    for key, value in data.items():
        table.add_row(key, value)
    console.print(table)


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")


def create_progress(transient: bool = True) -> Progress:
    """Progress bar for the materialization stages, rendered on ``console``."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
        transient=transient,
    )
