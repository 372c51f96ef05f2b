"""File access confined to one project root.

All blocking I/O runs in a worker thread via ``asyncio.to_thread`` under an
``asyncio.wait_for`` deadline. Writes to one path are serialized by a
per-path lock and land atomically (temp file in the same directory, then
``os.replace``). A thread cannot be interrupted, so a write that outlives
its deadline keeps the lock until the thread finishes.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from companion.errors import ToolExecutionError

_log = logging.getLogger("companion.tools.workspace")


class PathOutsideProjectError(ValueError):
    """A path resolves outside the project root."""


class Workspace:
    """The project directory as seen by the file tools."""

    def __init__(
        self,
        root: str | Path,
        *,
        io_timeout: float = 10.0,
        ignore_patterns: list[str] | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.io_timeout = io_timeout
        self.ignore_patterns = set(ignore_patterns or [])
        self._locks: dict[Path, asyncio.Lock] = {}

    def resolve(self, path: str) -> Path:
        """Resolve ``path`` against the root, refusing anything outside it.

        Symlinks are followed, so a link pointing out of the project is
        rejected too.
        """
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.root / candidate
        resolved = candidate.resolve()
        if resolved != self.root and not resolved.is_relative_to(self.root):
            raise PathOutsideProjectError(f"Access denied: {path} is outside project directory")
        return resolved

    def contains(self, path: str) -> bool:
        try:
            self.resolve(path)
        except (PathOutsideProjectError, OSError, RuntimeError):
            return False
        return True

    def relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix() or "."
        except ValueError:
            return str(path)

    @asynccontextmanager
    async def lock(self, path: Path) -> AsyncIterator[None]:
        """Hold the write lock for ``path``; released on every exit path."""
        lock = self._locks.setdefault(path, asyncio.Lock())
        async with lock:
            yield

    async def _io(self, func, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.io_timeout)
        except asyncio.TimeoutError:
            raise ToolExecutionError(
                f"File operation timed out after {self.io_timeout}s", kind="timeout"
            ) from None

    async def _io_to_completion(self, func, *args):
        """Run ``func`` in a thread and return only once that thread is done.

        Past the deadline the result is still awaited, and the real outcome
        is returned or raised.
        """
        worker = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            try:
                return await asyncio.wait_for(asyncio.shield(worker), timeout=self.io_timeout)
            except asyncio.TimeoutError:
                _log.warning(
                    "File operation exceeded %ss; waiting for it to finish", self.io_timeout
                )
                return await asyncio.shield(worker)
        finally:
            if not worker.done():
                # Cancelled while the thread is still running
                await asyncio.wait([worker])

    async def read_text(self, path: str) -> str:
        target = self.resolve(path)
        try:
            return await self._io(target.read_text, "utf-8")
        except FileNotFoundError:
            raise ToolExecutionError(f"Error reading file: {path} does not exist") from None
        except IsADirectoryError:
            raise ToolExecutionError(f"Error reading file: {path} is a directory") from None
        except UnicodeDecodeError:
            raise ToolExecutionError(f"Error reading file: {path} is not UTF-8 text") from None
        except OSError as e:
            raise ToolExecutionError(f"Error reading file: {e}") from e

    async def read_existing(self, path: str) -> str | None:
        """Current text of ``path``, or None if it does not exist or is unreadable."""
        target = self.resolve(path)
        if not target.is_file():
            return None
        try:
            return await self._io(target.read_text, "utf-8")
        except (OSError, UnicodeDecodeError):
            return None

    async def write_text(self, path: str, content: str) -> int:
        """Atomically replace ``path`` with ``content``. Returns bytes written."""
        target = self.resolve(path)
        data = content.encode("utf-8")
        async with self.lock(target):
            try:
                await self._io_to_completion(_atomic_write, target, data)
            except OSError as e:
                raise ToolExecutionError(f"Error writing file: {e}") from e
        return len(data)

    async def list_directory(self, path: str = ".") -> list[str]:
        target = self.resolve(path)
        try:
            return await self._io(_list_entries, target)
        except FileNotFoundError:
            raise ToolExecutionError(f"Error listing directory: {path} does not exist") from None
        except NotADirectoryError:
            raise ToolExecutionError(f"Error listing directory: {path} is not a directory") from None
        except OSError as e:
            raise ToolExecutionError(f"Error listing directory: {e}") from e

    async def search(self, pattern: str, scope: str = ".", max_results: int = 50) -> list[str]:
        """Grep-style search; returns "path:line: text" strings.

        ``pattern`` is a regular expression, or a literal string when it does
        not compile as one.
        """
        target = self.resolve(scope)
        try:
            regex = re.compile(pattern)
        except re.error:
            regex = re.compile(re.escape(pattern))
        try:
            return await self._io(self._search_sync, target, regex, max_results)
        except OSError as e:
            raise ToolExecutionError(f"Error searching: {e}") from e

    def _search_sync(self, target: Path, regex: re.Pattern[str], max_results: int) -> list[str]:
        matches: list[str] = []
        for file in self.iter_files(target):
            try:
                with open(file, encoding="utf-8") as f:
                    for lineno, line in enumerate(f, 1):
                        if regex.search(line):
                            matches.append(f"{self.relative(file)}:{lineno}: {line.rstrip()}")
                            if len(matches) >= max_results:
                                return matches
            except (UnicodeDecodeError, OSError):
                continue  # Binary or unreadable
        return matches

    def iter_files(self, target: Path):
        """Files under ``target`` in sorted order, skipping ignored directories."""
        if target.is_file():
            yield target
            return
        for dirpath, dirnames, filenames in os.walk(target):
            dirnames[:] = sorted(d for d in dirnames if d not in self.ignore_patterns)
            for name in sorted(filenames):
                yield Path(dirpath) / name


def _atomic_write(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, target)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


def _list_entries(target: Path) -> list[str]:
    entries = []
    for entry in sorted(target.iterdir(), key=lambda p: p.name):
        entries.append(f"{entry.name}/" if entry.is_dir() else entry.name)
    return entries
