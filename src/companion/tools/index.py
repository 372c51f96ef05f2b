"""In-memory index of project file contents, keyed by project-relative path.

The index is rebuilt only on request (session start or ``/reindex``) and
feeds a bounded excerpt of the project into the system preamble.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from companion.core.tokens import TokenEstimator, count_tokens_heuristic
from companion.tools.workspace import Workspace

_log = logging.getLogger("companion.tools.index")

DEFAULT_EXTENSIONS = frozenset(
    "rs ts tsx js jsx py go java kt swift c cpp h hpp cs rb php vue svelte "
    "html css scss sass less json yaml yml toml md sql sh bash zsh fish".split()
)

MAX_FILE_SIZE = 100_000  # Bytes; larger files are not indexed


@dataclass(frozen=True)
class IndexedFile:
    path: str
    content: str
    tokens: int


class WorkspaceIndex:
    """Text of the project's source files, read once per reindex.

    Usage:
        index = WorkspaceIndex(workspace, max_files=50)
        await index.reindex()
        preamble_part = index.build_context(8000)
    """

    def __init__(
        self,
        workspace: Workspace,
        *,
        estimator: TokenEstimator = count_tokens_heuristic,
        max_files: int = 50,
        max_file_size: int = MAX_FILE_SIZE,
        extensions: frozenset[str] = DEFAULT_EXTENSIONS,
    ) -> None:
        self.workspace = workspace
        self.estimator = estimator
        self.max_files = max_files
        self.max_file_size = max_file_size
        self.extensions = extensions
        self._files: dict[str, IndexedFile] = {}

    async def reindex(self) -> None:
        """Re-read the project. Unreadable or binary files are skipped."""
        files = await asyncio.to_thread(self._scan)
        self._files = {f.path: f for f in files}
        _log.info(
            "Indexed %d files (~%d tokens)", len(files), sum(f.tokens for f in files)
        )

    def _scan(self) -> list[IndexedFile]:
        files: list[IndexedFile] = []
        for file in self.workspace.iter_files(self.workspace.root):
            if len(files) >= self.max_files:
                break
            if file.suffix.lstrip(".").lower() not in self.extensions:
                continue
            try:
                if file.stat().st_size > self.max_file_size:
                    continue
                content = file.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            files.append(
                IndexedFile(self.workspace.relative(file), content, self.estimator(content))
            )
        return files

    def build_context(self, max_tokens: int) -> str:
        """Indexed files as ``--- path ---`` blocks, within ``max_tokens``.

        Files that do not fit are left out; later, smaller files may still fit.
        """
        blocks: list[str] = []
        used = 0
        for entry in self._files.values():
            block = f"--- {entry.path} ---\n{entry.content.rstrip()}"
            tokens = self.estimator(block)
            if used + tokens > max_tokens:
                continue
            blocks.append(block)
            used += tokens
        return "\n\n".join(blocks)
