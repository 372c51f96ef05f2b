"""Project memory: free text kept in ``<project>/.companion/MEMORY.md``."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

_log = logging.getLogger("companion.session.memory")

MEMORY_FILENAME = "MEMORY.md"

# Opens the memory file for the user and returns when editing is done
MemoryEditor = Callable[[Path], Awaitable[None]]


class ProjectMemory:
    """Reads the memory file; editing is delegated to a MemoryEditor."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.text = ""

    def load(self) -> str:
        try:
            self.text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self.text = ""
        except (OSError, UnicodeDecodeError) as e:
            _log.warning("Could not read project memory %s: %s", self.path, e)
            self.text = ""
        return self.text

    async def edit(self, editor: MemoryEditor) -> str:
        """Run the editor on the memory file, then reload it."""
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch()
        await editor(self.path)
        return self.load()
