"""Name to handler lookup for built-in and discovered tools."""

from __future__ import annotations

import logging

from companion.errors import ToolNameConflict, ToolResolutionError
from companion.tools.types import ToolDescriptor, ToolHandler

_log = logging.getLogger("companion.tools.registry")


class ToolRegistry:
    """Holds every tool the model may call, keyed by unique name.

    Registration never overwrites: a second tool under an existing name is
    rejected with ``ToolNameConflict`` and the first one stays.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, handler: ToolHandler) -> None:
        descriptor = handler.descriptor
        existing = self._handlers.get(descriptor.name)
        if existing is not None:
            raise ToolNameConflict(descriptor.name, existing.descriptor.source)
        self._handlers[descriptor.name] = handler
        _log.debug("Registered tool %s (source=%s)", descriptor.name, descriptor.source)

    def register_all(self, handlers: list[ToolHandler]) -> list[ToolNameConflict]:
        """Register several handlers, logging and collecting conflicts instead of raising."""
        conflicts = []
        for handler in handlers:
            try:
                self.register(handler)
            except ToolNameConflict as e:
                _log.warning("Rejected tool from %s: %s", handler.descriptor.source, e)
                conflicts.append(e)
        return conflicts

    def unregister_source(self, source: str) -> int:
        """Drop every tool from one source. Returns how many were removed."""
        names = [n for n, h in self._handlers.items() if h.descriptor.source == source]
        for name in names:
            del self._handlers[name]
        return len(names)

    def resolve(self, name: str) -> ToolHandler:
        try:
            return self._handlers[name]
        except KeyError:
            raise ToolResolutionError(f"Unknown tool: {name}", kind="unknown_tool") from None

    def get(self, name: str) -> ToolHandler | None:
        return self._handlers.get(name)

    def descriptors(self) -> tuple[ToolDescriptor, ...]:
        """Snapshot of all descriptors in registration order."""
        return tuple(h.descriptor for h in self._handlers.values())

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
