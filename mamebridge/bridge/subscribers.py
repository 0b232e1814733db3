from __future__ import annotations

from typing import Callable, List, Set


class SubscriberDirectory:
    """Handles of the endpoints that registered for state updates."""

    def __init__(self) -> None:
        self._handles: Set[int] = set()

    def register(self, handle: int) -> bool:
        """Add ``handle``; returns False if it was already registered."""
        if handle in self._handles:
            return False
        self._handles.add(handle)
        return True

    def unregister(self, handle: int) -> bool:
        if handle not in self._handles:
            return False
        self._handles.discard(handle)
        return True

    def snapshot(self) -> List[int]:
        return list(self._handles)

    def for_each(self, fn: Callable[[int], None]) -> None:
        # Iterate a copy; fn may register or unregister
        for handle in self.snapshot():
            fn(handle)

    def clear(self) -> None:
        self._handles.clear()

    def __contains__(self, handle: object) -> bool:
        return handle in self._handles

    def __len__(self) -> int:
        return len(self._handles)
