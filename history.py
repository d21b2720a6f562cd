"""Play history of display names with a navigation cursor."""
from __future__ import annotations

from typing import Iterable, List, Optional


class HistoryManager:
    def __init__(self) -> None:
        self._history: List[str] = []
        self._index = -1

    def add_song(self, song_name: Optional[str]) -> None:
        if song_name is None:
            return
        if song_name in self._history:
            self._history.remove(song_name)
        self._history.append(song_name)
        self._index = len(self._history) - 1

    def has_previous(self) -> bool:
        return self._index > 0

    def has_next(self) -> bool:
        return 0 <= self._index < len(self._history) - 1

    def get_previous(self) -> Optional[str]:
        if not self.has_previous():
            return None
        self._index -= 1
        return self._history[self._index]

    def get_next(self) -> Optional[str]:
        if not self.has_next():
            return None
        self._index += 1
        return self._history[self._index]

    def get_current(self) -> Optional[str]:
        if 0 <= self._index < len(self._history):
            return self._history[self._index]
        return None

    def get_index(self) -> int:
        return self._index

    def set_index(self, index: int) -> None:
        if 0 <= index < len(self._history):
            self._index = index

    def set_history(self, history: Optional[Iterable[str]], index: int) -> None:
        """Replace the history; an out-of-range ``index`` points at the first item."""

        self._history = list(history or [])
        if 0 <= index < len(self._history):
            self._index = index
        else:
            self._index = 0 if self._history else -1

    def get_history(self) -> List[str]:
        return list(self._history)

    def clear(self) -> None:
        self._history.clear()
        self._index = -1

    def is_empty(self) -> bool:
        return not self._history
