"""Friendly names for opaque InvokeAI board ids."""
from __future__ import annotations

import threading
from typing import Iterable

BOARD_NAME_TEMPLATE = "My Board {n}"


class BoardResolver:
    """
    Assigns ``"My Board {n}"`` labels to board ids in first-seen order.

    One resolver is owned by a batch run and handed to the normalizer. The
    mapping only grows; the same id always gets the same label and two ids
    never share one. Access is serialized, so concurrent first sightings of
    an id cannot race into two labels.
    """

    def __init__(self, start: int = 1):
        self._lock = threading.Lock()
        self._names: dict[str, str] = {}
        self._counter = max(1, int(start))

    def resolve(self, board_id: str) -> str:
        key = str(board_id)
        with self._lock:
            name = self._names.get(key)
            if name is None:
                name = BOARD_NAME_TEMPLATE.format(n=self._counter)
                self._names[key] = name
                self._counter += 1
            return name

    def preassign(self, board_ids: Iterable[str]) -> None:
        """Resolve ids in the given order so later lookups are scheduling-independent."""
        for board_id in board_ids:
            self.resolve(board_id)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._names)

    def __contains__(self, board_id: object) -> bool:
        with self._lock:
            return str(board_id) in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)
