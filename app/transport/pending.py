import threading
from typing import Iterable

from app.models.transport import PendingSyncTransaction


class PendingSyncQueue:
    """
    Transactions charged on the emergency path that the backend has not seen yet.

    Appends may run while a drain is in progress: a drain works on a snapshot
    and removes only the ids it reconciled, so entries appended meanwhile stay.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._items: list[PendingSyncTransaction] = []

    def append(self, item: PendingSyncTransaction) -> None:
        with self._lock:
            self._items.append(item)

    def snapshot(self) -> list[PendingSyncTransaction]:
        with self._lock:
            return list(self._items)

    def remove(self, ids: Iterable[str]) -> int:
        ids = set(ids)
        with self._lock:
            before = len(self._items)
            self._items = [item for item in self._items if item.id not in ids]
            return before - len(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
