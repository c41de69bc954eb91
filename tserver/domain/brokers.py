from __future__ import annotations

import threading
from typing import Any, Dict, Generic, Hashable, List, TypeVar

from .errors import BrokerNotFoundError, DuplicateBrokerError


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BrokerRegistry(Generic[K, V]):
    """Auxiliary objects registered under a key for request handlers to look up.

    Insert-if-absent and lookup are atomic with respect to each other, so
    handlers running on separate request threads may call them freely.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[K, V] = {}

    def add(self, key: K, value: V) -> None:
        with self._lock:
            if key in self._items:
                raise DuplicateBrokerError(key)
            self._items[key] = value

    def get(self, key: K) -> V:
        with self._lock:
            try:
                return self._items[key]
            except KeyError:
                raise BrokerNotFoundError(key) from None

    def keys(self) -> List[K]:
        with self._lock:
            return list(self._items)

    def __contains__(self, key: Any) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
