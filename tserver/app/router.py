from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional, Tuple

Handler = Callable[..., None]


class Router:
    """
    Path multiplexer for request handlers.

    Patterns:
    - "/health"  -> exactly that path
    - "/app/"    -> the whole subtree below /app/ (and "/app" redirects there)
    - "/"        -> everything not matched by a longer pattern
    The longest registered pattern that matches wins.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._exact: Dict[str, Handler] = {}
        self._subtrees: List[Tuple[str, Handler]] = []

    def handle(self, pattern: str, handler: Handler) -> None:
        if not pattern or not pattern.startswith("/"):
            raise ValueError(f"invalid pattern {pattern!r}")
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._lock:
            if pattern in self._exact or any(p == pattern for p, _ in self._subtrees):
                raise ValueError(f"multiple registrations for {pattern}")
            if pattern.endswith("/"):
                self._subtrees.append((pattern, handler))
                self._subtrees.sort(key=lambda item: len(item[0]), reverse=True)
            else:
                self._exact[pattern] = handler

    def route(self, pattern: str) -> Callable[[Handler], Handler]:
        def decorator(fn: Handler) -> Handler:
            self.handle(pattern, fn)
            return fn

        return decorator

    def match(self, path: str) -> Optional[Handler]:
        with self._lock:
            handler = self._exact.get(path)
            if handler is not None:
                return handler
            for pattern, handler in self._subtrees:
                if path.startswith(pattern):
                    return handler
        return None

    def redirect_for(self, path: str) -> Optional[str]:
        """"/app" -> "/app/" when only the subtree pattern is registered."""
        if path.endswith("/"):
            return None
        with self._lock:
            if path in self._exact:
                return None
            target = path + "/"
            if any(p == target for p, _ in self._subtrees):
                return target
        return None

    def patterns(self) -> List[str]:
        with self._lock:
            return sorted(list(self._exact) + [p for p, _ in self._subtrees])
