from __future__ import annotations
from typing import Any, Callable, Generic, TypeVar
import logging
import threading

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Coordinator(Generic[T]):
    """Single writer for an immutable aggregate (oracle state or pool).

    Readers take `current` and keep the snapshot as long as they like;
    writers go through `apply`, which serializes transitions and swaps the
    result in. A transition that raises leaves `current` untouched.
    """

    def __init__(self, initial: T) -> None:
        self._current = initial
        self._lock = threading.Lock()

    @property
    def current(self) -> T:
        return self._current

    def apply(self, transition: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self._lock:
            nxt = transition(self._current, *args, **kwargs)
            if nxt is not self._current:
                logger.debug("%s applied", getattr(transition, "__name__", transition))
            self._current = nxt
            return nxt
