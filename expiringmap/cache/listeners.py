import inspect
import logging
import threading
import weakref
from typing import Any, Callable, List

from expiringmap.cache.metrics import expiring_map_listener_errors_total
from expiringmap.cache.quietly import run_quietly

log = logging.getLogger("expiringmap.listeners")

ExpirationListener = Callable[[Any, Any, bool], None]


def _make_ref(callback: ExpirationListener):
    if inspect.ismethod(callback):
        return weakref.WeakMethod(callback)
    try:
        return weakref.ref(callback)
    except TypeError:
        raise TypeError(f"listener {callback!r} does not support weak references") from None


class ListenerRegistry:
    """
    Holds expiration listeners through weak references only.

    Registering a callback never keeps it (or the object owning a bound
    method) alive, so callers must hold their own reference for as long as
    they want notifications. An inline lambda is collected right after
    registration and will never fire. Callables that reject weak references
    (for example instances of a class whose `__slots__` omits `__weakref__`)
    raise TypeError on add(). Dead references are pruned on dispatch and on
    removal.
    """
    def __init__(self, map_name: str = "default"):
        self._map_name = map_name
        self._refs: List[weakref.ref] = []
        self._lock = threading.Lock()

    def add(self, callback: ExpirationListener) -> None:
        if callback is None:
            return
        ref = _make_ref(callback)
        with self._lock:
            self._refs.append(ref)

    def remove(self, callback: ExpirationListener) -> bool:
        removed = False
        with self._lock:
            kept = []
            for ref in self._refs:
                target = ref()
                if target is None:
                    continue
                if not removed and (target is callback or (inspect.ismethod(callback) and target == callback)):
                    removed = True
                    continue
                kept.append(ref)
            self._refs = kept
        return removed

    def prune(self) -> int:
        with self._lock:
            before = len(self._refs)
            self._refs = [r for r in self._refs if r() is not None]
            return before - len(self._refs)

    def clear(self) -> None:
        with self._lock:
            self._refs = []

    def notify(self, key: Any, value: Any, is_expired: bool) -> None:
        with self._lock:
            refs = list(self._refs)
        dead = False
        for ref in refs:
            listener = ref()
            if listener is None:
                dead = True
                continue
            run_quietly(
                lambda: listener(key, value, is_expired),
                on_error=lambda e: self._on_listener_error(e, key, is_expired),
            )
            # drop our strong reference before the next weakref lookup
            listener = None
        if dead:
            self.prune()

    def _on_listener_error(self, error: Exception, key: Any, is_expired: bool) -> None:
        expiring_map_listener_errors_total.labels(map=self._map_name).inc()
        log.error(
            "expiration listener failed",
            exc_info=(type(error), error, error.__traceback__),
            extra={"extra_fields": {"map": self._map_name, "key": repr(key), "is_expired": is_expired}},
        )

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for r in self._refs if r() is not None)
