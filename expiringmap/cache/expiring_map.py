import logging
import random
import threading
import time
from collections.abc import Mapping, MutableMapping
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Tuple

from opentelemetry import trace

from expiringmap.cache.listeners import ExpirationListener, ListenerRegistry
from expiringmap.cache.locks import ReadWriteLock
from expiringmap.cache.markers import MarkerQueue
from expiringmap.cache.metrics import (
    expiring_map_entries,
    expiring_map_entries_expired_total,
    expiring_map_entries_removed_total,
    expiring_map_pending_markers,
    expiring_map_stale_markers_total,
    expiring_map_sweep_duration_ms,
    expiring_map_sweep_errors_total,
    expiring_map_sweeps_total,
)
from expiringmap.cache.quietly import close_quietly
from expiringmap.cache.scheduler import SweepScheduler
from expiringmap.config import (
    CLEANUP_PROBABILITY,
    DEFAULT_EXPIRATION_INTERVAL,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_TIME_TO_LIVE,
    ExpiringMapConfig,
)

log = logging.getLogger("expiringmap")
tracer = trace.get_tracer("expiringmap")

_MISSING = object()


class MapClosedError(RuntimeError):
    """Raised by mutating calls on a map that has been closed."""


class _Entry:
    __slots__ = ("value", "expiration")

    def __init__(self, value: Any, expiration: float):
        self.value = value
        self.expiration = expiration

    def is_live(self, now: float) -> bool:
        return now < self.expiration


class ExpiringMap(MutableMapping):
    """
    Thread-safe mapping whose entries expire `time_to_live` seconds after
    they were last written.

    Expired entries are hidden from every read immediately. They are purged
    by a background sweep every `expiration_interval` seconds, and now and
    then by a read (see `cleanup_probability`). Every removal is reported to
    the registered expiration listeners as `listener(key, value, is_expired)`.

    The sweep runs on a daemon thread owned by the map; call close() (or use
    the map as a context manager) to stop it and release all entries.
    `None` is not a valid value: it is what reads return for a missing key.
    """

    def __init__(self, time_to_live: float = DEFAULT_TIME_TO_LIVE,
                 expiration_interval: float = DEFAULT_EXPIRATION_INTERVAL, *,
                 name: str = "default",
                 cleanup_probability: float = CLEANUP_PROBABILITY,
                 shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
                 clock: Callable[[], float] = time.monotonic):
        if time_to_live <= 0:
            raise ValueError("time_to_live must be greater than 0")
        if expiration_interval <= 0:
            raise ValueError("expiration_interval must be greater than 0")
        if not 0.0 <= cleanup_probability <= 1.0:
            raise ValueError("cleanup_probability must be between 0 and 1")

        self.name = name
        self._ttl = time_to_live
        self._interval = expiration_interval
        self._cleanup_probability = cleanup_probability
        self._shutdown_timeout = shutdown_timeout
        self._clock = clock

        self._store: Dict[Hashable, _Entry] = {}
        self._store_lock = threading.Lock()
        self._markers = MarkerQueue()
        self._listeners = ListenerRegistry(map_name=name)
        self._state_lock = ReadWriteLock()
        self._closed = False

        self._scheduler = SweepScheduler(
            self._scheduled_sweep,
            interval=expiration_interval,
            name=f"ExpiringMap-CleanupScheduler-{name}",
            on_error=self._on_sweep_error,
        )
        self._scheduler.start()

    @classmethod
    def from_config(cls, config: ExpiringMapConfig,
                    clock: Callable[[], float] = time.monotonic) -> "ExpiringMap":
        return cls(
            config.time_to_live,
            config.expiration_interval,
            name=config.name,
            cleanup_probability=config.cleanup_probability,
            shutdown_timeout=config.shutdown_timeout,
            clock=clock,
        )

    @property
    def time_to_live(self) -> float:
        return self._ttl

    @property
    def expiration_interval(self) -> float:
        return self._interval

    @property
    def closed(self) -> bool:
        return self._closed

    # ---------- reads ----------

    def get(self, key: Hashable, default: Any = None) -> Any:
        self._cleanup_if_necessary()
        entry = self._store.get(key)
        if entry is None or not entry.is_live(self._clock()):
            return default
        return entry.value

    def __getitem__(self, key: Hashable) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def __contains__(self, key: object) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    contains_key = __contains__

    def contains_value(self, value: Any) -> bool:
        self._cleanup_if_necessary()
        return any(v == value for _, v in self._live_items())

    def __len__(self) -> int:
        self._cleanup_if_necessary()
        return len(self._live_items())

    def size(self) -> int:
        return len(self)

    def is_empty(self) -> bool:
        return len(self) == 0

    def __iter__(self) -> Iterator[Hashable]:
        self._cleanup_if_necessary()
        return iter([k for k, _ in self._live_items()])

    def keys(self) -> List[Hashable]:
        return list(iter(self))

    def values(self) -> List[Any]:
        self._cleanup_if_necessary()
        return [v for _, v in self._live_items()]

    def items(self) -> List[Tuple[Hashable, Any]]:
        self._cleanup_if_necessary()
        return self._live_items()

    def _live_items(self) -> List[Tuple[Hashable, Any]]:
        now = self._clock()
        with self._store_lock:
            snapshot = list(self._store.items())
        return [(k, e.value) for k, e in snapshot if e.is_live(now)]

    # ---------- writes ----------

    def put(self, key: Hashable, value: Any) -> Any:
        """Store `value` under `key` and return the previous live value, if any."""
        self._check_closed()
        self._check_value(value)
        now = self._clock()
        entry = _Entry(value, now + self._ttl)
        with self._store_lock:
            self._check_closed()
            old = self._store.get(key)
            self._store[key] = entry
            self._markers.push(key, entry.expiration)
        return self._superseded(key, old, now)

    def __setitem__(self, key: Hashable, value: Any) -> None:
        self.put(key, value)

    def put_if_absent(self, key: Hashable, value: Any) -> Any:
        """
        Store `value` only when `key` has no live entry. Returns the live
        value already present, or None when the insert happened.
        """
        self._check_closed()
        self._check_value(value)
        self._cleanup_if_necessary()
        now = self._clock()
        with self._store_lock:
            self._check_closed()
            old = self._store.get(key)
            if old is not None and old.is_live(now):
                return old.value
            entry = _Entry(value, now + self._ttl)
            self._store[key] = entry
            self._markers.push(key, entry.expiration)
        if old is not None:
            self._on_expired(key, old.value)
        return None

    def setdefault(self, key: Hashable, default: Any = None) -> Any:
        existing = self.put_if_absent(key, default)
        return default if existing is None else existing

    def replace(self, key: Hashable, value: Any) -> Any:
        """
        Replace the live entry for `key`, refreshing its expiration. The old
        value is reported to listeners as a removal. Returns the old value,
        or None when there was no live entry (nothing is stored then).
        """
        self._check_closed()
        self._check_value(value)
        self._cleanup_if_necessary()
        now = self._clock()
        with self._store_lock:
            self._check_closed()
            old = self._store.get(key)
            if old is None or not old.is_live(now):
                return None
            entry = _Entry(value, now + self._ttl)
            self._store[key] = entry
            self._markers.push(key, entry.expiration)
        self._on_removed(key, old.value)
        return old.value

    def replace_if_equal(self, key: Hashable, old_value: Any, new_value: Any) -> bool:
        self._check_closed()
        self._check_value(new_value)
        self._cleanup_if_necessary()
        now = self._clock()
        with self._store_lock:
            self._check_closed()
            current = self._store.get(key)
            if current is None or not current.is_live(now) or current.value != old_value:
                return False
            entry = _Entry(new_value, now + self._ttl)
            self._store[key] = entry
            self._markers.push(key, entry.expiration)
        return True

    def remove(self, key: Hashable) -> Any:
        """Remove the live entry for `key` and return its value, or None."""
        self._check_closed()
        self._cleanup_if_necessary()
        now = self._clock()
        with self._store_lock:
            old = self._store.pop(key, None)
        if old is None:
            return None
        if old.is_live(now):
            self._on_removed(key, old.value)
            return old.value
        self._on_expired(key, old.value)
        return None

    def remove_if_equal(self, key: Hashable, value: Any) -> bool:
        self._check_closed()
        self._cleanup_if_necessary()
        now = self._clock()
        with self._store_lock:
            current = self._store.get(key)
            if current is None or not current.is_live(now) or current.value != value:
                return False
            del self._store[key]
        self._on_removed(key, current.value)
        return True

    def __delitem__(self, key: Hashable) -> None:
        if self.remove(key) is None:
            raise KeyError(key)

    def pop(self, key: Hashable, default: Any = _MISSING) -> Any:
        value = self.remove(key)
        if value is None:
            if default is _MISSING:
                raise KeyError(key)
            return default
        return value

    def popitem(self) -> Tuple[Hashable, Any]:
        for key in self.keys():
            value = self.remove(key)
            if value is not None:
                return key, value
        raise KeyError("popitem(): map is empty")

    def update(self, other: Any = (), **kwargs: Any) -> None:
        self._check_closed()
        if isinstance(other, Mapping):
            pairs = list(other.items())
        elif hasattr(other, "keys"):
            pairs = [(k, other[k]) for k in other.keys()]
        else:
            pairs = list(other)
        pairs.extend(kwargs.items())
        if not pairs:
            return
        for _, value in pairs:
            self._check_value(value)

        now = self._clock()
        expiration = now + self._ttl
        superseded = []
        with self._store_lock:
            self._check_closed()
            for key, value in pairs:
                old = self._store.get(key)
                self._store[key] = _Entry(value, expiration)
                if old is not None:
                    superseded.append((key, old))
            self._markers.push_all((key, expiration) for key, _ in pairs)
        for key, old in superseded:
            self._superseded(key, old, now)

    def put_all(self, mapping: Mapping) -> None:
        if mapping is None:
            return
        self.update(mapping)

    def clear(self) -> None:
        """Drop every entry and marker. Listeners are not notified."""
        self._check_closed()
        with self._store_lock:
            self._check_closed()
            self._store.clear()
            self._markers.clear()

    # ---------- listeners ----------

    def add_expiration_listener(self, listener: ExpirationListener) -> None:
        """
        Register `listener(key, value, is_expired)`. Only a weak reference is
        kept, so the caller must hold on to the listener.
        """
        self._check_closed()
        self._listeners.add(listener)

    def remove_expiration_listener(self, listener: ExpirationListener) -> bool:
        return self._listeners.remove(listener)

    def _on_removed(self, key: Hashable, value: Any) -> None:
        expiring_map_entries_removed_total.labels(map=self.name).inc()
        self._listeners.notify(key, value, False)

    def _on_expired(self, key: Hashable, value: Any) -> None:
        expiring_map_entries_expired_total.labels(map=self.name).inc()
        self._listeners.notify(key, value, True)

    def _superseded(self, key: Hashable, old: Optional[_Entry], now: float) -> Any:
        if old is None:
            return None
        if old.is_live(now):
            return old.value
        self._on_expired(key, old.value)
        return None

    # ---------- expiration ----------

    def sweep(self) -> int:
        """
        Purge entries whose markers are due, then scan the whole store for
        anything the markers missed. Returns the number of entries expired.
        """
        with self._state_lock.read_lock():
            if self._closed:
                return 0
            expired = self._collect_expired(drain_markers=True)
        for key, value in expired:
            self._on_expired(key, value)
        return len(expired)

    def purge_expired(self) -> int:
        """Full-scan purge without touching the marker queue."""
        with self._state_lock.read_lock():
            if self._closed:
                return 0
            expired = self._collect_expired(drain_markers=False)
        expiring_map_sweeps_total.labels(map=self.name, kind="opportunistic").inc()
        for key, value in expired:
            self._on_expired(key, value)
        return len(expired)

    def _collect_expired(self, drain_markers: bool) -> List[Tuple[Hashable, Any]]:
        now = self._clock()
        expired = []
        if drain_markers:
            stale = 0
            for marker in self._markers.drain_due(now):
                with self._store_lock:
                    entry = self._store.get(marker.key)
                    if entry is None or entry.expiration != marker.expiration:
                        stale += 1
                        continue
                    if not entry.is_live(now):
                        del self._store[marker.key]
                        expired.append((marker.key, entry.value))
            if stale:
                expiring_map_stale_markers_total.labels(map=self.name).inc(stale)

        with self._store_lock:
            for key, entry in list(self._store.items()):
                if not entry.is_live(now):
                    del self._store[key]
                    expired.append((key, entry.value))
        return expired

    def _scheduled_sweep(self) -> int:
        start = time.time()
        with tracer.start_as_current_span(
            "expiring_map.sweep",
            attributes={"expiring_map.name": self.name},
        ) as span:
            expired = self.sweep()
            span.set_attribute("expiring_map.expired", expired)

        expiring_map_sweeps_total.labels(map=self.name, kind="scheduled").inc()
        expiring_map_sweep_duration_ms.labels(map=self.name).observe((time.time() - start) * 1000)
        expiring_map_entries.labels(map=self.name).set(len(self._store))
        expiring_map_pending_markers.labels(map=self.name).set(len(self._markers))
        if expired:
            log.debug("sweep expired entries", extra={"extra_fields": {"map": self.name, "expired": expired}})
        return expired

    def _on_sweep_error(self, error: Exception) -> None:
        expiring_map_sweep_errors_total.labels(map=self.name).inc()
        log.error(
            "expiring map sweep failed",
            exc_info=(type(error), error, error.__traceback__),
            extra={"extra_fields": {"map": self.name}},
        )

    def _cleanup_if_necessary(self) -> None:
        if self._closed or self._cleanup_probability <= 0:
            return
        if random.random() < self._cleanup_probability:
            self.purge_expired()

    # ---------- lifecycle ----------

    def close(self) -> None:
        """Stop the sweep thread and release entries, markers and listeners. Safe to call twice."""
        try:
            with self._store_lock:
                if self._closed:
                    return
                self._closed = True
            self._scheduler.stop(self._shutdown_timeout)
            with self._state_lock.write_lock():
                with self._store_lock:
                    self._markers.clear()
                    self._store.clear()
                self._listeners.clear()
            log.info("expiring map closed", extra={"extra_fields": {"map": self.name}})
        except Exception:
            log.error("expiring map close failed", exc_info=True, extra={"extra_fields": {"map": self.name}})

    def __enter__(self) -> "ExpiringMap":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        close_quietly(self)

    def _check_closed(self) -> None:
        if self._closed:
            raise MapClosedError("map is closed")

    @staticmethod
    def _check_value(value: Any) -> None:
        if value is None:
            raise ValueError("value cannot be None")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, time_to_live={self._ttl}, size={len(self._store)})"
