from expiringmap.cache.expiring_map import ExpiringMap, MapClosedError
from expiringmap.cache.listeners import ExpirationListener, ListenerRegistry
from expiringmap.cache.markers import ExpirationMarker, MarkerQueue

__all__ = [
    "ExpiringMap",
    "MapClosedError",
    "ExpirationListener",
    "ListenerRegistry",
    "ExpirationMarker",
    "MarkerQueue",
]
