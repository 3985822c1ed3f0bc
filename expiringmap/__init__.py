from expiringmap.cache import ExpiringMap, MapClosedError
from expiringmap.config import ExpiringMapConfig

__all__ = ["ExpiringMap", "ExpiringMapConfig", "MapClosedError"]
__version__ = "0.1.0"
