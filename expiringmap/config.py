import os
from dataclasses import dataclass

DEFAULT_TIME_TO_LIVE = 60          # seconds
DEFAULT_EXPIRATION_INTERVAL = 1    # seconds
CLEANUP_PROBABILITY = 0.05         # 5% of reads run an opportunistic cleanup
DEFAULT_SHUTDOWN_TIMEOUT = 1.0     # seconds


@dataclass(frozen=True)
class ExpiringMapConfig:
    """
    Caller-owned settings for one ExpiringMap. Pass it to
    ExpiringMap.from_config(); nothing here is global.
    """
    name: str = "default"
    time_to_live: float = DEFAULT_TIME_TO_LIVE
    expiration_interval: float = DEFAULT_EXPIRATION_INTERVAL
    cleanup_probability: float = CLEANUP_PROBABILITY
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT

    @classmethod
    def from_env(cls, prefix: str = "EXPIRING_MAP_") -> "ExpiringMapConfig":
        return cls(
            name=os.getenv(f"{prefix}NAME", "default"),
            time_to_live=float(os.getenv(f"{prefix}TTL_SEC", str(DEFAULT_TIME_TO_LIVE))),
            expiration_interval=float(os.getenv(f"{prefix}CHECK_INTERVAL_SEC", str(DEFAULT_EXPIRATION_INTERVAL))),
            cleanup_probability=float(os.getenv(f"{prefix}CLEANUP_PROBABILITY", str(CLEANUP_PROBABILITY))),
            shutdown_timeout=float(os.getenv(f"{prefix}SHUTDOWN_TIMEOUT_SEC", str(DEFAULT_SHUTDOWN_TIMEOUT))),
        )
