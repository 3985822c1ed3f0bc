from prometheus_client import Counter, Histogram, Gauge

# =========================
# Expiration / Removal
# =========================

# 1. Entries purged because their TTL elapsed
expiring_map_entries_expired_total = Counter(
    "expiring_map_entries_expired_total",
    "Total entries removed because their time-to-live elapsed",
    ["map"]
)

# 2. Entries removed explicitly (remove / replace)
expiring_map_entries_removed_total = Counter(
    "expiring_map_entries_removed_total",
    "Total entries removed by an explicit API call",
    ["map"]
)

# =========================
# Sweep
# =========================

expiring_map_sweeps_total = Counter(
    "expiring_map_sweeps_total",
    "Total cleanup passes run",
    ["map", "kind"]  # scheduled | opportunistic
)

expiring_map_sweep_errors_total = Counter(
    "expiring_map_sweep_errors_total",
    "Total cleanup passes that failed",
    ["map"]
)

# Markers popped for a key that was refreshed or removed since
expiring_map_stale_markers_total = Counter(
    "expiring_map_stale_markers_total",
    "Total stale expiration markers discarded by the sweep",
    ["map"]
)

expiring_map_sweep_duration_ms = Histogram(
    "expiring_map_sweep_duration_ms",
    "Time taken by a scheduled sweep pass (ms)",
    ["map"],
    buckets=(0.1, 0.5, 1, 5, 10, 50, 100, 500, 1000)
)

# =========================
# Listeners
# =========================

expiring_map_listener_errors_total = Counter(
    "expiring_map_listener_errors_total",
    "Total expiration listener callbacks that raised",
    ["map"]
)

# =========================
# Size
# =========================

expiring_map_entries = Gauge(
    "expiring_map_entries",
    "Entries held in the store after the last sweep (live and not yet purged)",
    ["map"]
)

expiring_map_pending_markers = Gauge(
    "expiring_map_pending_markers",
    "Expiration markers waiting in the queue after the last sweep",
    ["map"]
)
