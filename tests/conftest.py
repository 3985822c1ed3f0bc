"""
Test configuration and fixtures.
This file provides common fixtures for all tests.
"""
import pytest

from expiringmap.cache import ExpiringMap
from expiringmap.cache.quietly import close_quietly

# Long enough that the background thread never fires during a unit test
IDLE_INTERVAL = 3600


class FakeClock:
    """Monotonic clock the test advances by hand."""
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Recorder:
    """Expiration listener that keeps every call."""
    def __init__(self):
        self.calls = []

    def __call__(self, key, value, is_expired):
        self.calls.append((key, value, is_expired))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def make_map(clock):
    """Factory for maps on the fake clock; every map is closed on teardown."""
    created = []

    def _make(time_to_live=10, expiration_interval=IDLE_INTERVAL, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("cleanup_probability", 0.0)
        m = ExpiringMap(time_to_live, expiration_interval, **kwargs)
        created.append(m)
        return m

    yield _make
    for m in created:
        close_quietly(m)


@pytest.fixture
def expiring_map(make_map, recorder):
    m = make_map()
    m.add_expiration_listener(recorder)
    return m


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set up test environment variables."""
    test_env = {
        'EXPIRING_MAP_NAME': 'sessions',
        'EXPIRING_MAP_TTL_SEC': '30',
        'EXPIRING_MAP_CHECK_INTERVAL_SEC': '0.5',
        'EXPIRING_MAP_CLEANUP_PROBABILITY': '0.1',
        'EXPIRING_MAP_SHUTDOWN_TIMEOUT_SEC': '2',
        'OTEL_SERVICE_NAME': 'expiringmap-test',
        'OTEL_EXPORTER_OTLP_ENDPOINT': 'localhost:4317',
        'OTEL_EXPORTER_OTLP_INSECURE': 'true',
    }
    for key, value in test_env.items():
        monkeypatch.setenv(key, value)
    return test_env
