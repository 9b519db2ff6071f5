import os
import sys
from pathlib import Path

import pytest

os.environ.setdefault("PG_HOST", "localhost")
os.environ.setdefault("PG_PORT", "5432")
os.environ.setdefault("PG_DB", "netpulse_test")
os.environ.setdefault("PG_USER", "netpulse")
os.environ.setdefault("PG_PASS", "netpulse_dev")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
services_path = Path(repo_root) / "services"
sys.path.insert(0, repo_root)
sys.path.insert(0, str(services_path))

from tests.helpers.fakes import FakeConn, FakePool, FakePublisher, FakeRedis  # noqa: E402

from shared.cache import Cache  # noqa: E402
from shared.events import EventPublisher  # noqa: E402
from shared.redis_client import RedisConnection  # noqa: E402


@pytest.fixture
def fake_conn():
    return FakeConn()


@pytest.fixture
def fake_pool(fake_conn):
    return FakePool(fake_conn)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_connection(fake_redis):
    """A RedisConnection whose client is the in-memory fake."""
    connection = RedisConnection("redis://fake:6379/0")
    connection._client = fake_redis
    connection._connected = True
    return connection


@pytest.fixture
def cache(redis_connection):
    return Cache(redis_connection)


@pytest.fixture
def publisher(redis_connection):
    return EventPublisher(redis_connection)


@pytest.fixture
def recording_publisher():
    return FakePublisher()
