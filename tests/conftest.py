"""Pytest configuration and fixtures for fifo-semaphore tests."""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import AsyncGenerator, Generator
from typing import TYPE_CHECKING, Optional

import pytest

if TYPE_CHECKING:
    from redis import Redis
    from redis.asyncio import Redis as AIORedis


def is_docker_available() -> bool:
    """Check if Docker is available."""
    import shutil
    import subprocess

    if not shutil.which("docker"):
        return False
    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return False


# Skip integration tests if Docker is not available
requires_docker = pytest.mark.skipif(
    not is_docker_available(),
    reason="Docker is not available",
)


# ---------------------------------------------------------------------------
# In-memory queue store
# ---------------------------------------------------------------------------


class FakeRedisLists:
    """Shared in-memory state standing in for the Redis server.

    Mirrors the list semantics the semaphore relies on: RPUSH returns the
    new length, LPOS returns the first index or None, LPOP removes from the
    head, empty lists disappear, and EXPIRE only applies to existing keys.
    """

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.ttls: dict[str, int] = {}
        self.failures: dict[str, Exception] = {}
        self.connections_opened = 0
        self.connections_open = 0
        self.max_connections_open = 0
        self.calls: list[str] = []

    def fail(self, command: str, exc: Exception) -> None:
        """Make every subsequent ``command`` raise ``exc``."""
        self.failures[command] = exc

    def _run(self, command: str) -> None:
        self.calls.append(command)
        exc = self.failures.get(command)
        if exc is not None:
            raise exc

    def connect(self) -> None:
        self._run("CONNECT")
        self.connections_opened += 1
        self.connections_open += 1
        self.max_connections_open = max(self.max_connections_open, self.connections_open)

    def disconnect(self) -> None:
        self.connections_open -= 1

    def rpush(self, key: str, identity: str) -> int:
        self._run("RPUSH")
        items = self.lists.setdefault(key, [])
        items.append(identity)
        return len(items)

    def lpos(self, key: str, identity: str) -> Optional[int]:
        self._run("LPOS")
        items = self.lists.get(key, [])
        return items.index(identity) if identity in items else None

    def lpop(self, key: str, count: int) -> list[str]:
        self._run("LPOP")
        items = self.lists.get(key, [])
        popped, remaining = items[:count], items[count:]
        if remaining:
            self.lists[key] = remaining
        else:
            self.lists.pop(key, None)
            self.ttls.pop(key, None)
        return popped

    def expire(self, key: str, seconds: int) -> bool:
        self._run("EXPIRE")
        if key not in self.lists:
            return False
        self.ttls[key] = seconds
        return True

    def llen(self, key: str) -> int:
        self._run("LLEN")
        return len(self.lists.get(key, []))


class AIOFakeQueue:
    """``AIOQueueStore`` over ``FakeRedisLists``; every command yields once."""

    def __init__(self, server: FakeRedisLists, key: str) -> None:
        self._server = server
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    async def push(self, identity: str) -> int:
        result = self._server.rpush(self._key, identity)
        await asyncio.sleep(0)
        return result

    async def position(self, identity: str) -> Optional[int]:
        await asyncio.sleep(0)
        return self._server.lpos(self._key, identity)

    async def pop(self, count: int = 1) -> list[str]:
        await asyncio.sleep(0)
        return self._server.lpop(self._key, count)

    async def expire(self, seconds: int) -> bool:
        await asyncio.sleep(0)
        return self._server.expire(self._key, seconds)

    async def length(self) -> int:
        return self._server.llen(self._key)

    async def aclose(self) -> None:
        self._server.disconnect()


class FakeQueue:
    """``QueueStore`` over ``FakeRedisLists``."""

    def __init__(self, server: FakeRedisLists, key: str) -> None:
        self._server = server
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def push(self, identity: str) -> int:
        return self._server.rpush(self._key, identity)

    def position(self, identity: str) -> Optional[int]:
        return self._server.lpos(self._key, identity)

    def pop(self, count: int = 1) -> list[str]:
        return self._server.lpop(self._key, count)

    def expire(self, seconds: int) -> bool:
        return self._server.expire(self._key, seconds)

    def length(self) -> int:
        return self._server.llen(self._key)

    def close(self) -> None:
        self._server.disconnect()


@pytest.fixture
def fake_server() -> FakeRedisLists:
    """Return a fresh in-memory Redis stand-in."""
    return FakeRedisLists()


@pytest.fixture
def aio_connect(fake_server: FakeRedisLists):
    """Return an async queue factory bound to ``fake_server``."""

    async def connect(endpoint: str, key: str) -> AIOFakeQueue:
        fake_server.connect()
        await asyncio.sleep(0)
        return AIOFakeQueue(fake_server, key)

    return connect


@pytest.fixture
def sync_connect(fake_server: FakeRedisLists):
    """Return a blocking queue factory bound to ``fake_server``."""

    def connect(endpoint: str, key: str) -> FakeQueue:
        fake_server.connect()
        return FakeQueue(fake_server, key)

    return connect


# ---------------------------------------------------------------------------
# Docker Redis
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def docker_compose_file() -> str:
    """Return path to docker-compose file for Redis."""
    return os.path.join(os.path.dirname(__file__), "docker-compose.yml")


@pytest.fixture(scope="session")
def redis_port() -> int:
    """Return the Redis port for tests."""
    return 6399  # Use non-standard port to avoid conflicts


@pytest.fixture(scope="session")
def docker_redis(docker_compose_file: str, redis_port: int) -> Generator[str, None, None]:
    """Start Redis in Docker for integration tests.

    Returns the Redis URL.
    """
    import subprocess

    compose_content = f"""
services:
  redis:
    image: redis:7-alpine
    ports:
      - "{redis_port}:6379"
    healthcheck:
      test: ["CMD", "redis-cli", "ping"]
      interval: 1s
      timeout: 3s
      retries: 30
"""
    with open(docker_compose_file, "w") as f:
        f.write(compose_content)

    subprocess.run(
        ["docker", "compose", "-f", docker_compose_file, "up", "-d", "--wait"],
        check=True,
        capture_output=True,
    )

    redis_url = f"redis://localhost:{redis_port}/0"
    _wait_for_redis(redis_url)

    yield redis_url

    subprocess.run(
        ["docker", "compose", "-f", docker_compose_file, "down", "-v"],
        capture_output=True,
    )
    os.remove(docker_compose_file)


def _wait_for_redis(url: str, timeout: float = 30) -> None:
    """Wait for Redis to be ready."""
    from redis import Redis
    from redis.exceptions import ConnectionError

    start = time.time()
    while time.time() - start < timeout:
        try:
            r = Redis.from_url(url)
            r.ping()
            r.close()
            return
        except ConnectionError:
            time.sleep(0.5)
    raise TimeoutError(f"Redis at {url} did not become ready in {timeout}s")


@pytest.fixture
def redis_client(docker_redis: str) -> Generator[Redis, None, None]:
    """Create a Redis client connected to Docker Redis."""
    from redis import Redis

    client = Redis.from_url(docker_redis, decode_responses=True)
    client.flushdb()
    yield client
    try:
        client.flushdb()
    except Exception:
        pass  # Ignore errors during cleanup
    client.close()


@pytest.fixture
async def aioredis_client(docker_redis: str) -> AsyncGenerator[AIORedis, None]:
    """Create an async Redis client connected to Docker Redis."""
    from redis.asyncio import Redis as AIORedis

    client = AIORedis.from_url(docker_redis, decode_responses=True)
    await client.flushdb()
    yield client
    try:
        await client.flushdb()
    except Exception:
        pass  # Ignore errors during cleanup
    await client.aclose()


@pytest.fixture
def unique_key() -> Generator[str, None, None]:
    """Generate a unique key for each test."""
    import uuid

    yield f"test-{uuid.uuid4().hex[:8]}"
