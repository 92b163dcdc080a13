"""
Shared fixtures for File Zipper tests
"""
import io
import json
import zipfile
from typing import Callable, Dict, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError


class FakeRedis:
    """In-memory stand-in for the async Redis client (GET/PING only)"""

    def __init__(self, data: Optional[Dict[str, object]] = None, fail: bool = False):
        self.data: Dict[str, object] = dict(data or {})
        self.fail = fail
        self.calls = []

    async def get(self, key):
        self.calls.append(key)
        if self.fail:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")
        return self.data.get(key)

    async def ping(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")
        return True

    def put_manifest(self, ref: str, entries, namespace: str = "zip"):
        self.data[f"{namespace}:{ref}"] = json.dumps(entries).encode("utf-8")


class RemoteFiles:
    """
    Routes for httpx.MockTransport.

    remote.add("http://files.example/a.txt", b"hello")
    remote.add("http://bad.example/404", b"not found", status=404)
    """

    def __init__(self):
        self.routes: Dict[str, Tuple[int, bytes, Dict[str, str]]] = {}
        self.errors: Dict[str, Exception] = {}
        self.requested = []

    def add(self, url: str, content: bytes, status: int = 200, headers: Optional[Dict[str, str]] = None):
        self.routes[url] = (status, content, headers or {})

    def fail(self, url: str, exc: Exception):
        self.errors[url] = exc

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        if url in self.errors:
            raise self.errors[url]
        if url not in self.routes:
            return httpx.Response(404, content=b"no such file")
        status, content, headers = self.routes[url]
        return httpx.Response(status, content=content, headers=headers)


def read_zip(data: bytes) -> zipfile.ZipFile:
    zf = zipfile.ZipFile(io.BytesIO(data))
    assert zf.testzip() is None
    return zf


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def remote() -> RemoteFiles:
    return RemoteFiles()


@pytest_asyncio.fixture
async def http_client(remote: RemoteFiles):
    async with httpx.AsyncClient(transport=httpx.MockTransport(remote.handler)) as client:
        yield client


@pytest.fixture
def make_file(tmp_path) -> Callable[..., str]:
    def _make(name: str, content: bytes) -> str:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return str(path)
    return _make


@pytest_asyncio.fixture
async def client(fake_redis: FakeRedis, http_client: httpx.AsyncClient):
    """HTTP client bound to the app, with cache and remote sources faked"""
    from zipper.main import app
    from zipper.api.dependencies import get_redis, get_http_client

    app.state.redis = fake_redis
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_http_client] = lambda: http_client

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    del app.state.redis
