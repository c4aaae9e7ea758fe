"""
Tests for the key-value backends.

Tests cover:
- MemoryBackend TTL expiry, delete and prefix listing
- KVBackend against a fake KV REST service (aiohttp TestServer)
- RedisBackend against an in-test fake client, including error mapping
- backend factory
"""
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from redis.exceptions import ConnectionError as RedisConnectionError

from passgage_session.backends import MemoryBackend, get_backend
from passgage_session.backends.kv import KVBackend, MIN_TTL
from passgage_session.backends.redis_store import RedisBackend
from passgage_session.exceptions import BackendUnavailable

from .conftest import FakeClock


# --- Test MemoryBackend ---

class TestMemoryBackend:

    @pytest.mark.asyncio
    async def test_put_get(self):
        backend = MemoryBackend()
        await backend.put("session:a", "value", 60)
        assert await backend.get("session:a") == "value"
        assert await backend.get("session:missing") is None

    @pytest.mark.asyncio
    async def test_key_unreadable_after_ttl(self):
        clock = FakeClock()
        backend = MemoryBackend(clock=clock)
        await backend.put("k", "v", 10)
        clock.advance(9)
        assert await backend.get("k") == "v"
        clock.advance(1)
        assert await backend.get("k") is None

    @pytest.mark.asyncio
    async def test_delete(self):
        backend = MemoryBackend()
        await backend.put("k", "v", 60)
        assert await backend.delete("k") is True
        assert await backend.delete("k") is False
        assert await backend.get("k") is None

    @pytest.mark.asyncio
    async def test_replace_only_existing_keys(self):
        clock = FakeClock()
        backend = MemoryBackend(clock=clock)
        assert await backend.replace("k", "v", 60) is False
        assert await backend.get("k") is None
        await backend.put("k", "v", 10)
        assert await backend.replace("k", "v2", 60) is True
        assert await backend.get("k") == "v2"
        clock.advance(61)
        assert await backend.replace("k", "v3", 60) is False

    @pytest.mark.asyncio
    async def test_list_by_prefix_skips_expired(self):
        clock = FakeClock()
        backend = MemoryBackend(clock=clock)
        await backend.put("session:1", "a", 100)
        await backend.put("session:2", "b", 5)
        await backend.put("other:1", "c", 100)
        clock.advance(10)
        assert await backend.list_by_prefix("session:") == ["session:1"]

    @pytest.mark.asyncio
    async def test_sweep(self):
        clock = FakeClock()
        backend = MemoryBackend(clock=clock)
        await backend.put("a", "1", 5)
        await backend.put("b", "2", 50)
        clock.advance(6)
        assert backend.sweep() == 1
        assert len(backend) == 1


# --- Test KVBackend ---

def fake_kv_app(store: dict, calls: list) -> web.Application:
    base = "/client/v4/accounts/{account}/storage/kv/namespaces/{ns}"

    async def get_value(request):
        calls.append(("GET", request.match_info["key"], None))
        if request.headers.get("Authorization") != "Bearer kv-token":
            return web.Response(status=403)
        key = request.match_info["key"]
        if key not in store:
            return web.json_response({"success": False}, status=404)
        return web.Response(text=store[key])

    async def put_value(request):
        key = request.match_info["key"]
        calls.append(("PUT", key, request.query.get("expiration_ttl")))
        store[key] = await request.text()
        return web.json_response({"success": True})

    async def delete_value(request):
        key = request.match_info["key"]
        calls.append(("DELETE", key, None))
        store.pop(key, None)
        return web.json_response({"success": True})

    async def list_keys(request):
        prefix = request.query.get("prefix", "")
        names = sorted(k for k in store if k.startswith(prefix))
        cursor = request.query.get("cursor")
        page = names[1:] if cursor else names[:1]
        info = {"cursor": "" if cursor or len(names) <= 1 else "next"}
        return web.json_response({
            "success": True,
            "result": [{"name": n} for n in page],
            "result_info": info,
        })

    async def broken(request):
        return web.Response(status=500)

    app = web.Application()
    app.router.add_get(base + "/values/{key}", get_value)
    app.router.add_put(base + "/values/{key}", put_value)
    app.router.add_delete(base + "/values/{key}", delete_value)
    app.router.add_get(base + "/keys", list_keys)
    app.router.add_get("/broken/v4/accounts/{account}/storage/kv/namespaces/{ns}/values/{key}", broken)
    return app


class TestKVBackend:

    @pytest.mark.asyncio
    async def test_crud_against_service(self):
        data, calls = {}, []
        async with TestServer(fake_kv_app(data, calls)) as server:
            backend = KVBackend(
                "acct", "ns", "kv-token", api_url=str(server.make_url("/client/v4")),
            )
            try:
                await backend.put("session:abc", '{"id": "abc"}', 3600)
                assert data["session:abc"] == '{"id": "abc"}'
                assert await backend.get("session:abc") == '{"id": "abc"}'
                assert await backend.get("session:none") is None
                await backend.put("session:def", "x", 10)
                assert sorted(await backend.list_by_prefix("session:")) == [
                    "session:abc", "session:def",
                ]
                assert await backend.delete("session:abc") is True
                assert await backend.get("session:abc") is None
                assert await backend.replace("session:abc", "y", 3600) is False
                assert "session:abc" not in data
            finally:
                await backend.close()
        puts = [c for c in calls if c[0] == "PUT"]
        assert puts[0][2] == "3600"
        # service minimum TTL
        assert puts[1][2] == str(MIN_TTL)

    @pytest.mark.asyncio
    async def test_server_error_is_backend_unavailable(self):
        async with TestServer(fake_kv_app({}, [])) as server:
            backend = KVBackend("acct", "ns", "kv-token", api_url=str(server.make_url("/broken/v4")))
            try:
                with pytest.raises(BackendUnavailable):
                    await backend.get("session:abc")
            finally:
                await backend.close()

    @pytest.mark.asyncio
    async def test_unreachable_service(self):
        backend = KVBackend("acct", "ns", "kv-token", api_url="http://127.0.0.1:9", timeout=2)
        try:
            with pytest.raises(BackendUnavailable):
                await backend.get("session:abc")
        finally:
            await backend.close()

    def test_requires_settings(self):
        with pytest.raises(ValueError):
            KVBackend("", "ns", "token")


# --- Test RedisBackend ---

class FakeRedis:
    def __init__(self, fail: bool = False):
        self.data = {}
        self.ttls = {}
        self.fail = fail

    def _check(self):
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ex=None, xx=False):
        self._check()
        if xx and key not in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    async def scan_iter(self, match=None, count=None):
        self._check()
        prefix = match.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key

    async def aclose(self):
        pass


class TestRedisBackend:

    @pytest.mark.asyncio
    async def test_operations(self):
        client = FakeRedis()
        backend = RedisBackend(client=client)
        await backend.put("session:1", "v", 120)
        assert client.ttls["session:1"] == 120
        assert await backend.get("session:1") == "v"
        assert await backend.list_by_prefix("session:") == ["session:1"]
        assert await backend.delete("session:1") is True
        assert await backend.delete("session:1") is False
        assert backend.native_expiry is True

    @pytest.mark.asyncio
    async def test_replace_uses_conditional_set(self):
        client = FakeRedis()
        backend = RedisBackend(client=client)
        assert await backend.replace("session:1", "v", 60) is False
        assert "session:1" not in client.data
        await backend.put("session:1", "v", 60)
        assert await backend.replace("session:1", "v2", 90) is True
        assert client.data["session:1"] == "v2"
        assert client.ttls["session:1"] == 90

    @pytest.mark.asyncio
    async def test_errors_map_to_backend_unavailable(self):
        backend = RedisBackend(client=FakeRedis(fail=True))
        with pytest.raises(BackendUnavailable):
            await backend.get("session:1")
        with pytest.raises(BackendUnavailable):
            await backend.put("session:1", "v", 60)
        with pytest.raises(BackendUnavailable):
            await backend.list_by_prefix("session:")

    def test_requires_url_or_client(self):
        with pytest.raises(ValueError):
            RedisBackend()


# --- Test Factory ---

class TestFactory:

    def test_memory(self):
        assert isinstance(get_backend("memory"), MemoryBackend)

    def test_redis(self):
        assert isinstance(get_backend("redis", client=FakeRedis()), RedisBackend)

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_backend("sqlite")
