"""Tests for AuthContextResolver."""
import pytest

from passgage_session.auth import AuthContextResolver
from passgage_session.data import AuthMode
from passgage_session.exceptions import SessionNotFound


class TestResolve:

    @pytest.mark.asyncio
    async def test_administrative_carries_only_the_key(self, store):
        session_id = await store.create_session(administrative_key="K")
        context = await AuthContextResolver(store).resolve(session_id)
        assert context.mode is AuthMode.ADMINISTRATIVE
        assert context.administrative_key == "K"
        assert context.personal_token is None
        assert context.authorization == "Bearer K"

    @pytest.mark.asyncio
    async def test_personal_carries_only_the_token(self, store):
        session_id = await store.create_session(administrative_key="K", token="jwt")
        await store.switch_mode(session_id, "personal")
        context = await AuthContextResolver(store).resolve(session_id)
        assert context.mode is AuthMode.PERSONAL
        assert context.personal_token == "jwt"
        assert context.administrative_key is None

    @pytest.mark.asyncio
    async def test_personal_without_token(self, store):
        """Email and password alone do not authorize a call."""
        session_id = await store.create_session(email="a@b.com", password="p")
        assert await AuthContextResolver(store).resolve(session_id) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_id", [None, "", "missing"])
    async def test_absent(self, store, session_id):
        assert await AuthContextResolver(store).resolve(session_id) is None

    @pytest.mark.asyncio
    async def test_repr_hides_secrets(self, store):
        session_id = await store.create_session(administrative_key="super-secret")
        context = await AuthContextResolver(store).resolve(session_id)
        assert "super-secret" not in repr(context)

    @pytest.mark.asyncio
    async def test_fresh_after_mode_switch(self, store):
        resolver = AuthContextResolver(store)
        session_id = await store.create_session(administrative_key="K", token="jwt")
        first = await resolver.resolve(session_id)
        await store.switch_mode(session_id, "personal")
        second = await resolver.resolve(session_id)
        assert first.mode is AuthMode.ADMINISTRATIVE
        assert second.mode is AuthMode.PERSONAL


class TestRequire:

    @pytest.mark.asyncio
    async def test_missing_session_raises(self, store):
        with pytest.raises(SessionNotFound) as exc:
            await AuthContextResolver(store).require("missing")
        assert exc.value.to_dict()["sessionRequired"] is True

    @pytest.mark.asyncio
    async def test_live_session(self, store):
        session_id = await store.create_session(token="jwt")
        context = await AuthContextResolver(store).require(session_id)
        assert context.personal_token == "jwt"
