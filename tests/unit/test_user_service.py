"""Unit tests for the account directory."""

import asyncio
import json

import pytest

from exposureshield.exceptions import Conflict, NotFound, UpstreamError
from exposureshield.services.kv_store import MemoryKeyValueStore
from exposureshield.services.user_service import (
    UserService,
    is_valid_email,
    normalize_email,
)


@pytest.fixture
def users(kv_store):
    return UserService(kv_store)


class TestEmailHelpers:

    def test_normalize(self):
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
        assert normalize_email(None) == ""

    @pytest.mark.parametrize("email", ["a@b.co", "first.last+tag@sub.example.org"])
    def test_valid(self, email):
        assert is_valid_email(email) is True

    @pytest.mark.parametrize("email", ["", "plain", "a@b", "@b.com", "a b@c.com", "a@b .com"])
    def test_invalid(self, email):
        assert is_valid_email(email) is False


class TestCreateAndLookup:

    async def test_build_user_defaults(self, users):
        user = users.build_user("Bob@Example.com", "hash")
        assert user.email == "bob@example.com"
        assert user.name == "bob"
        assert user.email_verified is False
        assert user.created_at == user.updated_at
        assert user.created_at.tzinfo is not None

    async def test_build_user_ids_are_unique(self, users):
        ids = {users.build_user("a@b.com", "hash").id for _ in range(50)}
        assert len(ids) == 50

    async def test_create_and_get(self, users, kv_store):
        user = await users.create(users.build_user("carol@example.com", "hash", "Carol"))

        by_email = await users.get_by_email("CAROL@example.com ")
        by_id = await users.get_by_id(user.id)
        assert by_email == user
        assert by_id == user

        stored = json.loads(await kv_store.get("user:carol@example.com"))
        assert stored["passwordHash"] == "hash"
        assert stored["emailVerified"] is False
        assert await kv_store.get(f"user_id:{user.id}") == "carol@example.com"

    async def test_duplicate_email_conflicts(self, users):
        await users.create(users.build_user("dave@example.com", "hash"))
        with pytest.raises(Conflict):
            await users.create(users.build_user("DAVE@example.com", "other"))

    async def test_concurrent_creates_admit_one(self, users):
        results = await asyncio.gather(
            *(users.create(users.build_user("race@example.com", "hash")) for _ in range(5)),
            return_exceptions=True,
        )
        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert sum(1 for r in results if isinstance(r, Conflict)) == 4

    async def test_failed_index_write_releases_email(self):
        class FlakyStore(MemoryKeyValueStore):
            fail_index_writes = True

            async def set(self, key, value, ttl_seconds=None):
                if self.fail_index_writes and key.startswith("user_id:"):
                    raise UpstreamError(detail="connection reset")
                await super().set(key, value, ttl_seconds)

        store = FlakyStore()
        users = UserService(store)
        with pytest.raises(UpstreamError):
            await users.create(users.build_user("hank@example.com", "hash"))
        assert await users.get_by_email("hank@example.com") is None

        # The same email can be registered once the backend recovers
        store.fail_index_writes = False
        user = await users.create(users.build_user("hank@example.com", "hash"))
        assert await users.get_by_id(user.id) == user

    async def test_lookups_miss(self, users):
        assert await users.get_by_email("nobody@example.com") is None
        assert await users.get_by_email("") is None
        assert await users.get_by_id("missing") is None
        assert await users.get_by_id("") is None

    async def test_malformed_record_raises_upstream(self, users, kv_store):
        await kv_store.set("user:broken@example.com", "{not json")
        with pytest.raises(UpstreamError):
            await users.get_by_email("broken@example.com")


class TestUpdate:

    async def test_update_merges_and_bumps_updated_at(self, users):
        user = await users.create(users.build_user("erin@example.com", "hash"))
        updated = await users.update(user.id, email_verified=True)

        assert updated.email_verified is True
        assert updated.password_hash == "hash"
        assert updated.created_at == user.created_at
        assert updated.updated_at >= user.updated_at
        assert (await users.get_by_id(user.id)).email_verified is True

    @pytest.mark.parametrize("field", ["id", "email", "created_at"])
    async def test_immutable_fields(self, users, field):
        user = await users.create(users.build_user("frank@example.com", "hash"))
        with pytest.raises(ValueError):
            await users.update(user.id, **{field: "x"})

    async def test_unknown_field(self, users):
        user = await users.create(users.build_user("gina@example.com", "hash"))
        with pytest.raises(ValueError):
            await users.update(user.id, role="admin")

    async def test_unknown_user(self, users):
        with pytest.raises(NotFound):
            await users.update("missing", email_verified=True)
