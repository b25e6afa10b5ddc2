"""Unit tests for single-use token storage."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from exposureshield.models.user import TokenPurpose, TokenRecord
from exposureshield.services.kv_store import MemoryKeyValueStore
from exposureshield.services.token_store import TokenStore, hash_token


@pytest.fixture
def store(clock):
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture
def tokens(store):
    return TokenStore(store)


class TestCreate:

    async def test_raw_token_is_64_hex_chars(self, tokens):
        raw = await tokens.create(TokenPurpose.EMAIL_VERIFY, "user-1", 60)
        assert len(raw) == 64
        int(raw, 16)

    async def test_only_hash_is_stored(self, tokens, store):
        raw = await tokens.create(TokenPurpose.PASSWORD_RESET, "user-1", 60)
        key = f"token:password-reset:{hash_token(raw)}"
        data = await store.get(key)
        assert data is not None
        assert raw not in data
        assert raw not in key
        assert json.loads(data)["subjectId"] == "user-1"

    async def test_tokens_are_unique(self, tokens):
        raws = {await tokens.create(TokenPurpose.REFRESH, "user-1", 60) for _ in range(20)}
        assert len(raws) == 20


class TestConsume:

    async def test_consume_once(self, tokens):
        raw = await tokens.create(TokenPurpose.PASSWORD_RESET, "user-1", 60)
        assert await tokens.consume(raw, TokenPurpose.PASSWORD_RESET) == "user-1"
        assert await tokens.consume(raw, TokenPurpose.PASSWORD_RESET) is None

    async def test_purpose_is_enforced(self, tokens):
        raw = await tokens.create(TokenPurpose.EMAIL_VERIFY, "user-1", 60)
        assert await tokens.consume(raw, TokenPurpose.PASSWORD_RESET) is None
        # A wrong-purpose attempt does not burn the token
        assert await tokens.consume(raw, TokenPurpose.EMAIL_VERIFY) == "user-1"

    async def test_concurrent_consumes_admit_one(self, tokens):
        raw = await tokens.create(TokenPurpose.PASSWORD_RESET, "user-1", 60)
        results = await asyncio.gather(
            *(tokens.consume(raw, TokenPurpose.PASSWORD_RESET) for _ in range(5))
        )
        assert results.count("user-1") == 1
        assert results.count(None) == 4

    async def test_expired_token(self, tokens, clock):
        raw = await tokens.create(TokenPurpose.PASSWORD_RESET, "user-1", 60)
        clock.advance(61)
        assert await tokens.consume(raw, TokenPurpose.PASSWORD_RESET) is None

    async def test_record_past_its_expiry_is_rejected(self, tokens, store):
        raw = "a" * 64
        record = TokenRecord(
            purpose=TokenPurpose.PASSWORD_RESET,
            subject_id="user-1",
            expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
        )
        await store.set(
            f"token:password-reset:{hash_token(raw)}", record.model_dump_json(by_alias=True)
        )
        assert await tokens.consume(raw, TokenPurpose.PASSWORD_RESET) is None

    async def test_malformed_record(self, tokens, store):
        raw = "b" * 64
        await store.set(f"token:email-verify:{hash_token(raw)}", "not json")
        assert await tokens.consume(raw, TokenPurpose.EMAIL_VERIFY) is None

    @pytest.mark.parametrize("raw", ["", None, "unknown-token"])
    async def test_bogus_tokens(self, tokens, raw):
        assert await tokens.consume(raw, TokenPurpose.REFRESH) is None


class TestRevoke:

    async def test_revoke(self, tokens):
        raw = await tokens.create(TokenPurpose.REFRESH, "user-1", 60)
        assert await tokens.revoke(raw, TokenPurpose.REFRESH) is True
        assert await tokens.revoke(raw, TokenPurpose.REFRESH) is False
        assert await tokens.consume(raw, TokenPurpose.REFRESH) is None

    async def test_revoke_empty(self, tokens):
        assert await tokens.revoke("", TokenPurpose.REFRESH) is False
