from __future__ import annotations

import asyncio
from typing import Optional

import pytest
from sqlalchemy.exc import OperationalError

from storefront.services.staff_session import (
    SessionVersionStore,
    SqlSessionVersionStore,
    StaffSessionAuthority,
    hash_pin,
    issue_token,
    parse_token,
    verify_pin,
)


class MemoryVersionStore(SessionVersionStore):
    def __init__(self, session_version: Optional[int] = 1, pin_version: Optional[int] = 1):
        self.session_version = session_version
        self.pin_version = pin_version
        self.pin_hash: Optional[str] = None

    async def get_versions(self):
        return self.session_version, self.pin_version

    async def increment_session_version(self) -> int:
        base = self.session_version or self.pin_version or 1
        self.session_version = base + 1
        return self.session_version

    async def get_pin_hash(self):
        return self.pin_hash

    async def set_pin_hash(self, pin_hash: str) -> None:
        self.pin_hash = pin_hash
        self.pin_version = (self.pin_version or 1) + 1


class BrokenVersionStore(MemoryVersionStore):
    async def get_versions(self):
        raise OperationalError("SELECT", {}, ConnectionError("database unreachable"))


# ---------------------------------------------------------------------------
# token codec
# ---------------------------------------------------------------------------

def test_issue_and_parse_token():
    assert issue_token(3) == "STAFF_VERIFIED:3"
    parsed = parse_token("STAFF_VERIFIED:3")
    assert parsed.valid is True
    assert parsed.version == 3


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "STAFF_VERIFIED",
        "STAFF_VERIFIED:",
        "STAFF_VERIFIED:abc",
        "STAFF_VERIFIED:1:2",
        "STAFF_VERIFIED:-1",
        "STAFF_VERIFIED:1.5",
        "ADMIN_VERIFIED:1",
        "staff_verified:1",
        "STAFF_VERIFIED:１",  # full-width digit
    ],
)
def test_malformed_tokens_are_invalid(token):
    parsed = parse_token(token)
    assert parsed.valid is False
    assert parsed.version is None


# ---------------------------------------------------------------------------
# authority
# ---------------------------------------------------------------------------

def test_issued_token_authorizes_until_revoked():
    async def scenario():
        authority = StaffSessionAuthority(MemoryVersionStore(session_version=4))
        token = await authority.issue()
        assert token == "STAFF_VERIFIED:4"
        assert await authority.authorize(token) is True

        assert await authority.revoke_all() == 5
        assert await authority.authorize(token) is False
        assert await authority.authorize(await authority.issue()) is True

    asyncio.run(scenario())


def test_version_falls_back_to_pin_version_then_default():
    async def scenario():
        legacy = StaffSessionAuthority(MemoryVersionStore(session_version=None, pin_version=7))
        assert await legacy.current_version() == 7
        assert await legacy.authorize("STAFF_VERIFIED:7") is True

        empty = StaffSessionAuthority(MemoryVersionStore(session_version=None, pin_version=None))
        assert await empty.current_version() == 1

    asyncio.run(scenario())


def test_revoke_after_legacy_version_moves_past_it():
    async def scenario():
        authority = StaffSessionAuthority(MemoryVersionStore(session_version=None, pin_version=7))
        assert await authority.revoke_all() == 8
        assert await authority.authorize("STAFF_VERIFIED:7") is False

    asyncio.run(scenario())


def test_storage_failure_fails_open_to_version_one():
    async def scenario():
        authority = StaffSessionAuthority(BrokenVersionStore(session_version=9))
        assert await authority.current_version() == 1
        assert await authority.authorize("STAFF_VERIFIED:1") is True
        assert await authority.authorize("STAFF_VERIFIED:9") is False

    asyncio.run(scenario())


def test_malformed_token_never_reaches_store():
    class ExplodingStore(MemoryVersionStore):
        async def get_versions(self):
            raise AssertionError("store should not be consulted")

    assert asyncio.run(StaffSessionAuthority(ExplodingStore()).authorize("garbage")) is False


# ---------------------------------------------------------------------------
# PIN hashing
# ---------------------------------------------------------------------------

def test_pin_hash_roundtrip_and_format():
    stored = hash_pin("2468", salt="a1b2c3")
    key, _, salt = stored.partition(".")
    assert salt == "a1b2c3"
    assert len(key) == 128  # 64-byte key, hex encoded
    assert verify_pin(stored, "2468") is True
    assert verify_pin(stored, "2469") is False


def test_pin_hash_uses_random_salt():
    assert hash_pin("2468") != hash_pin("2468")


def test_verify_pin_rejects_malformed_hash():
    assert verify_pin("", "2468") is False
    assert verify_pin("deadbeef", "2468") is False
    assert verify_pin(".salt", "2468") is False


# ---------------------------------------------------------------------------
# SQL store
# ---------------------------------------------------------------------------

def test_sql_store_revocation_is_persisted(session_maker):
    async def scenario():
        async with session_maker() as db:
            authority = StaffSessionAuthority(SqlSessionVersionStore(db))
            token = await authority.issue()
            assert token == "STAFF_VERIFIED:1"
            assert await authority.revoke_all() == 2

        # Fresh session sees the bumped counter
        async with session_maker() as db:
            authority = StaffSessionAuthority(SqlSessionVersionStore(db))
            assert await authority.authorize(token) is False
            assert await authority.authorize("STAFF_VERIFIED:2") is True

    asyncio.run(scenario())


def test_sql_store_pin_hash_bumps_pin_version(session_maker):
    async def scenario():
        async with session_maker() as db:
            store = SqlSessionVersionStore(db)
            assert await store.get_pin_hash() is None
            await store.set_pin_hash("abc.def")

        async with session_maker() as db:
            store = SqlSessionVersionStore(db)
            assert await store.get_pin_hash() == "abc.def"
            session_version, pin_version = await store.get_versions()
            assert pin_version == 2
            assert session_version == 1

    asyncio.run(scenario())
