from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import db as links_db
from db import ensure_schema, get_links, record_link
from labels import MemoryLabelCache, SqlLabelCache

WALLET = "0xABabABabABabABabABabABabABabABabABabABab"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    factory = sessionmaker(bind=engine, autoflush=False, future=True)
    db = factory()
    ensure_schema(db)
    db.close()
    return factory


# ────────────────────────────────────────────────────────────
# Label caches
# ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("make", ["memory", "sql"])
def test_first_uri_wins(make, session_factory):
    cache = MemoryLabelCache() if make == "memory" else SqlLabelCache(session_factory)

    assert cache.get("discord", "1") is None
    cache.put("discord", "1", "ipfs://first")
    cache.put("discord", "1", "ipfs://second")

    assert cache.get("discord", "1") == "ipfs://first"
    assert cache.get("spotify", "1") is None


def test_sql_put_on_taken_key_keeps_first_uri(session_factory):
    # a second run that pinned its own uri for the same account
    first, second = SqlLabelCache(session_factory), SqlLabelCache(session_factory)
    first.put("discord", "7", "ipfs://winner")

    second.put("discord", "7", "ipfs://loser")
    second.put("discord", "8", "ipfs://other")

    assert second.get("discord", "7") == "ipfs://winner"
    assert first.get("discord", "8") == "ipfs://other"


def test_sql_cache_survives_new_instances(session_factory):
    SqlLabelCache(session_factory).put("twitch", "42", "ipfs://abc")
    assert SqlLabelCache(session_factory).get("twitch", "42") == "ipfs://abc"


# ────────────────────────────────────────────────────────────
# Link records
# ────────────────────────────────────────────────────────────

def test_record_and_read_links(session_factory):
    db = session_factory()
    try:
        at = datetime(2025, 1, 2, tzinfo=timezone.utc)
        record_link(db, WALLET, "discord", "123", "alice", "0xaaa", linked_at=at)
        record_link(db, WALLET, "spotify", "s1", None, None, linked_at=at)

        out = get_links(db, WALLET.lower())
    finally:
        db.close()

    assert out["wallet_address"] == WALLET.lower()
    assert set(out["links"]) == {"discord", "spotify"}
    assert out["links"]["discord"] == {
        "user_id": "123",
        "username": "alice",
        "tx_hash": "0xaaa",
        "linked_at": at.isoformat(),
    }


def test_relinking_replaces_record(session_factory):
    db = session_factory()
    try:
        record_link(db, WALLET, "discord", "123", "alice", "0xaaa")
        record_link(db, WALLET, "discord", "456", "bob", "0xbbb")
        links = get_links(db, WALLET)["links"]
    finally:
        db.close()

    assert links["discord"]["user_id"] == "456"
    assert links["discord"]["tx_hash"] == "0xbbb"


def test_unknown_wallet_has_no_links(session_factory):
    db = session_factory()
    try:
        assert get_links(db, "0x" + "00" * 20)["links"] == {}
    finally:
        db.close()


def test_engine_requires_database_url():
    with patch.object(links_db, "DATABASE_URL", ""), patch.object(links_db, "_engine", None):
        with pytest.raises(RuntimeError):
            links_db.get_engine()
