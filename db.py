from datetime import datetime, timezone
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session

from config import DATABASE_URL

_engine = None
_SessionLocal = None


def get_engine():
    global _engine
    if _engine is None:
        if not DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not set")
        _engine = create_engine(DATABASE_URL, pool_pre_ping=True, future=True)
    return _engine


def get_session_factory():
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, future=True)
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def ensure_schema(db: Session):
    db.execute(text(
        "CREATE TABLE IF NOT EXISTS social_label ("
        " platform TEXT NOT NULL,"
        " user_id TEXT NOT NULL,"
        " uri TEXT NOT NULL,"
        " PRIMARY KEY (platform, user_id))"
    ))
    db.execute(text(
        "CREATE TABLE IF NOT EXISTS social_link ("
        " wallet_address TEXT NOT NULL,"
        " platform TEXT NOT NULL,"
        " user_id TEXT NOT NULL,"
        " username TEXT,"
        " tx_hash TEXT,"
        " linked_at TEXT NOT NULL,"
        " PRIMARY KEY (wallet_address, platform))"
    ))
    db.commit()


def record_link(
    db: Session,
    wallet_address: str,
    platform: str,
    user_id: str,
    username: Optional[str],
    tx_hash: Optional[str],
    linked_at: Optional[datetime] = None,
):
    ts = (linked_at or datetime.now(timezone.utc)).isoformat()
    db.execute(text(
        "DELETE FROM social_link WHERE wallet_address = :w AND platform = :p"
    ), {"w": wallet_address.lower(), "p": platform})
    db.execute(text(
        "INSERT INTO social_link (wallet_address, platform, user_id, username, tx_hash, linked_at) "
        "VALUES (:w, :p, :u, :n, :tx, :ts)"
    ), {
        "w": wallet_address.lower(),
        "p": platform,
        "u": user_id,
        "n": username,
        "tx": tx_hash,
        "ts": ts,
    })
    db.commit()


def get_links(db: Session, wallet_address: str) -> Dict[str, Any]:
    """`{wallet_address, links: {platform: {user_id, username, tx_hash, linked_at}}}`"""
    rows = db.execute(text(
        "SELECT platform, user_id, username, tx_hash, linked_at "
        "FROM social_link WHERE wallet_address = :w ORDER BY platform"
    ), {"w": wallet_address.lower()}).fetchall()
    return {
        "wallet_address": wallet_address,
        "links": {
            r[0]: {"user_id": r[1], "username": r[2], "tx_hash": r[3], "linked_at": r[4]}
            for r in rows
        },
    }
