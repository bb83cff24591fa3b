"""
Memo of pinned social-atom uris, keyed by (platform, user_id).

Pinning the same label twice yields two different uris and therefore two
different atoms. Reusing the first uri keeps the social atom, and with it
the triple id, stable across runs for the same account.
"""
from __future__ import annotations

import threading
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session


class MemoryLabelCache:
    def __init__(self):
        self._uris: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def get(self, platform: str, user_id: str) -> Optional[str]:
        with self._lock:
            return self._uris.get((platform, user_id))

    def put(self, platform: str, user_id: str, uri: str):
        with self._lock:
            self._uris.setdefault((platform, user_id), uri)


class SqlLabelCache:
    """Backed by the `social_label` table (see db.ensure_schema)."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, platform: str, user_id: str) -> Optional[str]:
        db = self._session_factory()
        try:
            row = db.execute(text(
                "SELECT uri FROM social_label WHERE platform = :p AND user_id = :u"
            ), {"p": platform, "u": user_id}).fetchone()
            return row[0] if row else None
        finally:
            db.close()

    def put(self, platform: str, user_id: str, uri: str):
        db = self._session_factory()
        try:
            db.execute(text(
                "INSERT INTO social_label (platform, user_id, uri) VALUES (:p, :u, :uri)"
            ), {"p": platform, "u": user_id, "uri": uri})
            db.commit()
        except IntegrityError:
            # first uri stored for this account wins
            db.rollback()
        finally:
            db.close()
