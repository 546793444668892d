"""
Server-side browser sessions. The browser holds only an opaque random id in an HttpOnly cookie;
session data lives in the sessions table with an idle TTL.
"""
import hashlib
import json
import logging
import secrets
import time
from typing import Any

from fastapi import Request, Response
from sqlalchemy.orm import sessionmaker

from spi_oauth.models import SessionRecord

logger = logging.getLogger(__name__)

SESSION_COOKIE = "spi_session"


def _hash_id(session_id: str) -> str:
    return hashlib.sha256(session_id.encode("utf-8")).hexdigest()


class Session:
    """
    One browser session. Values are JSON; get_object/put_object raise ValueError or TypeError
    when stored data can't be decoded or a value can't be encoded.
    """

    def __init__(self, manager: "SessionManager", session_id: str, raw: str, is_new: bool):
        self._manager = manager
        self.id = session_id
        self.raw = raw
        self.is_new = is_new
        self.modified = False

    def _values(self) -> dict[str, Any]:
        values = json.loads(self.raw)
        if not isinstance(values, dict):
            raise ValueError("session data is not an object")
        return values

    def get_object(self, key: str, default: Any = None) -> Any:
        return self._values().get(key, default)

    def put_object(self, key: str, value: Any) -> None:
        values = self._values()
        values[key] = value
        self.raw = json.dumps(values, separators=(",", ":"))
        self.modified = True
        self._manager.save(self)


class SessionManager:
    def __init__(
        self,
        db_factory: sessionmaker,
        *,
        ttl_seconds: int = 1800,
        cookie_secure: bool = False,
        cookie_name: str = SESSION_COOKIE,
    ):
        self._db_factory = db_factory
        self.ttl_seconds = ttl_seconds
        self.cookie_secure = cookie_secure
        self.cookie_name = cookie_name

    def load(self, request: Request) -> Session:
        """Session for the request's cookie, or a fresh (unsaved) one if absent or expired."""
        session_id = request.cookies.get(self.cookie_name)
        if session_id:
            db = self._db_factory()
            try:
                record = db.get(SessionRecord, _hash_id(session_id))
                if record is not None:
                    if record.expires_at > time.time():
                        return Session(self, session_id, record.data, is_new=False)
                    db.delete(record)
                    db.commit()
            finally:
                db.close()
        return Session(self, secrets.token_urlsafe(32), "{}", is_new=True)

    def save(self, session: Session) -> None:
        db = self._db_factory()
        try:
            expires_at = time.time() + self.ttl_seconds
            record = db.get(SessionRecord, _hash_id(session.id))
            if record is None:
                db.add(SessionRecord(id_hash=_hash_id(session.id), data=session.raw, expires_at=expires_at))
            else:
                record.data = session.raw
                record.expires_at = expires_at
            db.commit()
        finally:
            db.close()

    def commit(self, session: Session, response: Response) -> None:
        """Send the session cookie if the session exists server-side."""
        if session.is_new and not session.modified:
            return
        response.set_cookie(
            key=self.cookie_name,
            value=session.id,
            max_age=self.ttl_seconds,
            httponly=True,
            secure=self.cookie_secure,
            samesite="lax",
            path="/",
        )

    def purge_expired(self) -> int:
        """Delete expired sessions; returns how many were removed."""
        db = self._db_factory()
        try:
            removed = db.query(SessionRecord).filter(SessionRecord.expires_at <= time.time()).delete()
            db.commit()
        finally:
            db.close()
        if removed:
            logger.debug("Purged %d expired sessions", removed)
        return removed
