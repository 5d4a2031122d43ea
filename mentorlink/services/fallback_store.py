# mentorlink/services/fallback_store.py
"""
Device-local durable key -> JSON store.

Non-authoritative: it shadows what this process has seen or written so a
restart, or an unreachable session log, does not lose call history or
running timers.

Access is synchronous, as with the service-side sessions: each call is one
small keyed read or write against a local SQLite file.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import Column, JSON, String, TIMESTAMP, create_engine, func
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from mentorlink.config import settings
from mentorlink.schemas.mentorship import MentorshipRequestView
from mentorlink.schemas.session_log import CallLogEntry

logger = logging.getLogger(__name__)

LocalBase = declarative_base()

CALL_LOG_PREFIX = "call_log:"
REQUEST_VIEW_PREFIX = "request_view:"


class FallbackEntry(LocalBase):
    __tablename__ = "fallback_entries"

    key = Column(String(200), primary_key=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())


def _create_local_engine(url: str):
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


class FallbackStore:
    def __init__(self, url: Optional[str] = None):
        self._engine = _create_local_engine(url or settings.FALLBACK_STORE_URL)
        LocalBase.metadata.create_all(self._engine)
        self._sessions = sessionmaker(bind=self._engine, autoflush=False)

    # ======================
    # RAW KEY/VALUE
    # ======================

    def get(self, key: str) -> Optional[Any]:
        with self._sessions() as db:
            entry = db.get(FallbackEntry, key)
            return entry.value if entry else None

    def put(self, key: str, value: Any) -> None:
        with self._sessions() as db:
            entry = db.get(FallbackEntry, key)
            if entry is None:
                db.add(FallbackEntry(key=key, value=value))
            else:
                entry.value = value
            db.commit()

    def delete(self, key: str) -> bool:
        with self._sessions() as db:
            deleted = db.query(FallbackEntry).filter(FallbackEntry.key == key).delete()
            db.commit()
            return bool(deleted)

    def items(self, prefix: str = "") -> Dict[str, Any]:
        with self._sessions() as db:
            query = db.query(FallbackEntry)
            if prefix:
                query = query.filter(FallbackEntry.key.startswith(prefix))
            return {entry.key: entry.value for entry in query.all()}

    # ======================
    # TYPED HELPERS
    # ======================

    def get_call_log(self, request_id: str) -> Optional[CallLogEntry]:
        raw = self.get(CALL_LOG_PREFIX + request_id)
        if raw is None:
            return None
        try:
            return CallLogEntry.model_validate(raw)
        except ValueError:
            logger.warning("Discarding unreadable fallback call log (request_id=%s)", request_id)
            return None

    def put_call_log(self, entry: CallLogEntry) -> None:
        self.put(CALL_LOG_PREFIX + entry.request_id, entry.model_dump(mode="json"))

    def get_request_view(self, request_id: str) -> Optional[MentorshipRequestView]:
        raw = self.get(REQUEST_VIEW_PREFIX + request_id)
        if raw is None:
            return None
        try:
            return MentorshipRequestView.model_validate(raw)
        except ValueError:
            logger.warning("Discarding unreadable cached request view (request_id=%s)", request_id)
            return None

    def put_request_view(self, view: MentorshipRequestView) -> None:
        self.put(REQUEST_VIEW_PREFIX + view.id, view.model_dump(mode="json"))

    def dispose(self) -> None:
        self._engine.dispose()
