from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from functools import lru_cache
import threading

from app.core.config import Settings
from app.services.conversation_models import ConversationSession


class ConversationSessionStore(ABC):
    @abstractmethod
    def get(self, session_id: str) -> ConversationSession | None:
        raise NotImplementedError

    @abstractmethod
    def save(self, session: ConversationSession) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        raise NotImplementedError


class InMemoryConversationSessionStore(ConversationSessionStore):
    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.ttl = ttl
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sessions: dict[str, ConversationSession] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> ConversationSession | None:
        with self._lock:
            self._purge_expired(self._clock())
            return self._sessions.get(session_id)

    def save(self, session: ConversationSession) -> None:
        with self._lock:
            self._purge_expired(self._clock())
            self._sessions[session.session_id] = session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def active_count(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._sessions)

    def _purge_expired(self, now: datetime) -> None:
        expired_ids = [
            session_id
            for session_id, session in self._sessions.items()
            if _is_expired(session, now, self.ttl)
        ]
        for session_id in expired_ids:
            del self._sessions[session_id]


class MongoConversationSessionStore(ConversationSessionStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        collection_name: str,
        ttl: timedelta = timedelta(minutes=30),
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self.ttl = ttl
        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index("session_id", unique=True)
        self._collection.create_index(
            "updated_at",
            expireAfterSeconds=int(ttl.total_seconds()),
        )

    def get(self, session_id: str) -> ConversationSession | None:
        record = self._collection.find_one({"session_id": session_id}, {"_id": 0})
        if not record:
            return None
        session = ConversationSession.from_record(record)
        # The TTL monitor runs about once a minute; expire precisely here.
        if _is_expired(session, datetime.now(UTC), self.ttl):
            self.delete(session_id)
            return None
        return session

    def save(self, session: ConversationSession) -> None:
        self._collection.replace_one(
            {"session_id": session.session_id},
            session.to_record(),
            upsert=True,
        )

    def delete(self, session_id: str) -> bool:
        result = self._collection.delete_one({"session_id": session_id})
        return result.deleted_count > 0


def _is_expired(session: ConversationSession, now: datetime, ttl: timedelta) -> bool:
    return now - session.updated_at > ttl


def create_conversation_session_store(settings: Settings) -> ConversationSessionStore:
    return _create_conversation_session_store_cached(
        store_kind=settings.conversation_session_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection=settings.mongodb_conversation_sessions_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
        ttl_minutes=settings.conversation_session_ttl_minutes,
    )


@lru_cache
def _create_conversation_session_store_cached(
    *,
    store_kind: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection: str,
    mongodb_connect_timeout_ms: int,
    ttl_minutes: int,
) -> ConversationSessionStore:
    ttl = timedelta(minutes=ttl_minutes)
    if store_kind == "mongodb":
        return MongoConversationSessionStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection,
            ttl=ttl,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryConversationSessionStore(ttl=ttl)


def clear_conversation_session_store_cache() -> None:
    _create_conversation_session_store_cached.cache_clear()
