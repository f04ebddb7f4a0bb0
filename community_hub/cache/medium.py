"""
Key/value media backing the TTL cache store.

Any object with get/set/delete/list_keys over string keys and string
values can serve as a medium; the store is the only component that
touches it.
"""
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from community_hub.errors import CacheError

logger = logging.getLogger("cache.medium")

Base = declarative_base()


class KeyValueMedium(Protocol):
    """String-keyed blob store used by TTLCacheStore."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def list_keys(self) -> List[str]:
        ...


class MemoryMedium:
    """Process-local dict medium."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def list_keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())

    def __len__(self) -> int:
        return len(self._data)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheRecord(Base):
    """
    One serialized cache entry.
    Keys already carry the store namespace, so several stores can share the table.
    """
    __tablename__ = "cache_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<CacheRecord(key='{self.key}')>"


class SQLiteMedium:
    """
    On-disk medium using SQLite through SQLAlchemy.

    Every operation runs in its own short session. SQLAlchemy errors are
    re-raised as CacheError so the store can degrade them to a miss.
    """

    def __init__(self, database_url: str = "sqlite:///./cache/community_hub_cache.db"):
        self.database_url = database_url
        if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
            Path(database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},  # Needed for SQLite
            echo=False,
        )
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Cache medium initialized at: {database_url}")

    def get(self, key: str) -> Optional[str]:
        session = self._session_factory()
        try:
            record = session.get(CacheRecord, key)
            return record.value if record is not None else None
        except SQLAlchemyError as e:
            raise CacheError(f"read failed for {key}: {e}") from e
        finally:
            session.close()

    def set(self, key: str, value: str) -> None:
        session = self._session_factory()
        try:
            session.merge(CacheRecord(key=key, value=value, updated_at=_utcnow()))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise CacheError(f"write failed for {key}: {e}") from e
        finally:
            session.close()

    def delete(self, key: str) -> None:
        session = self._session_factory()
        try:
            session.query(CacheRecord).filter(CacheRecord.key == key).delete()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise CacheError(f"delete failed for {key}: {e}") from e
        finally:
            session.close()

    def list_keys(self) -> List[str]:
        session = self._session_factory()
        try:
            return [row[0] for row in session.query(CacheRecord.key).all()]
        except SQLAlchemyError as e:
            raise CacheError(f"key listing failed: {e}") from e
        finally:
            session.close()
