"""
Storage collaborator: string key -> string value. Flows keep the token session and pending
State entries here. set/delete may return awaitables; flows await them when they do.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable

from sqlalchemy import DateTime, String, Text, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Storage(ABC):
    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None | Awaitable[None]:
        ...

    @abstractmethod
    def delete(self, key: str) -> None | Awaitable[None]:
        ...


class MemoryStorage(Storage):
    """Process-local storage (the browser localStorage/sessionStorage equivalent)."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class StoredItem(Base):
    __tablename__ = "oidc_flow_storage"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)


class SqlStorage(Storage):
    """
    SQLAlchemy-backed storage so sessions survive restarts. Any SQLAlchemy URL works;
    SQLite is the default and the table is created on first use.
    """

    def __init__(self, database_url: str = "sqlite:///./oidc_flows.db", **engine_kwargs: Any):
        # In-memory SQLite needs StaticPool so every connection sees the same DB
        if database_url.startswith("sqlite:///:memory:"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
            engine_kwargs.setdefault("poolclass", StaticPool)
        elif "sqlite" in database_url:
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        self.engine = create_engine(database_url, **engine_kwargs)
        self._sessions = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def get(self, key: str) -> str | None:
        with self._sessions() as db:
            item = db.execute(select(StoredItem).where(StoredItem.key == key)).scalar_one_or_none()
            return item.value if item is not None else None

    def set(self, key: str, value: str) -> None:
        with self._sessions() as db:
            item = db.get(StoredItem, key)
            if item is None:
                db.add(StoredItem(key=key, value=value))
            else:
                item.value = value
            db.commit()
        logger.debug("Stored key %s", key)

    def delete(self, key: str) -> None:
        with self._sessions() as db:
            item = db.get(StoredItem, key)
            if item is not None:
                db.delete(item)
                db.commit()
                logger.debug("Deleted key %s", key)
