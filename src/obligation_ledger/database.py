"""Database connection and session management.

The store is an explicitly constructed handle passed to every service;
there is no module-level engine or pool.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from obligation_ledger.errors import NotFoundError
from obligation_ledger.models import Base

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from obligation_ledger.config import Settings

T = TypeVar("T")


def _configure_sqlite(dbapi_connection: Any, connection_record: Any) -> None:
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT behaves as on Postgres
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_sqlite(conn: Any) -> None:
    conn.exec_driver_sql("BEGIN")


class LedgerStore:
    """Storage handle owning an engine and a session factory.

    Usage:
        store = LedgerStore.from_url("postgresql://...")
        with store.transaction() as session:
            ...  # committed on exit, rolled back on any exception
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(
            engine,
            class_=Session,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> LedgerStore:
        """Create a store for a database URL."""
        if url.startswith("sqlite"):
            kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
                kwargs["poolclass"] = StaticPool
            engine = create_engine(url, echo=echo, **kwargs)
            event.listen(engine, "connect", _configure_sqlite)
            event.listen(engine, "begin", _begin_sqlite)
        else:
            engine = create_engine(
                url,
                echo=echo,
                pool_pre_ping=True,
                pool_size=10,
                max_overflow=20,
            )
        return cls(engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> LedgerStore:
        """Create a store from application settings."""
        return cls.from_url(settings.database_url, echo=settings.database_echo)

    def create_all(self) -> None:
        """Create all tables (idempotent)."""
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Scoped session: commit on success, rollback and re-raise on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def get_for_update(session: Session, model: type[T], pk: Any, entity: str) -> T:
    """Load a row by primary key under a row lock.

    Raises NotFoundError if it does not exist. SQLite ignores FOR UPDATE;
    its database-level write lock serializes writers instead.
    """
    pk_column = model.__mapper__.primary_key[0]  # type: ignore[attr-defined]
    row = session.execute(
        select(model).where(pk_column == pk).with_for_update()
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError(entity, pk)
    return row
