"""Database connection and session management.

The store handle is constructed explicitly, opened once at startup and passed
to whoever needs it. There is no module-level engine.
"""
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import ConflictError
from .models import Base

logger = logging.getLogger("taskhub-core.database")


class Store:
    """Owns the engine and session factory for one relational store."""

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 3,
        max_overflow: int = 7,
    ):
        self.database_url = database_url
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @classmethod
    def from_settings(cls, settings) -> "Store":
        return cls(
            settings.database_url,
            echo=settings.database_echo,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Store is not open")
        return self._engine

    def open(self) -> None:
        """Create the engine and session factory. Calling it twice is a no-op."""
        if self._engine is not None:
            return

        if self.database_url.startswith("sqlite"):
            # One shared connection so in-memory databases survive across sessions
            self._engine = create_engine(
                self.database_url,
                echo=self.echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self._engine = create_engine(
                self.database_url,
                echo=self.echo,
                pool_pre_ping=True,
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_recycle=3600,
                pool_timeout=30,
            )

        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info(f"Opened store ({self._engine.url.get_backend_name()})")

    def close(self) -> None:
        """Dispose the connection pool."""
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Closed store")

    def create_all(self) -> None:
        """Create all tables. Used for tests and local development; production uses Alembic."""
        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Store is not open")
        return self._session_factory()


@contextmanager
def unit_of_work(db: Session) -> Generator[Session, None, None]:
    """
    Run one action atomically.

    Commits when the block exits normally. Any exception rolls back every
    write made in the block (including activity log rows) and is re-raised.
    A unique index violation from a concurrent writer surfaces as a
    ConflictError.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if _is_unique_violation(e):
            logger.warning(f"Unique constraint violated: {e.orig}")
            raise ConflictError("A record with these values already exists") from e
        raise
    except Exception:
        db.rollback()
        raise


def _is_unique_violation(error: IntegrityError) -> bool:
    # 23505 is unique_violation on PostgreSQL
    if getattr(error.orig, "pgcode", None) == "23505":
        return True
    return "UNIQUE constraint failed" in str(error.orig)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields:
        Session: SQLAlchemy session bound to the app's store
    """
    store: Store = request.app.state.store
    db = store.session()
    try:
        yield db
    finally:
        db.close()
