"""
Database engine and session management.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from core.config import settings
from .base import Base


class DatabaseConnection:
    """Owns one engine and the session factory bound to it."""

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        self.url = url or settings.database_url
        self._echo = settings.database_echo if echo is None else echo
        self._engine = None
        self._session_factory = None

    @property
    def engine(self):
        if self._engine is None:
            kwargs = {"echo": self._echo, "future": True}
            if self.url.startswith("sqlite"):
                # Worker threads share the file; wait on locks instead of failing
                kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
            else:
                kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=10, pool_timeout=30)
            self._engine = create_engine(self.url, **kwargs)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine, autoflush=False, expire_on_commit=False
            )
        return self._session_factory

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self):
        from . import models  # noqa: F401  (register models)
        Base.metadata.create_all(bind=self.engine)

    def dispose(self):
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None


db = DatabaseConnection()


def init_db():
    """Create missing tables."""
    db.create_tables()
