"""Database connection and session management."""

from contextlib import contextmanager
from typing import Callable, Iterator, Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config

# Global engine instance
_engine: Optional[Engine] = None

# Base class for all database models
Base = declarative_base()

# Session factory, bound to the engine by init_database()
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

SessionFactory = Callable[[], Session]


def build_engine(database_url: str, echo: bool = False, connect_args: Optional[dict] = None) -> Engine:
    """Create an engine with the settings appropriate for the database type."""
    if connect_args is None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool,
            echo=echo
        )
    return create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args
    )


def get_database_engine(database_url: Optional[str] = None,
                        echo: Optional[bool] = None,
                        connect_args: Optional[dict] = None) -> Engine:
    """Get or create the global database engine."""
    global _engine

    if _engine is None:
        config = get_config()
        _engine = build_engine(
            database_url or config.database_url,
            echo=config.database_echo if echo is None else echo,
            connect_args=connect_args
        )
        SessionLocal.configure(bind=_engine)

    return _engine


def init_database(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create the global engine, bind the session factory and create all tables."""
    engine = get_database_engine(database_url, echo)
    create_tables(engine)
    return engine


def reset_database_engine():
    """Reset the global database engine (mainly for testing)."""
    global _engine
    if _engine:
        _engine.dispose()
    _engine = None


def create_session_factory(database_url: str, echo: bool = False) -> sessionmaker:
    """Independent engine + session factory with all tables created, for tests and tools."""
    engine = build_engine(database_url, echo=echo)
    create_tables(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(session_factory: Optional[SessionFactory] = None) -> Iterator[Session]:
    """Session that commits on success and rolls back on error."""
    if session_factory is None:
        get_database_engine()
        session_factory = SessionLocal
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_tables(engine: Optional[Engine] = None):
    """Create all database tables."""
    from . import models  # noqa: F401  registers the tables on Base.metadata
    Base.metadata.create_all(bind=engine or get_database_engine())
