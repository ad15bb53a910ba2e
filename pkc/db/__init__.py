"""
Database engine and session factory.
"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_settings


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections get foreign keys switched on so chunk, message and
    summary rows cascade with their parents the same way they do on
    PostgreSQL. In-memory SQLite shares one connection across threads.
    """
    kwargs = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool

    db_engine = create_engine(database_url, **kwargs)

    if db_engine.dialect.name == "sqlite":
        @event.listens_for(db_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return db_engine


def create_session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, expire_on_commit=False)


engine = create_db_engine(get_settings().database_url)
SessionLocal = create_session_factory(engine)


def init_db(db_engine: Engine = None) -> None:
    """
    Apply the dialect's SQL migration scripts, then create any table they
    did not cover (all of them on SQLite, which has no scripts).
    """
    from ..models import Base
    from .migrations import run_sql_migrations

    db_engine = db_engine or engine
    run_sql_migrations(db_engine)
    Base.metadata.create_all(db_engine)
