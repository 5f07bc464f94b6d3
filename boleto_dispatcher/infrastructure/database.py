"""SQLAlchemy engine and session for the local cache."""

import os
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from boleto_dispatcher.config import get_settings

settings = get_settings()

Base = declarative_base()


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine; SQLite connections get WAL journaling."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(url, connect_args=connect_args, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def _ensure_sqlite_directory(bind: Engine) -> None:
    path = bind.url.database
    if bind.dialect.name != "sqlite" or not path or path == ":memory:":
        return
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)


def init_db(bind: Engine = engine) -> None:
    """Create cache tables if they don't exist yet."""
    # Import all models so SQLAlchemy knows about them
    from boleto_dispatcher.domain.models import boleto, config_entry, empresa, envio, message_template  # noqa: F401

    _ensure_sqlite_directory(bind)
    Base.metadata.create_all(bind=bind)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
