from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine for the cursor store.

    SQLite URLs get check_same_thread disabled because store calls run in
    worker threads, not the thread that opened the connection.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    return create_engine(
        database_url,
        echo=False,  # Set True for SQL debugging
        pool_pre_ping=True,  # Verify connections before use
        connect_args=connect_args,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory for short-lived store sessions."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False
    )


def create_tables(engine: Engine) -> None:
    """Create tables for all registered models."""
    # Import for side effect: registers models on Base.metadata
    import relay.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
