from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import Session, sessionmaker
from typing import Generator
from scan_gateway.config import settings


def engine_options(database_url: str) -> dict:
    """
    Connection options that keep every storage call bounded in time
    """
    if database_url.startswith("sqlite"):
        return {
            "connect_args": {
                "check_same_thread": False,  # Needed for SQLite
                "timeout": settings.DB_TIMEOUT_SECONDS,
            }
        }
    return {
        "pool_timeout": settings.DB_TIMEOUT_SECONDS,
        "pool_pre_ping": True,
        "connect_args": {"connect_timeout": settings.DB_TIMEOUT_SECONDS},
    }


def create_db_engine(database_url: str, echo: bool = False):
    """
    Create an engine for the given URL, enabling foreign keys on SQLite
    """
    db_engine = create_engine(database_url, echo=echo, **engine_options(database_url))

    if db_engine.dialect.name == "sqlite":
        @event.listens_for(db_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return db_engine


engine = create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db() -> Generator:
    """
    Dependency for getting database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dialect_insert(db: Session, model):
    """
    Return an INSERT construct that supports ON CONFLICT for the session's dialect

    Args:
        db: Active session (used to find the bound dialect)
        model: Declarative model class

    Returns:
        sqlite.insert or postgresql.insert statement for the model's table
    """
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(model)
    if dialect == "postgresql":
        return postgresql.insert(model)
    raise RuntimeError(f"Atomic upsert is not supported on dialect '{dialect}'")


def init_db():
    """
    Initialize database - create all tables
    """
    if settings.DATABASE_URL.startswith("sqlite"):
        Path(settings.DATA_DIR).mkdir(parents=True, exist_ok=True)

    import scan_gateway.models  # noqa: F401  (register tables on Base.metadata)
    Base.metadata.create_all(bind=engine)
