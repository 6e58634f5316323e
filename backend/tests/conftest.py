"""
Shared fixtures: every test gets its own file-backed SQLite database.
"""
from datetime import datetime

import pytest
from sqlalchemy.orm import sessionmaker

import scan_gateway.models  # noqa: F401
from scan_gateway.database import Base, create_db_engine


@pytest.fixture
def engine(tmp_path):
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def broken_session_factory(tmp_path):
    """Sessions bound to a database file that cannot be opened"""
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'test.db'}")
    yield sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db_engine.dispose()


@pytest.fixture
def now():
    return datetime(2025, 1, 17, 12, 0, 0)
