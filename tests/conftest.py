"""Shared fixtures for qaud-datastore tests."""

import pytest
import sqlalchemy as sa
from fakes import FakeCollection
from models import Base
from sqlalchemy.orm import Session


@pytest.fixture
def sql_engine(tmp_path):
    """File-backed SQLite so separate sessions see only committed data."""
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'qaud.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_session(sql_engine):
    with Session(sql_engine) as session:
        yield session


@pytest.fixture
def mongo_collection() -> FakeCollection:
    return FakeCollection()
