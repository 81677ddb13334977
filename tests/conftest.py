"""Test configuration and fixtures."""

import os

# Configure before any image_control_tower module reads its settings.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CONTROLLER_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "console"

from typing import Callable, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from image_control_tower.db import audit_models, models  # noqa: F401
from image_control_tower.db.base import Base
from factories import Clock


@pytest.fixture
def session_factory() -> Iterator[Callable[[], Session]]:
    """A sessionmaker over a fresh in-memory database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def db_session(session_factory) -> Iterator[Session]:
    """Create a fresh in-memory database for each test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock() -> Clock:
    return Clock()
