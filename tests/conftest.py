"""Pytest configuration and shared fixtures."""

import uuid

import pytest

from reqflow.core.approval.runtime import build_runtime
from reqflow.core.config import Settings
from reqflow.core.rbac import Actor, Role
from reqflow.db import models  # noqa: F401  (registers tables on Base.metadata)
from reqflow.db.base import Base
from reqflow.db.session import build_engine, build_session_factory
from reqflow.services.notifications import (
    InMemoryChannel,
    NotificationChannelRegistry,
    NotificationDispatcher,
)


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'reqflow.db'}",
        log_dir=str(tmp_path / "logs"),
        log_to_file=False,
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings.database_url)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def memory_channel():
    return InMemoryChannel()


@pytest.fixture
def dispatcher(memory_channel):
    registry = NotificationChannelRegistry()
    registry.register(memory_channel)
    return NotificationDispatcher(registry)


@pytest.fixture
def runtime(settings, session_factory, dispatcher):
    runtime = build_runtime(settings, session_factory, dispatcher=dispatcher)
    yield runtime
    runtime.close()


@pytest.fixture
def workflow(runtime, db_session):
    return runtime.workflow(db_session)


@pytest.fixture
def recorder(runtime):
    return runtime.recorder


# Actors

@pytest.fixture
def department_id():
    return uuid.uuid4()


@pytest.fixture
def staff(department_id):
    return Actor(id=uuid.uuid4(), role=Role.STAFF, department_id=department_id)


@pytest.fixture
def manager(department_id):
    return Actor(id=uuid.uuid4(), role=Role.MANAGER, department_id=department_id)


@pytest.fixture
def finance(department_id):
    return Actor(id=uuid.uuid4(), role=Role.FINANCE, department_id=department_id)


@pytest.fixture
def admin(department_id):
    return Actor(id=uuid.uuid4(), role=Role.ADMIN, department_id=department_id)
