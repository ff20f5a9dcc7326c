"""
Pytest configuration and fixtures for Taskflow tests.
"""

import pytest
from sqlalchemy.orm import Session

from taskflow.config import get_settings
from taskflow.database import build_engine, init_db
from taskflow.schemas import ProjectCreate, TaskCreate
from taskflow.services import hierarchy, tasks


@pytest.fixture(scope="function")
def test_engine(tmp_path):
    """A fresh SQLite file per test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'taskflow_test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session(test_engine):
    """A session whose work is discarded after the test."""
    with Session(test_engine, expire_on_commit=False) as session:
        yield session
        session.rollback()


@pytest.fixture
def settings_env(monkeypatch):
    """Set TASKFLOW_* variables and rebuild the cached settings."""
    def apply(**values):
        for key, value in values.items():
            monkeypatch.setenv(f"TASKFLOW_{key.upper()}", str(value))
        get_settings.cache_clear()
        return get_settings()

    yield apply
    get_settings.cache_clear()


@pytest.fixture
def make_project(session):
    def create(name, parent=None, **fields):
        parent_id = parent.id if parent is not None else None
        return hierarchy.create_project(
            session, ProjectCreate(name=name, parent_id=parent_id, **fields)
        )
    return create


@pytest.fixture
def make_task(session):
    def create(title, project=None, **fields):
        project_id = project.id if project is not None else None
        return tasks.create_task(
            session, TaskCreate(title=title, project_id=project_id, **fields)
        )
    return create
