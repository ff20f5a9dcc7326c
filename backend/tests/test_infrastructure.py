"""
Settings, error responses, units of work and logging setup.
"""

import json
import logging

import pydantic
import pytest
from sqlalchemy import func, select

from taskflow.database import get_session_context
from taskflow.exceptions import (
    ConflictError,
    HierarchyError,
    NotFoundError,
    StorageError,
    ValidationError,
    validate_model,
)
from taskflow.logging_config import JsonFormatter, get_logger, setup_logging
from taskflow.models import Project
from taskflow.schemas import ProjectCreate
from taskflow.services import hierarchy


class TestSettings:

    def test_defaults(self, settings_env):
        settings = settings_env()
        assert settings.fuzzy_threshold == 60
        assert settings.max_search_history == 50
        assert settings.database_url.startswith("sqlite:///")
        assert "~" not in settings.database_url

    def test_environment_overrides(self, settings_env):
        settings = settings_env(fuzzy_threshold=75, debug="true")
        assert settings.fuzzy_threshold == 75
        assert settings.debug is True

    def test_threshold_range_enforced(self, settings_env):
        with pytest.raises(pydantic.ValidationError):
            settings_env(fuzzy_threshold=150)


class TestErrors:

    def test_error_codes(self):
        assert NotFoundError("Project", 3).to_response().error == "not_found"
        assert HierarchyError("loop").to_response().error == "hierarchy_error"
        assert ConflictError("Project", "Web").to_response().error == "conflict"
        assert StorageError("disk").to_response().error == "storage_error"

    def test_validation_details_keep_location(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_model(ProjectCreate, {"name": "ok", "color": "chartreuse"})
        response = exc_info.value.to_response()
        assert response.error == "validation_error"
        assert response.details[0].loc == ["color"]

    def test_validate_accepts_json(self):
        project_in = validate_model(ProjectCreate, '{"name": "From JSON", "aliases": ["fj"]}')
        assert project_in.aliases == ["fj"]

    @pytest.mark.parametrize("aliases", [
        ["A"],
        ["has space"],
        ["dup", "DUP"],
        [f"alias{i}" for i in range(11)],
    ])
    def test_alias_rules(self, aliases):
        with pytest.raises(ValidationError):
            validate_model(ProjectCreate, {"name": "p", "aliases": aliases})


class TestSessionContext:

    def count(self, engine):
        with get_session_context(engine) as session:
            return session.execute(select(func.count(Project.id))).scalar_one()

    def test_commits_on_success(self, test_engine):
        with get_session_context(test_engine) as session:
            hierarchy.create_project(session, ProjectCreate(name="Kept"))
        assert self.count(test_engine) == 1

    def test_rolls_back_on_error(self, test_engine):
        with pytest.raises(RuntimeError):
            with get_session_context(test_engine) as session:
                hierarchy.create_project(session, ProjectCreate(name="Dropped"))
                raise RuntimeError("abort")
        assert self.count(test_engine) == 0

    def test_store_errors_become_storage_error(self, test_engine):
        with pytest.raises(StorageError) as exc_info:
            with get_session_context(test_engine) as session:
                session.add(Project(name="Same"))
                session.add(Project(name="Same"))
                session.flush()
        assert exc_info.value.__cause__ is not None
        assert self.count(test_engine) == 0

    def test_domain_errors_pass_through(self, test_engine):
        with pytest.raises(NotFoundError):
            with get_session_context(test_engine) as session:
                hierarchy.get_project(session, 1)


class TestLogging:

    def test_logger_names_are_prefixed(self):
        assert get_logger("services.bulk").name == "taskflow.services.bulk"
        assert get_logger("taskflow.services.bulk").name == "taskflow.services.bulk"

    def test_setup_installs_one_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="DEBUG", json_format=True)
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
            assert logging.getLogger("taskflow").level == logging.DEBUG
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            logging.getLogger("taskflow").setLevel(logging.NOTSET)

    def test_json_formatter_output(self):
        record = logging.LogRecord("taskflow.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        payload = json.loads(JsonFormatter().format(record))
        assert payload["message"] == "hello world"
        assert payload["level"] == "INFO"
