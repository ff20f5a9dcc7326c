"""
Templates, saved views and search history.

These records sit beside the project tree; backups carry them and restore
them by name.
"""

from datetime import datetime

from sqlalchemy import delete, func
from sqlalchemy.orm import Session
from sqlmodel import select

from taskflow.config import get_settings
from taskflow.exceptions import NotFoundError, ValidationError, validate_model
from taskflow.logging_config import get_logger
from taskflow.models import Project, ProjectTemplate, SavedView, SearchHistory
from taskflow.schemas import (
    ProjectCreate,
    SavedViewData,
    SearchHistoryData,
    TaskCreate,
    TaskFilter,
    TemplateData,
)
from taskflow.services import hierarchy, tasks

logger = get_logger(__name__)


# =============================================================================
# Templates
# =============================================================================

def find_template(session: Session, name: str) -> ProjectTemplate | None:
    return session.execute(
        select(ProjectTemplate).where(ProjectTemplate.name == name)
    ).scalars().first()


def get_template(session: Session, name: str) -> ProjectTemplate:
    template = find_template(session, name)
    if template is None:
        raise NotFoundError("Template", name)
    return template


def create_template(session: Session, data: TemplateData) -> ProjectTemplate:
    if find_template(session, data.name) is not None:
        raise ValidationError(f"Template name '{data.name}' already exists")

    template = ProjectTemplate(**_template_fields(data))
    if data.created_at:
        template.created_at = data.created_at
    if data.updated_at:
        template.updated_at = data.updated_at
    session.add(template)
    session.flush()

    logger.info(f"Created template '{template.name}' with {len(template.task_definitions)} tasks")
    return template


def _template_fields(data: TemplateData) -> dict:
    return {
        "name": data.name,
        "description": data.description,
        "task_definitions": [d.model_dump() for d in data.task_definitions],
        "project_defaults": data.project_defaults,
    }


def create_project_from_template(
    session: Session,
    template_name: str,
    project_in: ProjectCreate,
) -> Project:
    """
    Create a project and one task per template definition.

    Template project_defaults fill color/icon/description only where the
    caller left them empty.
    """
    template = get_template(session, template_name)

    defaults = template.project_defaults or {}
    fill = {
        key: defaults[key]
        for key in ("description", "color", "icon")
        if defaults.get(key) and not getattr(project_in, key)
    }
    if fill:
        project_in = validate_model(ProjectCreate, {**project_in.model_dump(), **fill})

    project = hierarchy.create_project(session, project_in)
    for definition in template.task_definitions:
        task_in = validate_model(TaskCreate, {
            "title": definition["title"],
            "description": definition.get("description", ""),
            "priority": definition.get("priority") or "medium",
            "tags": definition.get("tags", []),
            "project_id": project.id,
        })
        tasks.create_task(session, task_in)

    logger.info(
        f"Applied template '{template.name}' to project '{project.name}' "
        f"({len(template.task_definitions)} tasks)"
    )
    return project


def template_to_data(template: ProjectTemplate) -> TemplateData:
    return validate_model(TemplateData, {
        "name": template.name,
        "description": template.description,
        "task_definitions": template.task_definitions,
        "project_defaults": template.project_defaults,
        "created_at": template.created_at,
        "updated_at": template.updated_at,
    })


# =============================================================================
# Saved views
# =============================================================================

def find_saved_view(session: Session, name: str) -> SavedView | None:
    return session.execute(
        select(SavedView).where(SavedView.name == name)
    ).scalars().first()


def get_saved_view(session: Session, name: str) -> SavedView:
    view = find_saved_view(session, name)
    if view is None:
        raise NotFoundError("Saved view", name)
    return view


def _check_hot_key(session: Session, hot_key: int | None, exclude_view_id: int | None = None) -> None:
    if hot_key is None:
        return
    owner = session.execute(
        select(SavedView).where(SavedView.hot_key == hot_key)
    ).scalars().first()
    if owner is not None and owner.id != exclude_view_id:
        raise ValidationError(f"Hot key {hot_key} is already assigned to view '{owner.name}'")


def create_saved_view(session: Session, data: SavedViewData) -> SavedView:
    """Store a named filter. The filter config must describe a valid TaskFilter."""
    if find_saved_view(session, data.name) is not None:
        raise ValidationError(f"Saved view name '{data.name}' already exists")
    _check_hot_key(session, data.hot_key)
    validate_model(TaskFilter, data.filter_config)

    view = SavedView(**data.model_dump(exclude_none=True))
    session.add(view)
    session.flush()

    logger.info(f"Created saved view '{view.name}'")
    return view


def saved_view_filter(view: SavedView | SavedViewData) -> TaskFilter:
    """Turn a saved view's filter config into a TaskFilter."""
    return validate_model(TaskFilter, view.filter_config)


def open_saved_view(session: Session, name: str) -> TaskFilter:
    """Load a view's filter and stamp its last access time."""
    view = get_saved_view(session, name)
    view.last_accessed = datetime.utcnow()
    session.flush()
    return saved_view_filter(view)


def saved_view_to_data(view: SavedView) -> SavedViewData:
    return SavedViewData.model_validate(view, from_attributes=True)


# =============================================================================
# Search history
# =============================================================================

def find_search(session: Session, entry: SearchHistoryData) -> SearchHistory | None:
    return session.execute(
        select(SearchHistory).where(
            SearchHistory.query_text == entry.query_text,
            SearchHistory.search_mode == entry.search_mode,
            SearchHistory.query_type == entry.query_type,
        )
    ).scalars().first()


def record_search(session: Session, entry: SearchHistoryData) -> SearchHistory | None:
    """
    Remember a search, refreshing an existing identical entry.

    The history is trimmed to the most recent max_search_history entries.
    Returns None when search history is disabled.
    """
    settings = get_settings()
    if not settings.search_history_enabled:
        return None

    now = datetime.utcnow()
    record = find_search(session, entry)
    if record is None:
        record = SearchHistory(**entry.model_dump(), created_at=now, updated_at=now)
        session.add(record)
    else:
        record.fuzzy_threshold = entry.fuzzy_threshold
        record.project_filter = entry.project_filter
        record.result_count = entry.result_count
        record.updated_at = now
    session.flush()

    _trim_history(session, settings.max_search_history)
    return record


def _trim_history(session: Session, keep: int) -> None:
    total = session.execute(select(func.count(SearchHistory.id))).scalar_one()
    if total <= keep:
        return
    stale_ids = list(session.execute(
        select(SearchHistory.id)
        .order_by(SearchHistory.updated_at.desc(), SearchHistory.id.desc())
        .offset(keep)
    ).scalars())
    session.execute(delete(SearchHistory).where(SearchHistory.id.in_(stale_ids)))
    logger.debug(f"Trimmed {len(stale_ids)} search history entries")


def list_search_history(session: Session, limit: int | None = None) -> list[SearchHistory]:
    stmt = select(SearchHistory).order_by(SearchHistory.updated_at.desc(), SearchHistory.id.desc())
    if limit:
        stmt = stmt.limit(limit)
    return list(session.execute(stmt).scalars())


def search_history_to_data(record: SearchHistory) -> SearchHistoryData:
    return SearchHistoryData.model_validate(record, from_attributes=True)

