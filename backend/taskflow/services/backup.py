"""
Export, subtree import and full backup restore.

Exports carry original ids. On import every project is matched by name and
resolved with a conflict strategy:
- skip / merge: reuse the existing project unchanged
- overwrite: replace the existing project's mutable fields
- no collision: create a new project

A full restore orders the flat project list with a topological pass over the
original parent ids, so trees of any depth are rebuilt, then rebinds every
task to the new id of the project whose nested task list contained it.

Run a restore inside one get_session_context() to make it all-or-nothing;
each project import additionally runs in its own SAVEPOINT.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import get_args

from sqlalchemy.orm import Session
from sqlmodel import select

from taskflow.exceptions import ValidationError, validate_model
from taskflow.logging_config import get_logger
from taskflow.models import Project, ProjectTemplate, SavedView, SearchHistory, Task
from taskflow.schemas import (
    BackupData,
    ConflictStrategy,
    ProjectCreate,
    ProjectData,
    ProjectExport,
    ProjectUpdate,
    SavedViewData,
    SearchHistoryData,
    TaskCreate,
    TaskData,
    TaskFilter,
    TemplateData,
)
from taskflow.services import graph, hierarchy, peripheral, tasks

logger = get_logger(__name__)

DATE_FORMAT = "%Y-%m-%d"

# Fields replaced on an existing project by the overwrite strategy
OVERWRITE_FIELDS = ("description", "color", "icon", "status", "is_favorite", "aliases", "notes")


@dataclass
class RestoreSummary:
    projects_created: int = 0
    projects_overwritten: int = 0
    projects_kept: int = 0
    tasks_imported: int = 0
    tasks_unattached: int = 0
    templates_restored: int = 0
    views_restored: int = 0
    searches_restored: int = 0


def _check_strategy(strategy: str) -> None:
    if strategy not in get_args(ConflictStrategy):
        raise ValidationError(
            f"Unknown conflict strategy '{strategy}'; expected one of "
            f"{', '.join(get_args(ConflictStrategy))}"
        )


# =============================================================================
# Export
# =============================================================================

def _task_data(task: Task) -> TaskData:
    return TaskData(
        id=task.id,
        title=task.title,
        description=task.description,
        priority=task.priority,
        status=task.status,
        tags=list(task.tags or []),
        due_date=task.due_date.strftime(DATE_FORMAT) if task.due_date else None,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def _project_data(project: Project, task_list: list[TaskData]) -> ProjectData:
    return ProjectData(
        id=project.id,
        name=project.name,
        description=project.description,
        parent_id=project.parent_id,
        color=project.color,
        icon=project.icon,
        status=project.status,
        is_favorite=project.is_favorite,
        aliases=list(project.aliases or []),
        notes=project.notes,
        created_at=project.created_at,
        updated_at=project.updated_at,
        tasks=task_list,
    )


def _tasks_by_project(session: Session) -> dict[int | None, list[Task]]:
    grouped: dict[int | None, list[Task]] = {}
    for task in session.execute(select(Task).order_by(Task.id)).scalars():
        grouped.setdefault(task.project_id, []).append(task)
    return grouped


def export_project(
    session: Session,
    project_id: int,
    include_descendants: bool = True,
    include_tasks: bool = True,
) -> ProjectExport:
    """Export a project, optionally with its nested children and tasks."""
    root = hierarchy.get_project(session, project_id)
    grouped = _tasks_by_project(session) if include_tasks else {}

    def build(project: Project) -> ProjectData:
        data = _project_data(project, [_task_data(t) for t in grouped.get(project.id, [])])
        if include_descendants:
            data.children = [build(child) for child in hierarchy.get_children(session, project.id)]
        return data

    export = ProjectExport(project=build(root))
    logger.info(f"Exported project '{root.name}'")
    return export


def create_full_backup(session: Session) -> BackupData:
    """
    Snapshot every record.

    Projects are flat with their original parent_id; each carries the list
    of its tasks so a restore can rebind the flat task list.
    """
    grouped = _tasks_by_project(session)
    projects = session.execute(select(Project).order_by(Project.id)).scalars().all()

    backup = BackupData(
        timestamp=datetime.utcnow(),
        projects=[
            _project_data(p, [_task_data(t) for t in grouped.get(p.id, [])])
            for p in projects
        ],
        tasks=[_task_data(t) for task_list in grouped.values() for t in task_list],
        templates=[
            peripheral.template_to_data(t)
            for t in session.execute(select(ProjectTemplate).order_by(ProjectTemplate.id)).scalars()
        ],
        views=[
            peripheral.saved_view_to_data(v)
            for v in session.execute(select(SavedView).order_by(SavedView.id)).scalars()
        ],
        search_history=[
            peripheral.search_history_to_data(s)
            for s in session.execute(select(SearchHistory).order_by(SearchHistory.id)).scalars()
        ],
    )
    backup.tasks.sort(key=lambda t: t.id)

    logger.info(
        f"Backup created: {len(backup.projects)} projects, {len(backup.tasks)} tasks, "
        f"{len(backup.templates)} templates, {len(backup.views)} views"
    )
    return backup


def load_backup(raw: str | bytes) -> BackupData:
    return validate_model(BackupData, raw)


def load_project_export(raw: str | bytes) -> ProjectExport:
    return validate_model(ProjectExport, raw)


# =============================================================================
# Import
# =============================================================================

def _parse_due_date(value: str | None):
    if not value:
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError as exc:
        raise ValidationError(
            f"Invalid due date '{value}': expected YYYY-MM-DD",
            details=[{"loc": ["due_date"], "msg": str(exc), "type": "date_format"}],
        ) from exc


def import_task(session: Session, data: TaskData, project_id: int | None) -> Task:
    """Validate an exported task and insert it under project_id."""
    task_in = validate_model(TaskCreate, {
        "title": data.title,
        "description": data.description,
        "priority": data.priority or "medium",
        "status": data.status or "pending",
        "tags": data.tags,
        "project_id": project_id,
        "due_date": _parse_due_date(data.due_date),
        "created_at": data.created_at,
        "updated_at": data.updated_at,
    })
    return tasks.create_task(session, task_in)


def _import_project_record(
    session: Session,
    data: ProjectData,
    parent_id: int | None,
    strategy: ConflictStrategy,
) -> tuple[Project, str]:
    """
    Resolve one exported project against the store.

    Returns the project and what happened to it: "created", "overwritten"
    or "kept".
    """
    with session.begin_nested():
        existing = hierarchy.find_project_by_name(session, data.name)

        if existing is not None:
            if strategy == "overwrite":
                changes = validate_model(
                    ProjectUpdate,
                    {field: getattr(data, field) for field in OVERWRITE_FIELDS},
                )
                project = hierarchy.update_project(session, existing.id, changes)
                logger.info(f"Overwrote project '{data.name}' from import")
                return project, "overwritten"
            logger.info(f"Project '{data.name}' exists; keeping it ({strategy})")
            return existing, "kept"

        project_in = validate_model(ProjectCreate, {
            "name": data.name,
            "description": data.description,
            "parent_id": parent_id,
            "color": data.color,
            "icon": data.icon,
            "status": data.status or "active",
            "is_favorite": data.is_favorite,
            "aliases": data.aliases,
            "notes": data.notes,
            "created_at": data.created_at,
            "updated_at": data.updated_at,
        })
        return hierarchy.create_project(session, project_in), "created"


def import_project_subtree(
    session: Session,
    data: ProjectExport | ProjectData,
    parent_id: int | None = None,
    strategy: ConflictStrategy = "skip",
) -> Project:
    """
    Import one exported project under parent_id, then its tasks and children.

    Tasks are only imported into projects created by this import; nested
    children are resolved with the same strategy under the imported project.
    The whole subtree is one SAVEPOINT.
    """
    _check_strategy(strategy)
    if isinstance(data, ProjectExport):
        data = data.project
    if parent_id is not None:
        hierarchy.get_project(session, parent_id)

    summary = RestoreSummary()
    with session.begin_nested():
        project = _import_tree(session, data, parent_id, strategy, summary)

    logger.info(
        f"Imported subtree '{data.name}': {summary.projects_created} created, "
        f"{summary.projects_overwritten} overwritten, {summary.projects_kept} kept, "
        f"{summary.tasks_imported} tasks"
    )
    return project


def _import_tree(
    session: Session,
    data: ProjectData,
    parent_id: int | None,
    strategy: ConflictStrategy,
    summary: RestoreSummary,
) -> Project:
    project, outcome = _import_project_record(session, data, parent_id, strategy)
    _count_outcome(summary, outcome)

    if outcome == "created":
        for task_data in data.tasks:
            import_task(session, task_data, project.id)
            summary.tasks_imported += 1

    for child in data.children:
        _import_tree(session, child, project.id, strategy, summary)
    return project


def _count_outcome(summary: RestoreSummary, outcome: str) -> None:
    if outcome == "created":
        summary.projects_created += 1
    elif outcome == "overwritten":
        summary.projects_overwritten += 1
    else:
        summary.projects_kept += 1


# =============================================================================
# Full restore
# =============================================================================

def restore_full_backup(
    session: Session,
    backup: BackupData,
    strategy: ConflictStrategy = "skip",
) -> RestoreSummary:
    """
    Rebuild projects, tasks and peripheral records from a full backup.

    Raises HierarchyError before writing anything when the exported parent
    ids form a cycle, and ValidationError when a record fails validation,
    which aborts the rest of the restore.
    """
    _check_strategy(strategy)
    generations = graph.restore_generations(backup.projects)
    summary = RestoreSummary()

    # Original project id -> new project id
    id_map: dict[int, int] = {}
    for depth, generation in enumerate(generations):
        for data in generation:
            parent_id = id_map.get(data.parent_id) if data.parent_id is not None else None
            project, outcome = _import_project_record(session, data, parent_id, strategy)
            _count_outcome(summary, outcome)
            if data.id:
                id_map[data.id] = project.id
        logger.debug(f"Restore pass {depth}: {len(generation)} projects")

    # Nested task lists only say which project owned each task
    owner: dict[int, int] = {}
    for data in backup.projects:
        for task_data in data.tasks:
            if task_data.id:
                owner[task_data.id] = data.id

    for task_data in backup.tasks:
        original_project = owner.get(task_data.id) if task_data.id else None
        project_id = id_map.get(original_project) if original_project is not None else None
        import_task(session, task_data, project_id)
        summary.tasks_imported += 1
        if project_id is None:
            summary.tasks_unattached += 1

    for template in backup.templates:
        if _restore_template(session, template, strategy):
            summary.templates_restored += 1
    for view in backup.views:
        if _restore_view(session, view, strategy):
            summary.views_restored += 1
    for entry in backup.search_history:
        if peripheral.find_search(session, entry) is None:
            session.add(SearchHistory(**entry.model_dump()))
            summary.searches_restored += 1
    session.flush()

    logger.info(f"Restore complete ({strategy}): {summary}")
    return summary


def _restore_template(session: Session, data: TemplateData, strategy: ConflictStrategy) -> bool:
    existing = peripheral.find_template(session, data.name)
    if existing is None:
        peripheral.create_template(session, data)
        return True
    if strategy != "overwrite":
        return False
    existing.description = data.description
    existing.task_definitions = [d.model_dump() for d in data.task_definitions]
    existing.project_defaults = data.project_defaults
    existing.updated_at = datetime.utcnow()
    session.flush()
    return True


def _restore_view(session: Session, data: SavedViewData, strategy: ConflictStrategy) -> bool:
    existing = peripheral.find_saved_view(session, data.name)
    if existing is None:
        # Hot keys already taken locally are dropped
        if data.hot_key is not None and _hot_key_taken(session, data.hot_key):
            logger.warning(f"Hot key {data.hot_key} already in use; restoring view '{data.name}' without it")
            data = data.model_copy(update={"hot_key": None})
        peripheral.create_saved_view(session, data)
        return True
    if strategy != "overwrite":
        return False
    existing.description = data.description
    validate_model(TaskFilter, data.filter_config)
    existing.filter_config = data.filter_config
    existing.is_favorite = data.is_favorite
    existing.updated_at = datetime.utcnow()
    session.flush()
    return True


def _hot_key_taken(session: Session, hot_key: int) -> bool:
    return session.execute(
        select(SavedView.id).where(SavedView.hot_key == hot_key)
    ).first() is not None
