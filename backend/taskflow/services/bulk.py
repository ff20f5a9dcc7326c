"""
Bulk mutations over the tasks selected by a TaskFilter.

Targets are selected with exactly the predicates used for listing (fuzzy
search excluded). Each operation runs in its own SAVEPOINT: either every
matched row changes or none does.

Tags are stored as a JSON list, so tag add/remove reads every matched row,
recomputes its set and writes it back individually.
"""

from datetime import datetime

from sqlalchemy import delete, update
from sqlalchemy.orm import Session
from sqlmodel import select

from taskflow.exceptions import NotFoundError, ValidationError, validate_model
from taskflow.logging_config import get_logger
from taskflow.models import Project, Task
from taskflow.schemas import TaskChanges, TaskFilter, TaskUpdate
from taskflow.schemas._fields import check_tags
from taskflow.schemas.bulk import CLEAR, Clear, SetTo
from taskflow.services.query import matching_task_ids

logger = get_logger(__name__)


def _require_project(session: Session, project_id: int) -> None:
    if session.get(Project, project_id) is None:
        raise NotFoundError("Project", project_id)


def _target_ids(session: Session, task_filter: TaskFilter) -> list[int]:
    return list(session.execute(matching_task_ids(task_filter)).scalars())


def _normalize_tags(tags: list[str]) -> list[str]:
    try:
        cleaned = check_tags(list(tags))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if not cleaned:
        raise ValidationError("At least one tag is required")
    return cleaned


def _column_values(session: Session, changes: TaskChanges) -> dict:
    """Validate a TaskChanges value and turn it into column assignments."""
    for name in ("status", "priority", "description"):
        change = getattr(changes, name)
        if isinstance(change, Clear) or (isinstance(change, SetTo) and change.value is None):
            raise ValidationError(f"{name} cannot be cleared")

    # Field rules live on TaskUpdate; only explicitly set values are checked
    raw = {
        name: getattr(changes, name).value
        for name in ("status", "priority", "description", "due_date")
        if isinstance(getattr(changes, name), SetTo)
    }
    values = validate_model(TaskUpdate, raw).model_dump(exclude_unset=True)

    if isinstance(changes.due_date, Clear):
        values["due_date"] = None

    if isinstance(changes.project_id, SetTo):
        _require_project(session, changes.project_id.value)
        values["project_id"] = changes.project_id.value
    elif isinstance(changes.project_id, Clear):
        values["project_id"] = None

    return values


def bulk_update(session: Session, task_filter: TaskFilter, changes: TaskChanges) -> int:
    """Apply the set fields of `changes` to every matched task. Returns the count."""
    if changes.is_empty():
        raise ValidationError("No fields to update")
    values = _column_values(session, changes)
    values["updated_at"] = datetime.utcnow()

    with session.begin_nested():
        ids = _target_ids(session, task_filter)
        if not ids:
            return 0
        affected = session.execute(
            update(Task).where(Task.id.in_(ids)).values(**values)
        ).rowcount

    logger.info(f"Bulk updated {affected} tasks: {sorted(values)}")
    return affected


def bulk_move(session: Session, task_filter: TaskFilter, project_id: int | None) -> int:
    """Reassign matched tasks to a project, or detach them with None."""
    changes = TaskChanges(project_id=SetTo(project_id) if project_id is not None else CLEAR)
    return bulk_update(session, task_filter, changes)


def _rewrite_tags(session: Session, task_filter: TaskFilter, recompute) -> int:
    with session.begin_nested():
        tasks = session.execute(
            select(Task).where(Task.id.in_(_target_ids(session, task_filter)))
        ).scalars().all()
        now = datetime.utcnow()
        for task in tasks:
            task.tags = recompute(list(task.tags or []))
            task.updated_at = now
    return len(tasks)


def bulk_add_tags(session: Session, task_filter: TaskFilter, tags: list[str]) -> int:
    """
    Add tags to every matched task, never duplicating one.

    Every matched task is rewritten and counted, including those that
    already carried all of the tags.
    """
    additions = _normalize_tags(tags)
    affected = _rewrite_tags(
        session,
        task_filter,
        lambda current: current + [tag for tag in additions if tag not in current],
    )
    logger.info(f"Added tags {additions} to {affected} tasks")
    return affected


def bulk_remove_tags(session: Session, task_filter: TaskFilter, tags: list[str]) -> int:
    """Remove tags from every matched task. Missing tags are ignored."""
    removals = set(_normalize_tags(tags))
    affected = _rewrite_tags(
        session,
        task_filter,
        lambda current: [tag for tag in current if tag not in removals],
    )
    logger.info(f"Removed tags {sorted(removals)} from {affected} tasks")
    return affected


def bulk_delete(session: Session, task_filter: TaskFilter) -> int:
    """Delete every matched task in one statement."""
    with session.begin_nested():
        ids = _target_ids(session, task_filter)
        if not ids:
            return 0
        affected = session.execute(
            delete(Task).where(Task.id.in_(ids))
        ).rowcount

    logger.info(f"Bulk deleted {affected} tasks")
    return affected
