"""
Query building for task and project listings.

Text and regex searches, tag membership, status/priority/project scope and
date bounds are pushed down to the store as bound predicates. Fuzzy search
cannot be expressed as a predicate: it fetches the candidate set selected by
the other conditions and ranks it in memory, O(n log n) in the candidate count.

Sort columns are looked up in closed maps keyed by the validated sort key;
user-supplied values only ever reach the store as bind parameters.
"""

from typing import Any

from sqlalchemy import case, func, or_, text
from sqlalchemy.orm import Session
from sqlalchemy.sql import ColumnElement, Select
from sqlalchemy.sql.elements import TextClause
from sqlmodel import select

from taskflow.config import get_settings
from taskflow.exceptions import ValidationError
from taskflow.logging_config import get_logger
from taskflow.models import PRIORITY_RANK, Project, Task
from taskflow.schemas import NO_DUE_DATE, ProjectFilter, ProjectRead, TaskFilter, TaskRead
from taskflow.services import fuzzy

logger = get_logger(__name__)


TASK_SORT_COLUMNS = {
    "created_at": Task.created_at,
    "updated_at": Task.updated_at,
    "due_date": Task.due_date,
    "title": Task.title,
}

PROJECT_SORT_COLUMNS = {
    "name": Project.name,
    "created_at": Project.created_at,
    "updated_at": Project.updated_at,
}

# tasks.tags is a JSON list; json_each expands it into one row per tag
TAG_MATCH_SQL = "EXISTS (SELECT 1 FROM json_each(tasks.tags) WHERE {predicate})"
TAG_PRESENT_SQL = TAG_MATCH_SQL.format(predicate="json_each.value = :{param}")
TAG_ABSENT_SQL = "NOT " + TAG_PRESENT_SQL
TAG_CONTAINS_SQL = TAG_MATCH_SQL.format(
    predicate="lower(json_each.value) LIKE lower(:search_tag) ESCAPE '/'"
)
TAG_REGEX_SQL = TAG_MATCH_SQL.format(predicate="json_each.value REGEXP :search_tag")


# =============================================================================
# Task predicates
# =============================================================================

def _tag_clause(template: str, param: str, value: str) -> TextClause:
    return text(template.format(param=param)).bindparams(**{param: value})


def _like_pattern(query: str) -> str:
    escaped = query.replace("/", "//").replace("%", "/%").replace("_", "/_")
    return f"%{escaped}%"


def _searchable_columns() -> list[ColumnElement]:
    return [
        Task.title,
        Task.description,
        func.coalesce(Project.name, ""),
    ]


def search_condition(task_filter: TaskFilter) -> ColumnElement[bool] | None:
    """
    Text or regex predicate over title, description, project name and tags.

    Tags are matched one value at a time, never against their JSON encoding.
    """
    query = task_filter.search_query
    if not query or task_filter.search_mode == "fuzzy":
        return None
    if task_filter.search_mode == "regex":
        return or_(
            *(column.regexp_match(query) for column in _searchable_columns()),
            text(TAG_REGEX_SQL).bindparams(search_tag=query),
        )
    return or_(
        *(column.icontains(query, autoescape=True) for column in _searchable_columns()),
        text(TAG_CONTAINS_SQL).bindparams(search_tag=_like_pattern(query)),
    )


def task_conditions(task_filter: TaskFilter) -> list[ColumnElement[bool]]:
    """
    Build the WHERE conditions for a task filter.

    The statement must select from tasks LEFT OUTER JOIN projects; see
    task_select().
    """
    conditions: list[ColumnElement[bool]] = []

    if task_filter.status:
        conditions.append(Task.status == task_filter.status)
    if task_filter.priority:
        conditions.append(Task.priority == task_filter.priority)
    if task_filter.project_id is not None:
        conditions.append(Task.project_id == task_filter.project_id)

    for index, tag in enumerate(task_filter.tags):
        conditions.append(_tag_clause(TAG_PRESENT_SQL, f"required_tag_{index}", tag))
    for index, tag in enumerate(task_filter.exclude_tags):
        conditions.append(_tag_clause(TAG_ABSENT_SQL, f"excluded_tag_{index}", tag))

    search = search_condition(task_filter)
    if search is not None:
        conditions.append(search)

    if task_filter.due_date_from == NO_DUE_DATE:
        conditions.append(Task.due_date.is_(None))
    elif task_filter.due_date_from is not None:
        conditions.append(Task.due_date >= task_filter.due_date_from)
    if task_filter.due_date_to is not None:
        conditions.append(Task.due_date <= task_filter.due_date_to)

    if task_filter.created_from is not None:
        conditions.append(Task.created_at >= task_filter.created_from)
    if task_filter.created_to is not None:
        conditions.append(Task.created_at <= task_filter.created_to)
    if task_filter.updated_from is not None:
        conditions.append(Task.updated_at >= task_filter.updated_from)
    if task_filter.updated_to is not None:
        conditions.append(Task.updated_at <= task_filter.updated_to)

    return conditions


def task_order_by(task_filter: TaskFilter) -> list[ColumnElement]:
    descending = task_filter.sort_order == "desc"

    if task_filter.sort_by == "priority":
        rank = case(PRIORITY_RANK, value=Task.priority, else_=0)
        return [
            rank.desc() if descending else rank.asc(),
            Task.created_at.desc(),
            Task.id.desc(),
        ]

    column = TASK_SORT_COLUMNS[task_filter.sort_by]
    ordering = [column.desc() if descending else column.asc()]
    if task_filter.sort_by == "due_date":
        # False sorts before True, so unset due dates go last either way
        ordering.insert(0, Task.due_date.is_(None))
    ordering.append(Task.id.desc() if descending else Task.id.asc())
    return ordering


def task_select(*entities: Any) -> Select:
    """SELECT over tasks LEFT OUTER JOIN projects, the shape every task query uses."""
    return select(*entities).select_from(Task).outerjoin(Project, Task.project_id == Project.id)


def matching_task_ids(task_filter: TaskFilter) -> Select:
    """
    SELECT of the task ids matched by a filter, for bulk mutations.

    Pagination and sort are ignored. Fuzzy search is rejected because it has
    no predicate form.
    """
    if task_filter.is_fuzzy:
        raise ValidationError(
            "Fuzzy search cannot select targets for bulk operations",
            error_code="unsupported_search_mode",
        )
    return task_select(Task.id).where(*task_conditions(task_filter))


def _paginate(stmt: Select, limit: int | None, offset: int) -> Select:
    if offset:
        stmt = stmt.offset(offset)
    if limit:
        stmt = stmt.limit(limit)
    return stmt


def _to_read(task: Task, project_name: str | None) -> TaskRead:
    return TaskRead(**task.model_dump(), project_name=project_name)


# =============================================================================
# Task listing
# =============================================================================

def list_tasks(session: Session, task_filter: TaskFilter | None = None) -> list[TaskRead]:
    """List tasks matching a filter, sorted and paginated."""
    task_filter = task_filter or TaskFilter()

    if task_filter.is_fuzzy:
        return _rank_fuzzy(session, task_filter)

    stmt = task_select(Task, Project.name).where(*task_conditions(task_filter))
    stmt = stmt.order_by(*task_order_by(task_filter))
    stmt = _paginate(stmt, task_filter.limit, task_filter.offset)

    rows = session.execute(stmt).all()
    logger.debug(f"Listed {len(rows)} tasks (mode={task_filter.search_mode})")
    return [_to_read(task, project_name) for task, project_name in rows]


def count_tasks(session: Session, task_filter: TaskFilter | None = None) -> int:
    """Count tasks matching a filter, ignoring pagination."""
    task_filter = task_filter or TaskFilter()

    if task_filter.is_fuzzy:
        return len(_rank_fuzzy(session, task_filter.without_pagination()))

    stmt = task_select(func.count(Task.id)).where(*task_conditions(task_filter))
    return session.execute(stmt).scalar_one()


def fuzzy_task_score(query: str, task: TaskRead) -> int:
    """Best fuzzy score of the query against any searchable field of a task."""
    fields = [task.title, task.description, task.project_name or "", " ".join(task.tags)]
    return max(fuzzy.score(query, value) for value in fields)


def _rank_fuzzy(session: Session, task_filter: TaskFilter) -> list[TaskRead]:
    threshold = task_filter.fuzzy_threshold
    if threshold is None:
        threshold = get_settings().fuzzy_threshold

    # Candidates: every other condition, default order, no pagination
    candidate_filter = task_filter.model_copy(update={
        "search_query": "",
        "search_mode": "text",
        "sort_by": "created_at",
        "sort_order": "desc",
        "limit": None,
        "offset": 0,
    })
    candidates = list_tasks(session, candidate_filter)

    scored = []
    for task in candidates:
        value = fuzzy_task_score(task_filter.search_query, task)
        if value >= threshold:
            scored.append((value, task))

    # Stable sort keeps the default order among equal scores
    scored.sort(key=lambda pair: pair[0], reverse=True)
    ranked = [task for _, task in scored]

    logger.debug(
        f"Fuzzy search '{task_filter.search_query}' kept {len(ranked)} of "
        f"{len(candidates)} candidates at threshold {threshold}"
    )

    start = task_filter.offset
    end = start + task_filter.limit if task_filter.limit else None
    return ranked[start:end]


# =============================================================================
# Project listing
# =============================================================================

def task_count_column():
    """Correlated count of tasks attached to each project row."""
    return (
        select(func.count(Task.id))
        .where(Task.project_id == Project.id)
        .correlate(Project)
        .scalar_subquery()
    )


def project_conditions(project_filter: ProjectFilter) -> list[ColumnElement[bool]]:
    conditions: list[ColumnElement[bool]] = []

    if project_filter.status:
        conditions.append(Project.status == project_filter.status)
    if project_filter.exclude_archived:
        conditions.append(Project.status != "archived")
    if project_filter.parent_id == 0:
        conditions.append(Project.parent_id.is_(None))
    elif project_filter.parent_id is not None:
        conditions.append(Project.parent_id == project_filter.parent_id)
    if project_filter.is_favorite is not None:
        conditions.append(Project.is_favorite == project_filter.is_favorite)
    if project_filter.search_query:
        query = project_filter.search_query
        conditions.append(or_(
            Project.name.icontains(query, autoescape=True),
            Project.description.icontains(query, autoescape=True),
        ))

    return conditions


def list_projects(session: Session, project_filter: ProjectFilter | None = None) -> list[ProjectRead]:
    """List projects matching a filter, optionally with task counts."""
    project_filter = project_filter or ProjectFilter()
    descending = project_filter.sort_order == "desc"

    task_count = task_count_column().label("task_count")
    stmt = select(Project, task_count).where(*project_conditions(project_filter))

    if project_filter.sort_by == "task_count":
        primary = task_count
    else:
        primary = PROJECT_SORT_COLUMNS[project_filter.sort_by]
    stmt = stmt.order_by(
        primary.desc() if descending else primary.asc(),
        Project.id.desc() if descending else Project.id.asc(),
    )
    stmt = _paginate(stmt, project_filter.limit, project_filter.offset)

    projects = []
    for project, count in session.execute(stmt).all():
        read = ProjectRead.model_validate(project)
        if project_filter.include_task_count:
            read.task_count = count
        projects.append(read)

    logger.debug(f"Listed {len(projects)} projects")
    return projects


def count_projects(session: Session, project_filter: ProjectFilter | None = None) -> int:
    project_filter = project_filter or ProjectFilter()
    stmt = select(func.count(Project.id)).where(*project_conditions(project_filter))
    return session.execute(stmt).scalar_one()
