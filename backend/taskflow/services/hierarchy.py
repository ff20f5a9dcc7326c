"""
Hierarchy management for projects.

Projects store only a parent pointer. Children, descendants and paths are
computed with recursive CTEs on every call, so the tree is never cached.

Invariants enforced before every insert/update:
- Project names are unique
- Aliases are unique across all projects, ignoring case
- A parent must exist, must not be the project itself and must not be one of
  its descendants

The checks and the write run in the caller's session, so a unit of work that
wraps both sees a consistent tree.
"""

from datetime import datetime

from sqlalchemy import delete, func, literal, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlmodel import select

from taskflow.exceptions import ConflictError, HierarchyError, NotFoundError, ValidationError
from taskflow.logging_config import get_logger
from taskflow.models import Project, Task
from taskflow.schemas import ProjectCreate, ProjectFilter, ProjectNode, ProjectRead, ProjectUpdate
from taskflow.services import graph, query

logger = get_logger(__name__)


# =============================================================================
# Lookups
# =============================================================================

def get_project(session: Session, project_id: int) -> Project:
    project = session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


def get_project_by_name(session: Session, name: str) -> Project:
    project = session.execute(
        select(Project).where(Project.name == name)
    ).scalars().first()
    if project is None:
        raise NotFoundError("Project", name)
    return project


def find_project_by_name(session: Session, name: str) -> Project | None:
    return session.execute(
        select(Project).where(Project.name == name)
    ).scalars().first()


def get_project_by_alias(session: Session, alias: str) -> Project:
    """Find the project owning an alias, ignoring case."""
    wanted = alias.strip().lower()
    for project in session.execute(select(Project)).scalars():
        if any(existing.lower() == wanted for existing in project.aliases or []):
            return project
    raise NotFoundError("Project alias", alias)


def resolve_project(session: Session, ref: int | str) -> Project:
    """
    Resolve a project reference.

    Tries a numeric id first, then an exact name, then an alias.
    """
    if isinstance(ref, int) or (isinstance(ref, str) and ref.strip().isdigit()):
        project = session.get(Project, int(ref))
        if project is not None:
            return project
    ref = str(ref).strip()
    project = find_project_by_name(session, ref)
    if project is not None:
        return project
    return get_project_by_alias(session, ref)


# =============================================================================
# Traversal
# =============================================================================

def get_children(session: Session, project_id: int) -> list[Project]:
    get_project(session, project_id)
    return list(session.execute(
        select(Project).where(Project.parent_id == project_id).order_by(Project.name)
    ).scalars())


def get_descendant_ids(session: Session, project_id: int) -> set[int]:
    """Ids of every project below project_id, excluding project_id itself."""
    tree = (
        select(Project.id)
        .where(Project.parent_id == project_id)
        .cte("descendants", recursive=True)
    )
    tree = tree.union(
        select(Project.id).where(Project.parent_id == tree.c.id)
    )
    return set(session.execute(select(tree.c.id)).scalars())


def get_descendants(session: Session, project_id: int) -> list[Project]:
    """The full transitive closure below a project, ordered by name."""
    get_project(session, project_id)
    ids = get_descendant_ids(session, project_id)
    if not ids:
        return []
    return list(session.execute(
        select(Project).where(Project.id.in_(sorted(ids))).order_by(Project.name)
    ).scalars())


def get_path(session: Session, project_id: int) -> list[Project]:
    """Ancestors from the root down to the project, inclusive."""
    get_project(session, project_id)

    ancestors = (
        select(Project.id, Project.parent_id, literal(0).label("level"))
        .where(Project.id == project_id)
        .cte("ancestors", recursive=True)
    )
    ancestors = ancestors.union_all(
        select(Project.id, Project.parent_id, ancestors.c.level + 1)
        .where(Project.id == ancestors.c.parent_id)
    )
    stmt = (
        select(Project)
        .join(ancestors, Project.id == ancestors.c.id)
        .order_by(ancestors.c.level.desc())
    )
    return list(session.execute(stmt).scalars())


def get_path_string(session: Session, project_id: int) -> str:
    return graph.PATH_SEPARATOR.join(p.name for p in get_path(session, project_id))


# =============================================================================
# Invariant checks
# =============================================================================

def validate_hierarchy(session: Session, project_id: int | None, parent_id: int | None) -> None:
    """
    Check that project_id may be placed under parent_id.

    project_id None/0 means a project that does not exist yet, which has no
    descendants and always passes. Raises HierarchyError otherwise when the
    parent is the project itself or one of its descendants.
    """
    if not parent_id:
        return
    if project_id and project_id == parent_id:
        logger.warning(f"Rejected self-parent for project {project_id}")
        raise HierarchyError(
            "A project cannot be its own parent",
            project_id=project_id,
            parent_id=parent_id,
        )
    if not project_id:
        return
    if parent_id in get_descendant_ids(session, project_id):
        logger.warning(f"Rejected move of project {project_id} under its descendant {parent_id}")
        raise HierarchyError(
            f"Moving project {project_id} under {parent_id} would create a cycle",
            project_id=project_id,
            parent_id=parent_id,
        )


def _require_parent(session: Session, parent_id: int) -> Project:
    parent = session.get(Project, parent_id)
    if parent is None:
        raise HierarchyError(f"Parent project {parent_id} does not exist", parent_id=parent_id)
    return parent


def validate_alias_uniqueness(
    session: Session,
    alias: str,
    exclude_project_id: int | None = None,
) -> None:
    """Raise ValidationError if another project already uses the alias (any case)."""
    wanted = alias.lower()
    stmt = select(Project.id, Project.name, Project.aliases)
    if exclude_project_id is not None:
        stmt = stmt.where(Project.id != exclude_project_id)
    for _, name, aliases in session.execute(stmt).all():
        if any(existing.lower() == wanted for existing in aliases or []):
            raise ValidationError(
                f"Alias '{alias}' is already used by project '{name}'",
                details=[{"loc": ["aliases"], "msg": "alias already in use", "type": "duplicate_alias"}],
            )


def _check_name_available(session: Session, name: str, exclude_project_id: int | None = None) -> None:
    existing = find_project_by_name(session, name)
    if existing is not None and existing.id != exclude_project_id:
        raise ValidationError(
            f"Project name '{name}' already exists",
            details=[{"loc": ["name"], "msg": "name already in use", "type": "duplicate_name"}],
        )


def _flush(session: Session, project: Project) -> None:
    """Write the project, turning a store-level unique violation into ConflictError."""
    try:
        with session.begin_nested():
            session.add(project)
    except IntegrityError as exc:
        raise ConflictError("Project", project.name) from exc


# =============================================================================
# Mutations
# =============================================================================

def create_project(session: Session, project_in: ProjectCreate) -> Project:
    """
    Create a project after checking name, aliases and parent.

    Raises ValidationError on a duplicate name or alias and HierarchyError
    when the parent does not exist.
    """
    _check_name_available(session, project_in.name)
    for alias in project_in.aliases:
        validate_alias_uniqueness(session, alias)
    if project_in.parent_id is not None:
        _require_parent(session, project_in.parent_id)
        validate_hierarchy(session, None, project_in.parent_id)

    project = Project(**project_in.model_dump(exclude_none=True))
    _flush(session, project)

    logger.info(f"Created project: id={project.id} name='{project.name}' parent={project.parent_id}")
    return project


def update_project(session: Session, project_id: int, project_in: ProjectUpdate) -> Project:
    """
    Apply explicitly set fields to a project.

    Re-checks name and alias uniqueness (ignoring the project's own values)
    and the hierarchy when parent_id changes.
    """
    project = get_project(session, project_id)

    # Only parent_id may be set to None (move to root)
    update_data = {
        key: value
        for key, value in project_in.model_dump(exclude_unset=True).items()
        if value is not None or key == "parent_id"
    }

    if "name" in update_data and update_data["name"] != project.name:
        _check_name_available(session, update_data["name"], exclude_project_id=project.id)
    for alias in update_data.get("aliases", []):
        validate_alias_uniqueness(session, alias, exclude_project_id=project.id)
    if update_data.get("parent_id") is not None:
        _require_parent(session, update_data["parent_id"])
        validate_hierarchy(session, project.id, update_data["parent_id"])

    logger.info(f"Updating project {project_id}: {update_data}")

    for key, value in update_data.items():
        setattr(project, key, value)
    project.updated_at = datetime.utcnow()
    _flush(session, project)
    return project


def delete_project(session: Session, project_id: int) -> int:
    """
    Delete a project and its whole subtree.

    Tasks attached anywhere in the subtree are detached (project_id set to
    NULL), never deleted. Returns the number of projects removed.
    """
    project = get_project(session, project_id)
    subtree = sorted({project.id} | get_descendant_ids(session, project.id))

    logger.info(f"Deleting project {project_id} '{project.name}' with {len(subtree) - 1} descendants")

    with session.begin_nested():
        detached = session.execute(
            update(Task)
            .where(Task.project_id.in_(subtree))
            .values(project_id=None, updated_at=datetime.utcnow())
        ).rowcount
        # rowcount misses rows removed by the FK cascade
        session.execute(delete(Project).where(Project.id.in_(subtree)))

    logger.debug(f"Detached {detached} tasks from deleted projects")
    return len(subtree)


def _set_fields(session: Session, project_id: int, **fields) -> Project:
    project = get_project(session, project_id)
    for key, value in fields.items():
        setattr(project, key, value)
    project.updated_at = datetime.utcnow()
    _flush(session, project)
    logger.info(f"Project {project_id}: {fields}")
    return project


def archive_project(session: Session, project_id: int) -> Project:
    return _set_fields(session, project_id, status="archived")


def unarchive_project(session: Session, project_id: int) -> Project:
    return _set_fields(session, project_id, status="active")


def set_favorite(session: Session, project_id: int, is_favorite: bool) -> Project:
    return _set_fields(session, project_id, is_favorite=is_favorite)


# =============================================================================
# Listings
# =============================================================================

def get_roots(session: Session) -> list[ProjectRead]:
    return query.list_projects(session, ProjectFilter(parent_id=0))


def get_favorites(session: Session) -> list[ProjectRead]:
    return query.list_projects(session, ProjectFilter(is_favorite=True))


def get_task_count(session: Session, project_id: int) -> int:
    """Number of tasks attached directly to the project."""
    get_project(session, project_id)
    return session.execute(
        select(func.count(Task.id)).where(Task.project_id == project_id)
    ).scalar_one()


def list_project_tree(session: Session, project_filter: ProjectFilter | None = None) -> list[ProjectNode]:
    """
    Projects as a forest of computed nodes with root-to-node paths.

    Pagination is ignored; the tree needs the whole filtered set.
    """
    project_filter = (project_filter or ProjectFilter(include_task_count=True)).model_copy(
        update={"limit": None, "offset": 0}
    )
    return graph.build_forest(query.list_projects(session, project_filter))
