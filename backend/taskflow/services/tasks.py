from datetime import datetime

from sqlalchemy.orm import Session

from taskflow.exceptions import NotFoundError
from taskflow.logging_config import get_logger
from taskflow.models import Project, Task
from taskflow.schemas import TaskCreate, TaskRead, TaskUpdate

logger = get_logger(__name__)


def _require_project(session: Session, project_id: int) -> Project:
    project = session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


def create_task(session: Session, task_in: TaskCreate) -> Task:
    """Create a task, optionally attached to an existing project."""
    if task_in.project_id is not None:
        _require_project(session, task_in.project_id)

    task = Task(**task_in.model_dump(exclude_none=True))
    session.add(task)
    session.flush()

    logger.info(f"Created task: id={task.id} title='{task.title}' project={task.project_id}")
    return task


def get_task(session: Session, task_id: int) -> Task:
    task = session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


def read_task(session: Session, task_id: int) -> TaskRead:
    """Get a task with its project name."""
    task = get_task(session, task_id)
    project = session.get(Project, task.project_id) if task.project_id is not None else None
    return TaskRead(**task.model_dump(), project_name=project.name if project else None)


def update_task(session: Session, task_id: int, task_in: TaskUpdate) -> Task:
    """
    Update a task with explicitly set fields.

    project_id=None detaches the task and due_date=None clears the due date;
    other fields set to None are ignored.
    """
    task = get_task(session, task_id)

    nullable = {"project_id", "due_date"}
    update_data = {
        key: value
        for key, value in task_in.model_dump(exclude_unset=True).items()
        if value is not None or key in nullable
    }

    if update_data.get("project_id") is not None:
        _require_project(session, update_data["project_id"])

    logger.info(f"Updating task {task_id}: {update_data}")

    for key, value in update_data.items():
        setattr(task, key, value)
    task.updated_at = datetime.utcnow()
    session.flush()
    return task


def delete_task(session: Session, task_id: int) -> None:
    task = get_task(session, task_id)
    logger.info(f"Deleting task {task_id}: '{task.title}'")
    session.delete(task)
    session.flush()
