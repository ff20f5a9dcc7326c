from datetime import date, datetime

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


PRIORITIES = ("low", "medium", "high", "urgent")
TASK_STATUSES = ("pending", "in_progress", "completed", "cancelled")

# Sort rank used by priority ordering
PRIORITY_RANK = {"urgent": 4, "high": 3, "medium": 2, "low": 1}


class Task(SQLModel, table=True):
    """
    Task model - a unit of work optionally attached to a project.

    Key fields:
    - tags: unordered set of strings, stored as a JSON list
    - project_id: weak reference, set to NULL when the project is deleted
    - due_date: date-only granularity
    """

    __tablename__ = "tasks"

    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(max_length=200, index=True)
    description: str = Field(default="", max_length=1000)
    priority: str = Field(default="medium", index=True)
    status: str = Field(default="pending", index=True)
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    # Foreign keys
    project_id: int | None = Field(
        default=None,
        foreign_key="projects.id",
        ondelete="SET NULL",
        index=True,
    )

    due_date: date | None = Field(default=None, index=True)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
