from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from taskflow.schemas._fields import Priority, TaskStatus, check_tags, non_blank


class TaskCreate(BaseModel):
    """Schema for creating a new task."""
    title: str = Field(max_length=200)
    description: str = Field(default="", max_length=1000)
    priority: Priority = "medium"
    status: TaskStatus = "pending"
    tags: list[str] = Field(default_factory=list)
    project_id: int | None = None
    due_date: date | None = None

    # Imports keep the exported timestamps
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        return non_blank(value, "task title")

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value: list[str]) -> list[str]:
        return check_tags(value)


class TaskUpdate(BaseModel):
    """
    Schema for updating a task.

    Only explicitly set fields are applied, so project_id=None detaches the
    task and due_date=None clears its due date.
    """
    title: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    priority: Priority | None = None
    status: TaskStatus | None = None
    tags: list[str] | None = None
    project_id: int | None = None
    due_date: date | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str | None) -> str | None:
        return None if value is None else non_blank(value, "task title")

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else check_tags(value)


class TaskRead(BaseModel):
    """Schema for reading a task with its project name."""
    id: int
    title: str
    description: str
    priority: str
    status: str
    tags: list[str]
    project_id: int | None
    project_name: str | None = None
    due_date: date | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
