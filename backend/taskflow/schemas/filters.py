"""
Filter definitions for listing, counting and bulk selection.

A filter is an immutable value; derive variants with model_copy(update=...).
"""

import re
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from taskflow.schemas._fields import Priority, ProjectStatus, TaskStatus


SearchMode = Literal["text", "regex", "fuzzy"]
SortOrder = Literal["asc", "desc"]
TaskSortKey = Literal["created_at", "updated_at", "due_date", "title", "priority"]
ProjectSortKey = Literal["name", "created_at", "updated_at", "task_count"]

# Lower due-date bound meaning "due date is unset"
NO_DUE_DATE = "none"


class TaskFilter(BaseModel):
    """Conditions, search mode, sort and pagination for task listings."""

    model_config = ConfigDict(frozen=True)

    status: TaskStatus | None = None
    priority: Priority | None = None
    project_id: int | None = None
    tags: list[str] = Field(default_factory=list)  # every tag must be present
    exclude_tags: list[str] = Field(default_factory=list)

    search_query: str = ""
    search_mode: SearchMode = "text"
    fuzzy_threshold: int | None = Field(default=None, ge=0, le=100)

    due_date_from: date | Literal["none"] | None = None
    due_date_to: date | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    updated_from: datetime | None = None
    updated_to: datetime | None = None

    sort_by: TaskSortKey = "created_at"
    sort_order: SortOrder = "desc"

    # limit None or 0 means no limit
    limit: int | None = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)

    @field_validator("search_mode", "sort_order", mode="before")
    @classmethod
    def lowercase(cls, value):
        return value.lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def regex_compiles(self) -> "TaskFilter":
        if self.search_mode == "regex" and self.search_query:
            try:
                re.compile(self.search_query)
            except re.error as exc:
                raise ValueError(f"invalid regular expression: {exc}") from exc
        return self

    @property
    def is_fuzzy(self) -> bool:
        return self.search_mode == "fuzzy" and bool(self.search_query)

    def without_pagination(self) -> "TaskFilter":
        return self.model_copy(update={"limit": None, "offset": 0})


class ProjectFilter(BaseModel):
    """Conditions, sort and pagination for project listings."""

    model_config = ConfigDict(frozen=True)

    status: ProjectStatus | None = None
    parent_id: int | None = None  # 0 selects root projects
    is_favorite: bool | None = None
    exclude_archived: bool = False
    include_task_count: bool = False
    search_query: str = ""

    sort_by: ProjectSortKey = "name"
    sort_order: SortOrder = "asc"

    limit: int | None = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)
