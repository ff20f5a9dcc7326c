"""
JSON shapes for project exports and full backups.

Exported records carry their original identifiers; the merge engine maps
them to new ones on import.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from taskflow.schemas._fields import Priority, check_tags, non_blank


ConflictStrategy = Literal["skip", "overwrite", "merge"]

EXPORT_VERSION = "1.0"


class TaskData(BaseModel):
    id: int = 0
    title: str
    description: str = ""
    priority: str = "medium"
    status: str = "pending"
    tags: list[str] = Field(default_factory=list)
    due_date: str | None = None  # YYYY-MM-DD
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProjectData(BaseModel):
    id: int = 0
    name: str
    description: str = ""
    parent_id: int | None = None  # original parent id
    color: str = ""
    icon: str = ""
    status: str = "active"
    is_favorite: bool = False
    aliases: list[str] = Field(default_factory=list)
    notes: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    tasks: list[TaskData] = Field(default_factory=list)
    children: list["ProjectData"] = Field(default_factory=list)


class ProjectExport(BaseModel):
    version: str = EXPORT_VERSION
    project: ProjectData


class TaskDefinition(BaseModel):
    title: str = Field(max_length=200)
    description: str = Field(default="", max_length=1000)
    priority: Priority | Literal[""] = "medium"
    tags: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        return non_blank(value, "task title")

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value: list[str]) -> list[str]:
        return check_tags(value)


class TemplateData(BaseModel):
    name: str = Field(max_length=100)
    description: str = Field(default="", max_length=500)
    task_definitions: list[TaskDefinition] = Field(min_length=1, max_length=100)
    project_defaults: dict | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        return non_blank(value, "template name")


class SavedViewData(BaseModel):
    name: str = Field(max_length=100)
    description: str = Field(default="", max_length=500)
    filter_config: dict = Field(default_factory=dict)
    is_favorite: bool = False
    hot_key: int | None = Field(default=None, ge=1, le=9)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        return non_blank(value, "view name")


class SearchHistoryData(BaseModel):
    query_text: str
    search_mode: Literal["text", "regex", "fuzzy"] = "text"
    fuzzy_threshold: int | None = Field(default=None, ge=0, le=100)
    query_type: Literal["simple", "query_language", "project_mention"] = "simple"
    project_filter: str = ""
    result_count: int = 0

    @field_validator("query_text")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        return non_blank(value, "query text")


class BackupData(BaseModel):
    version: str = EXPORT_VERSION
    timestamp: datetime | None = None
    projects: list[ProjectData] = Field(default_factory=list)
    tasks: list[TaskData] = Field(default_factory=list)
    templates: list[TemplateData] = Field(default_factory=list)
    views: list[SavedViewData] = Field(default_factory=list)
    search_history: list[SearchHistoryData] = Field(default_factory=list)
