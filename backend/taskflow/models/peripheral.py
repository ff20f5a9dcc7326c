"""
Records carried along by backups: templates, saved views and search history.

None of them take part in the project hierarchy.
"""

from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class ProjectTemplate(SQLModel, table=True):
    """A reusable list of task definitions applied when creating a project."""

    __tablename__ = "project_templates"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(max_length=100, unique=True, index=True)
    description: str = Field(default="", max_length=500)
    task_definitions: list[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    project_defaults: dict | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SavedView(SQLModel, table=True):
    """A named task filter."""

    __tablename__ = "saved_views"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(max_length=100, unique=True, index=True)
    description: str = Field(default="", max_length=500)
    filter_config: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    is_favorite: bool = Field(default=False)
    hot_key: int | None = Field(default=None, unique=True)  # 1-9
    last_accessed: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SearchHistory(SQLModel, table=True):
    """One remembered search, unique by (query_text, search_mode, query_type)."""

    __tablename__ = "search_history"

    id: int | None = Field(default=None, primary_key=True)
    query_text: str = Field(index=True)
    search_mode: str = Field(default="text")
    fuzzy_threshold: int | None = Field(default=None)
    query_type: str = Field(default="simple")
    project_filter: str = Field(default="")
    result_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, index=True)
