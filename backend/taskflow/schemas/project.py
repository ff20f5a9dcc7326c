from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from taskflow.schemas._fields import ProjectStatus, check_aliases, check_color, non_blank


class ProjectCreate(BaseModel):
    """Schema for creating a new project."""
    name: str = Field(max_length=100)
    description: str = Field(default="", max_length=500)
    parent_id: int | None = None
    color: str = ""
    icon: str = Field(default="", max_length=10)
    status: ProjectStatus = "active"
    is_favorite: bool = False
    aliases: list[str] = Field(default_factory=list)
    notes: str = Field(default="", max_length=10000)

    # Imports keep the exported timestamps
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        return non_blank(value, "project name")

    @field_validator("color")
    @classmethod
    def valid_color(cls, value: str) -> str:
        return check_color(value)

    @field_validator("aliases")
    @classmethod
    def valid_aliases(cls, value: list[str]) -> list[str]:
        return check_aliases(value)


class ProjectUpdate(BaseModel):
    """
    Schema for updating a project.

    Only fields that were explicitly set are applied; setting parent_id to
    None moves the project to the root level.
    """
    name: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    parent_id: int | None = None
    color: str | None = None
    icon: str | None = Field(default=None, max_length=10)
    status: ProjectStatus | None = None
    is_favorite: bool | None = None
    aliases: list[str] | None = None
    notes: str | None = Field(default=None, max_length=10000)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str | None) -> str | None:
        return None if value is None else non_blank(value, "project name")

    @field_validator("color")
    @classmethod
    def valid_color(cls, value: str | None) -> str | None:
        return None if value is None else check_color(value)

    @field_validator("aliases")
    @classmethod
    def valid_aliases(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else check_aliases(value)


class ProjectRead(BaseModel):
    """Schema for reading a project."""
    id: int
    name: str
    description: str
    parent_id: int | None
    color: str
    icon: str
    status: str
    is_favorite: bool
    aliases: list[str]
    notes: str
    created_at: datetime
    updated_at: datetime
    task_count: int | None = None

    model_config = {"from_attributes": True}


class ProjectNode(ProjectRead):
    """
    A project with its computed subtree.

    Links only point downwards; `path` is the root-to-node name chain.
    """
    path: str
    depth: int = 0
    children: list["ProjectNode"] = Field(default_factory=list)
