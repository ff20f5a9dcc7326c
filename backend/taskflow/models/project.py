from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


PROJECT_STATUSES = ("active", "archived", "completed")


class Project(SQLModel, table=True):
    """
    Project model - a named node in the project tree.

    Only the parent pointer is stored. Children, descendants and the
    root-to-node path are always computed by traversal.
    """

    __tablename__ = "projects"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(max_length=100, unique=True, index=True)
    description: str = Field(default="", max_length=500)
    parent_id: int | None = Field(
        default=None,
        foreign_key="projects.id",
        ondelete="CASCADE",
        index=True,
    )
    color: str = Field(default="")
    icon: str = Field(default="")
    status: str = Field(default="active", index=True)
    is_favorite: bool = Field(default=False, index=True)
    aliases: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    notes: str = Field(default="")

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
