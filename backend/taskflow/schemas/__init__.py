from taskflow.schemas.project import ProjectCreate, ProjectUpdate, ProjectRead, ProjectNode
from taskflow.schemas.task import TaskCreate, TaskUpdate, TaskRead
from taskflow.schemas.filters import TaskFilter, ProjectFilter, NO_DUE_DATE
from taskflow.schemas.bulk import TaskChanges, SetTo, CLEAR, UNCHANGED
from taskflow.schemas.backup import (
    BackupData,
    ConflictStrategy,
    ProjectData,
    ProjectExport,
    SavedViewData,
    SearchHistoryData,
    TaskData,
    TemplateData,
)

__all__ = [
    "ProjectCreate",
    "ProjectUpdate",
    "ProjectRead",
    "ProjectNode",
    "TaskCreate",
    "TaskUpdate",
    "TaskRead",
    "TaskFilter",
    "ProjectFilter",
    "NO_DUE_DATE",
    "TaskChanges",
    "SetTo",
    "CLEAR",
    "UNCHANGED",
    "BackupData",
    "ConflictStrategy",
    "ProjectData",
    "ProjectExport",
    "SavedViewData",
    "SearchHistoryData",
    "TaskData",
    "TemplateData",
]
