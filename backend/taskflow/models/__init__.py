from taskflow.models.project import Project, PROJECT_STATUSES
from taskflow.models.task import Task, PRIORITIES, TASK_STATUSES, PRIORITY_RANK
from taskflow.models.peripheral import ProjectTemplate, SavedView, SearchHistory

__all__ = [
    "Project",
    "PROJECT_STATUSES",
    "Task",
    "PRIORITIES",
    "TASK_STATUSES",
    "PRIORITY_RANK",
    "ProjectTemplate",
    "SavedView",
    "SearchHistory",
]
