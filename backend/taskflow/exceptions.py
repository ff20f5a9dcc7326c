"""
Structured exceptions and error responses for Taskflow.

Provides consistent error handling across the engine with:
- Custom exception classes (validation, hierarchy, lookup, conflict, storage)
- Structured error response format for callers that render errors
- Conversion of pydantic validation failures into ValidationError
"""

from typing import Any, Dict, List, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel


# =============================================================================
# Error Response Schema
# =============================================================================

class ErrorDetail(BaseModel):
    """Detail of a single error."""
    loc: Optional[List[str]] = None  # Location of error (e.g., ["title"])
    msg: str
    type: str


class ErrorResponse(BaseModel):
    """Structured error response format."""
    error: str  # Error code (e.g., "not_found", "cycle_detected")
    message: str  # Human-readable message
    details: Optional[List[ErrorDetail]] = None


# =============================================================================
# Custom Exceptions
# =============================================================================

class TaskflowException(Exception):
    """Base exception for all Taskflow errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "internal_error",
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=self.error_code,
            message=self.message,
            details=[ErrorDetail(**d) for d in self.details] if self.details else None,
        )


class ValidationError(TaskflowException):
    """A field constraint was violated."""

    def __init__(
        self,
        message: str,
        details: Optional[List[Dict[str, Any]]] = None,
        error_code: str = "validation_error",
    ):
        super().__init__(message=message, error_code=error_code, details=details)


class HierarchyError(TaskflowException):
    """A project parent assignment would break the tree."""

    def __init__(self, message: str, project_id: Optional[int] = None, parent_id: Optional[int] = None):
        super().__init__(message=message, error_code="hierarchy_error")
        self.project_id = project_id
        self.parent_id = parent_id


class NotFoundError(TaskflowException):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            message=f"{resource} {resource_id!r} not found",
            error_code="not_found",
        )
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(TaskflowException):
    """A unique name collision that the requested strategy does not resolve."""

    def __init__(self, resource: str, name: str):
        super().__init__(
            message=f"{resource} named {name!r} already exists",
            error_code="conflict",
        )
        self.resource = resource
        self.name = name


class StorageError(TaskflowException):
    """The backing store failed. The original error is chained as __cause__."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="storage_error")


# =============================================================================
# Helpers
# =============================================================================

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_model(schema: Type[ModelT], data: Any) -> ModelT:
    """
    Build a pydantic model, reporting failures as ValidationError.

    `data` may be a mapping, a model instance or a JSON document (str/bytes).
    The pydantic error list is kept in the same loc/msg/type shape as
    ErrorDetail.
    """
    try:
        if isinstance(data, (str, bytes)):
            return schema.model_validate_json(data)
        if isinstance(data, BaseModel) and not isinstance(data, schema):
            data = data.model_dump()
        return schema.model_validate(data)
    except pydantic.ValidationError as exc:
        details = [
            {
                "loc": [str(part) for part in err["loc"]],
                "msg": err["msg"],
                "type": err["type"],
            }
            for err in exc.errors()
        ]
        first = details[0] if details else {"loc": [], "msg": str(exc)}
        where = ".".join(first["loc"]) or schema.__name__
        raise ValidationError(f"{where}: {first['msg']}", details=details) from exc
