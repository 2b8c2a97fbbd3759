"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        code: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            code: Application-specific error code
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.code = code
        self.extensions = extensions or {}

        # Create the problem details object
        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        if self.code:
            self.problem_details["code"] = self.code

        # Add extensions
        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )


class ValidationError(ProblemDetailsException):
    """Exception for request validation errors."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://tourdesk.dev/problems/validation-error",
            instance=instance,
            code="VALIDATION_ERROR",
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://tourdesk.dev/problems/resource-not-found",
            instance=instance,
            code="NOT_FOUND",
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri="https://tourdesk.dev/problems/resource-conflict",
            instance=instance,
            code="CONFLICT",
            extensions=extensions,
        )


class InternalServerError(ProblemDetailsException):
    """Exception for internal server errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred while processing the request",
        error_id: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not error_id:
            error_id = str(uuid.uuid4())

        extensions = {
            "error_id": error_id,
            "timestamp": _timestamp(),
        }

        super().__init__(
            status_code=500,
            title="Internal Server Error",
            detail=detail,
            type_uri="https://tourdesk.dev/problems/internal-server-error",
            instance=instance,
            code="INTERNAL_ERROR",
            extensions=extensions,
        )


# Business logic exceptions

class SyncInProgressError(ProblemDetailsException):
    """Exception when another sync run holds the tenant lock."""

    def __init__(
        self,
        tenant: str,
        waited_seconds: float,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = (
                f"A sync is already running for '{tenant}'. "
                f"Gave up after waiting {waited_seconds:g}s."
            )

        super().__init__(
            status_code=409,
            title="Sync In Progress",
            detail=detail,
            type_uri="https://tourdesk.dev/problems/sync-in-progress",
            instance=instance,
            code="SYNC_IN_PROGRESS",
            extensions={"tenant": tenant},
            headers={"Retry-After": str(max(1, int(waited_seconds)))},
        )


class GroupCapacityExceededError(ProblemDetailsException):
    """Exception when merged tours exceed the group's participant capacity."""

    def __init__(
        self,
        total_pax: int,
        max_pax: int,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"Total participants ({total_pax}) exceed the group capacity of {max_pax}"

        super().__init__(
            status_code=409,
            title="Group Capacity Exceeded",
            detail=detail,
            type_uri="https://tourdesk.dev/problems/group-capacity-exceeded",
            instance=instance,
            code="GROUP_CAPACITY_EXCEEDED",
            extensions={
                "total_pax": total_pax,
                "max_pax": max_pax,
            },
        )


class SyncAbortedError(ProblemDetailsException):
    """Exception when a run-level channel failure stops a sync midway."""

    def __init__(
        self,
        code: str,
        reason: str,
        summary: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=502,
            title="Sync Aborted",
            detail=reason,
            type_uri="https://tourdesk.dev/problems/sync-aborted",
            instance=instance,
            code=code,
            extensions={"summary": summary or {}},
        )
        self.reason = reason
        self.summary = summary or {}


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    problem_details = {
        "type": "https://tourdesk.dev/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "code": "INTERNAL_ERROR",
        "error_id": error_id,
        "timestamp": _timestamp(),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
        media_type="application/problem+json",
    )
