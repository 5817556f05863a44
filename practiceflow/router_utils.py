import logging
from fastapi import HTTPException
from typing import Any, List, Optional
from practiceflow.schemas import ApiResponse, ApiMeta, ApiError
from practiceflow.project_workflow import (
    WorkflowError, LockedError, ValidationError, ProjectNotFoundError, ConflictError,
)
from datetime import datetime

logger = logging.getLogger(__name__)

def wrap_response(data: Any, meta: Optional[dict] = None, errors: Optional[List[ApiError]] = None) -> ApiResponse:
    """Wraps data in the standardized API envelope."""
    return ApiResponse(
        data=data,
        meta=ApiMeta(
            timestamp=datetime.utcnow(),
            pagination=meta.get("pagination") if meta else None
        ),
        errors=errors
    )

def to_http_exception(error: WorkflowError) -> HTTPException:
    """Maps a workflow failure to the HTTP status the frontend expects."""
    if isinstance(error, LockedError):
        return HTTPException(status_code=423, detail={"code": "LOCKED", "message": error.message})
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail={"code": "VALIDATION", "message": error.message})
    if isinstance(error, ProjectNotFoundError):
        return HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": error.message})
    if isinstance(error, ConflictError):
        return HTTPException(
            status_code=409,
            detail={
                "code": "CONFLICT",
                "message": error.message,
                "expected_updated_at": error.expected_updated_at,
            }
        )
    logger.error(f"Workflow action failed: {error.message}")
    return HTTPException(status_code=502, detail={"code": "PERSISTENCE", "message": error.message})
