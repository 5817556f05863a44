from typing import List, Dict, Any, Optional, Generic, TypeVar
from pydantic import BaseModel, Field
from datetime import datetime

T = TypeVar('T')

# =============================================================================
# API ENVELOPE
# =============================================================================

class ApiMeta(BaseModel):
    version: int = 1
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    pagination: Optional[Dict[str, Any]] = None

class ApiError(BaseModel):
    code: str
    message: str
    target: Optional[str] = None # Field name or entity ID
    details: Optional[Any] = None

class ApiResponse(BaseModel, Generic[T]):
    data: Optional[T] = None
    meta: ApiMeta = Field(default_factory=ApiMeta)
    errors: Optional[List[ApiError]] = None

# =============================================================================
# WORKFLOW REQUESTS
# =============================================================================

class StatusChangeRequest(BaseModel):
    status: str
    note: Optional[str] = None
    expected_updated_at: Optional[str] = None # Reject the write if the row changed since

class CommentCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)

# =============================================================================
# WORKFLOW RESPONSES
# =============================================================================

class TransitionResponse(BaseModel):
    project: Dict[str, Any]
    changed: bool
    notified: List[str] = []
    warnings: List[str] = []

class LockResponse(BaseModel):
    project_id: int
    is_locked: bool
