"""
Project Routes - Engagement Workflow API
Implements endpoints for:
- Listing and reading projects with derived status fields
- Creating projects and editing details or assignments
- Manual status changes
- Lock / start / finish / archive
- Comments, documents and invoice fields
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from practiceflow import supabase_client
from practiceflow import project_workflow as workflow
from practiceflow.auth import AuthContext, Capability, get_auth_context
from practiceflow.project_workflow import (
    InvoiceUpdate,
    ProjectCreate,
    ProjectUpdate,
    TransitionResult,
    WorkflowError,
)
from practiceflow.router_utils import to_http_exception, wrap_response
from practiceflow.schemas import (
    CommentCreateRequest,
    LockResponse,
    StatusChangeRequest,
    TransitionResponse,
)
from practiceflow.workflow_status import STATUS_VOCABULARY, DisplayStatus, describe_project

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


# ============================================================================
# Helpers
# ============================================================================

def require_supabase():
    supabase = supabase_client.get_supabase()
    if not supabase:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return supabase


def load_project(supabase, project_id: int, auth: AuthContext) -> dict:
    """Fetch a project the caller may see."""
    try:
        project = workflow.get_project(supabase, project_id)
    except WorkflowError as e:
        raise to_http_exception(e)

    if not auth.has_capability(Capability.VIEW_ALL_PROJECTS):
        if auth.user_id not in workflow.stakeholder_ids(project):
            raise HTTPException(status_code=403, detail="You are not assigned to this project")
    return project


def transition_response(result: TransitionResult) -> TransitionResponse:
    warnings = []
    if result.notification_error:
        warnings.append("Team members could not be notified of this change")
    return TransitionResponse(
        project=describe_project(result.project),
        changed=result.changed,
        notified=result.notified,
        warnings=warnings,
    )


# ============================================================================
# Reads
# ============================================================================

@router.get("/statuses")
async def list_statuses():
    """The manual status vocabulary in picker order."""
    return wrap_response(STATUS_VOCABULARY)


@router.get("")
async def list_projects(
    display_status: Optional[DisplayStatus] = Query(None),
    auth: AuthContext = Depends(get_auth_context)
):
    """
    List projects with derived fields.
    Staff without firm-wide visibility see only projects they prepare.
    """
    supabase = require_supabase()
    preparer_id = None if auth.has_capability(Capability.VIEW_ALL_PROJECTS) else auth.user_id

    try:
        rows = workflow.list_projects(supabase, preparer_id=preparer_id)
    except WorkflowError as e:
        raise to_http_exception(e)

    projects = [describe_project(row) for row in rows]
    if display_status:
        projects = [p for p in projects if p["display_status"] == display_status.value]
    return wrap_response(projects, meta={"pagination": {"total": len(projects)}})


@router.get("/{project_id}")
async def get_project(project_id: int, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    return wrap_response(describe_project(project))


# ============================================================================
# Create & edit
# ============================================================================

@router.post("")
async def create_project(request: ProjectCreate, auth: AuthContext = Depends(get_auth_context)):
    """Create an engagement and notify its assignees."""
    supabase = require_supabase()
    try:
        result = workflow.create_project(supabase, request, auth.to_actor())
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response(transition_response(result))


@router.patch("/{project_id}")
async def update_project(
    project_id: int,
    request: ProjectUpdate,
    expected_updated_at: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_auth_context)
):
    """Edit details or reassign preparers and reviewer. Rejected while locked."""
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    try:
        result = workflow.update_project(
            supabase, project, auth.to_actor(), request, expected_updated_at=expected_updated_at
        )
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response(transition_response(result))


# ============================================================================
# Status & lifecycle
# ============================================================================

@router.post("/{project_id}/status")
async def change_status(
    project_id: int,
    request: StatusChangeRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    try:
        result = workflow.set_status(
            supabase,
            project,
            request.status,
            auth.to_actor(),
            note=request.note,
            expected_updated_at=request.expected_updated_at,
        )
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response(transition_response(result))


@router.post("/{project_id}/lock")
async def toggle_lock(project_id: int, auth: AuthContext = Depends(get_auth_context)):
    """Lock or unlock a project. Partners and developers only."""
    auth.require_capability(Capability.LOCK_PROJECTS, "Only partners can lock projects")
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    try:
        is_locked = workflow.toggle_lock(supabase, project, auth.to_actor())
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response(LockResponse(project_id=project_id, is_locked=is_locked))


@router.post("/{project_id}/start")
async def start_project(project_id: int, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    try:
        result = workflow.start_project(supabase, project, auth.to_actor())
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response(transition_response(result))


@router.post("/{project_id}/finish")
async def finish_project(project_id: int, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    try:
        result = workflow.finish_project(supabase, project, auth.to_actor())
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response(transition_response(result))


@router.post("/{project_id}/archive")
async def archive_project(project_id: int, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    try:
        result = workflow.archive_project(supabase, project, auth.to_actor())
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response(transition_response(result))


# ============================================================================
# Comments
# ============================================================================

@router.get("/{project_id}/comments")
async def list_comments(project_id: int, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    return wrap_response(workflow.get_comments(project))


@router.post("/{project_id}/comments")
async def add_comment(
    project_id: int,
    request: CommentCreateRequest,
    auth: AuthContext = Depends(get_auth_context)
):
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    try:
        result = workflow.add_comment(supabase, project, auth.to_actor(), request.content)
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response(transition_response(result))


# ============================================================================
# Documents
# ============================================================================

@router.get("/{project_id}/documents")
async def list_documents(project_id: int, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    return wrap_response(workflow.get_documents(project))


@router.post("/{project_id}/documents")
async def upload_document(
    project_id: int,
    file: UploadFile = File(...),
    category: str = Form("General"),
    auth: AuthContext = Depends(get_auth_context)
):
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    content = await file.read()
    try:
        result = workflow.upload_document(
            supabase,
            project,
            auth.to_actor(),
            filename=file.filename or "",
            content=content,
            category=category,
            content_type=file.content_type,
        )
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response(transition_response(result))


@router.get("/{project_id}/documents/{document_id}/url")
async def get_document_url(
    project_id: int,
    document_id: str,
    auth: AuthContext = Depends(get_auth_context)
):
    """Short-lived signed download link for one stored document."""
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    document = next((d for d in workflow.get_documents(project) if str(d.get("id")) == document_id), None)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    try:
        url = workflow.get_document_url(supabase, document["file_path"])
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response({"url": url})


# ============================================================================
# Invoice
# ============================================================================

@router.patch("/{project_id}/invoice")
async def update_invoice(
    project_id: int,
    request: InvoiceUpdate,
    auth: AuthContext = Depends(get_auth_context)
):
    auth.require_capability(Capability.EDIT_INVOICES, "Only admins and partners can edit invoices")
    supabase = require_supabase()
    project = load_project(supabase, project_id, auth)
    try:
        updated = workflow.update_invoice(supabase, project, auth.to_actor(), request)
    except WorkflowError as e:
        raise to_http_exception(e)
    return wrap_response(describe_project(updated))
