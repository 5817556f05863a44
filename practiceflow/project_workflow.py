"""
PracticeFlow - Project Transition Coordinator
=============================================
Applies workflow actions (status change, lock, start, finish, archive,
comments, documents, invoice and engagement edits) to a project row and
fans out notifications to the project's preparers and reviewer.

Every action is one write against the projects table. Notifications are
sent only after that update is confirmed and a notification failure never
undoes it.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from practiceflow.supabase_client import PROJECT_DOCUMENTS_BUCKET
from practiceflow.workflow_status import (
    STATUS_VOCABULARY,
    ProjectStatus,
    is_note_bearing,
    is_valid_status,
)

logger = logging.getLogger(__name__)

PROJECTS_TABLE = "projects"
PROFILES_TABLE = "profiles"
NOTIFICATIONS_TABLE = "notifications"

# =============================================================================
# ERRORS
# =============================================================================

class WorkflowError(Exception):
    """Base class for workflow failures. `message` is safe to show to users."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """Action rejected before any I/O."""


class LockedError(ValidationError):
    def __init__(self, project_id: Any = None):
        super().__init__("Project is locked")
        self.project_id = project_id


class PersistenceError(WorkflowError):
    """The projects table (or storage) refused or failed the write."""


class ProjectNotFoundError(PersistenceError):
    def __init__(self, project_id: Any):
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class ConflictError(PersistenceError):
    def __init__(self, project_id: Any, expected_updated_at: str):
        super().__init__(
            "The project has been modified by another user. Please reload."
        )
        self.project_id = project_id
        self.expected_updated_at = expected_updated_at


class NotificationError(WorkflowError):
    """Fan-out failed after a committed write. Reported, never raised to callers of actions."""


# =============================================================================
# SCHEMAS
# =============================================================================

class Actor(BaseModel):
    """The staff member performing an action."""
    user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.email or "Unknown User"

    @property
    def modified_by(self) -> str:
        return self.email or self.user_id


class TransitionResult(BaseModel):
    project: Dict[str, Any]
    changed: bool = True
    notified: List[str] = Field(default_factory=list)
    notification_error: Optional[str] = None


class InvoiceUpdate(BaseModel):
    invoice_number: Optional[str] = None
    amount: Optional[float] = Field(default=None, ge=0)
    hst_amount: Optional[float] = Field(default=None, ge=0)
    amount_received: Optional[float] = Field(default=None, ge=0)
    approximated_actual_time_used: Optional[float] = Field(default=None, ge=0)
    date_of_efile_mail: Optional[str] = None


class ProjectCreate(BaseModel):
    project_name: str
    due_date: str
    preparer: List[str] = Field(default_factory=list)
    reviewer: Optional[str] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    services_required: List[str] = Field(default_factory=list)
    engagement_type: Optional[str] = None
    client_partners: Optional[str] = None
    year_end: Optional[str] = None
    estimated_fees: Optional[float] = Field(default=None, ge=0)


class ProjectUpdate(BaseModel):
    """Editable engagement details. Only the fields a caller sets are written."""
    project_name: Optional[str] = None
    due_date: Optional[str] = None
    preparer: Optional[List[str]] = None
    reviewer: Optional[str] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    services_required: Optional[List[str]] = None
    engagement_type: Optional[str] = None
    client_partners: Optional[str] = None
    year_end: Optional[str] = None
    estimated_fees: Optional[float] = Field(default=None, ge=0)


# =============================================================================
# HELPERS
# =============================================================================

def _utcnow() -> datetime:
    return datetime.utcnow()


def _today() -> str:
    return _utcnow().date().isoformat()


def _audit_fields(actor: Actor) -> Dict[str, Any]:
    return {
        "updated_at": _utcnow().isoformat(),
        "last_modified_by": actor.modified_by,
    }


def _project_name(project: Dict[str, Any]) -> str:
    return project.get("project_name") or f"Project {project.get('project_id')}"


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    return (value or "").strip() or None


def _load_json(raw: Any, default: Any) -> Any:
    """Columns holding JSON arrive as text from older rows and as objects from newer ones."""
    if raw is None or raw == "":
        return default
    if isinstance(raw, (list, dict)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding unparseable JSON column value")
        return default


def ensure_unlocked(project: Dict[str, Any]) -> None:
    if project.get("is_locked"):
        raise LockedError(project.get("project_id"))


def _persist(
    supabase,
    project: Dict[str, Any],
    patch: Dict[str, Any],
    expected_updated_at: Optional[str] = None,
) -> Dict[str, Any]:
    """Write `patch` to one project row and return the row the store returned."""
    project_id = project.get("project_id")
    try:
        query = supabase.table(PROJECTS_TABLE).update(patch).eq("project_id", project_id)
        if expected_updated_at:
            query = query.eq("updated_at", expected_updated_at)
        res = query.execute()
    except Exception as e:
        logger.error(f"Failed to update project {project_id}: {e}")
        raise PersistenceError(str(e) or f"Failed to update project {project_id}") from e

    if not res.data:
        if expected_updated_at:
            raise ConflictError(project_id, expected_updated_at)
        raise ProjectNotFoundError(project_id)

    return {**project, **res.data[0]}


# =============================================================================
# NOTIFICATIONS
# =============================================================================

def stakeholder_ids(project: Dict[str, Any], exclude_user_id: Optional[str] = None) -> List[str]:
    """Distinct preparers plus the reviewer, minus the excluded user, in assignment order."""
    preparers = project.get("preparer") or []
    if isinstance(preparers, str):
        preparers = [p.strip() for p in preparers.split(",")]
    reviewer = project.get("reviewer")
    candidates = list(preparers) + ([reviewer] if reviewer else [])

    seen = set()
    recipients = []
    for user_id in candidates:
        if not user_id or user_id == exclude_user_id or user_id in seen:
            continue
        seen.add(user_id)
        recipients.append(user_id)
    return recipients


def notify_project_stakeholders(
    supabase,
    project: Dict[str, Any],
    exclude_user_id: Optional[str],
    title: str,
    message: str,
) -> List[str]:
    """
    Insert one notification per stakeholder with a profile.

    Ids with no matching profile are skipped. Returns the ids notified.
    Raises NotificationError if the lookup or insert fails.
    """
    return notify_users(supabase, stakeholder_ids(project, exclude_user_id), title, message)


def notify_users(supabase, candidates: List[str], title: str, message: str) -> List[str]:
    if not candidates:
        return []

    try:
        res = supabase.table(PROFILES_TABLE).select("id").in_("id", candidates).execute()
    except Exception as e:
        raise NotificationError(f"Recipient lookup failed: {e}") from e

    known = {row.get("id") for row in (res.data or [])}
    recipients = [c for c in candidates if c in known]
    skipped = [c for c in candidates if c not in known]
    if skipped:
        logger.info(f"Skipping notification recipients without profile: {skipped}")
    if not recipients:
        return []

    created_at = _utcnow().isoformat()
    rows = [
        {
            "user_id": recipient,
            "title": title,
            "message": message,
            "is_read": False,
            "created_at": created_at,
        }
        for recipient in recipients
    ]
    try:
        supabase.table(NOTIFICATIONS_TABLE).insert(rows).execute()
    except Exception as e:
        raise NotificationError(f"Notification insert failed: {e}") from e

    return recipients


def _fan_out(
    supabase,
    project: Dict[str, Any],
    actor: Actor,
    title: str,
    message: str,
    recipients: Optional[List[str]] = None,
) -> Tuple[List[str], Optional[str]]:
    if recipients is None:
        recipients = stakeholder_ids(project, actor.user_id)
    try:
        return notify_users(supabase, recipients, title, message), None
    except NotificationError as e:
        logger.warning(f"Notification fan-out for project {project.get('project_id')} failed: {e.message}")
        return [], e.message


def _committed(
    supabase,
    project: Dict[str, Any],
    actor: Actor,
    title: str,
    message: str,
    recipients: Optional[List[str]] = None,
) -> TransitionResult:
    notified, error = _fan_out(supabase, project, actor, title, message, recipients)
    return TransitionResult(project=project, notified=notified, notification_error=error)


# =============================================================================
# READS
# =============================================================================

def get_project(supabase, project_id: int) -> Dict[str, Any]:
    try:
        res = supabase.table(PROJECTS_TABLE).select("*").eq("project_id", project_id).execute()
    except Exception as e:
        logger.error(f"Failed to read project {project_id}: {e}")
        raise PersistenceError(str(e) or f"Failed to read project {project_id}") from e

    if not res.data:
        raise ProjectNotFoundError(project_id)
    return res.data[0]


def list_projects(supabase, preparer_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """All projects, or only those listing `preparer_id` among their preparers."""
    query = supabase.table(PROJECTS_TABLE).select("*")
    if preparer_id:
        query = query.contains("preparer", [preparer_id])
    try:
        res = query.execute()
    except Exception as e:
        logger.error(f"Failed to list projects: {e}")
        raise PersistenceError(str(e) or "Failed to list projects") from e
    return res.data or []


def get_comments(project: Dict[str, Any]) -> List[Dict[str, Any]]:
    comments = _load_json(project.get("comments"), [])
    return comments if isinstance(comments, list) else []


def get_documents(project: Dict[str, Any]) -> List[Dict[str, Any]]:
    notes = _load_json(project.get("notes"), {})
    documents = notes.get("documents") if isinstance(notes, dict) else None
    return documents if isinstance(documents, list) else []


# =============================================================================
# STATUS & LIFECYCLE
# =============================================================================

def set_status(
    supabase,
    project: Dict[str, Any],
    new_status: Union[ProjectStatus, str],
    actor: Actor,
    note: Optional[str] = None,
    expected_updated_at: Optional[str] = None,
) -> TransitionResult:
    """Change the manual status. Same-status requests are a no-op."""
    ensure_unlocked(project)

    if isinstance(new_status, ProjectStatus):
        new_status = new_status.value
    if not is_valid_status(new_status):
        raise ValidationError(
            f"Invalid status '{new_status}'. Must be one of: {', '.join(STATUS_VOCABULARY)}"
        )

    if new_status == project.get("status"):
        return TransitionResult(project=project, changed=False)

    patch = {
        "status": new_status,
        "to_do_or_update": _blank_to_none(note) if is_note_bearing(new_status) else None,
        **_audit_fields(actor),
    }
    updated = _persist(supabase, project, patch, expected_updated_at)
    logger.info(
        f"Project {updated.get('project_id')} status {project.get('status')!r} -> {new_status!r} by {actor.user_id}"
    )

    return _committed(
        supabase,
        updated,
        actor,
        title=f"[{_project_name(updated)}] status update",
        message=f"{actor.label} has updated the status to {new_status}",
    )


def toggle_lock(supabase, project: Dict[str, Any], actor: Actor) -> bool:
    """
    Flip is_locked and return the stored value.

    Allowed on locked projects. Whether the actor may lock is decided by the
    caller.
    """
    patch = {"is_locked": not bool(project.get("is_locked")), **_audit_fields(actor)}
    updated = _persist(supabase, project, patch)
    is_locked = bool(updated.get("is_locked"))
    logger.info(f"Project {updated.get('project_id')} is_locked={is_locked} by {actor.user_id}")

    _fan_out(
        supabase,
        updated,
        actor,
        title=f"[{_project_name(updated)}] {'locked' if is_locked else 'unlocked'}",
        message=f"{actor.label} has {'locked' if is_locked else 'unlocked'} the project",
    )
    return is_locked


def start_project(supabase, project: Dict[str, Any], actor: Actor) -> TransitionResult:
    ensure_unlocked(project)
    if project.get("date_in"):
        logger.info(f"Project {project.get('project_id')} already started on {project['date_in']}; resetting date_in")

    updated = _persist(supabase, project, {"date_in": _today(), **_audit_fields(actor)})
    return _committed(
        supabase,
        updated,
        actor,
        title=f"[{_project_name(updated)}] started",
        message=f"{actor.label} has started the project",
    )


def finish_project(supabase, project: Dict[str, Any], actor: Actor) -> TransitionResult:
    """Stamp date_completed. The manual status is left as it is."""
    ensure_unlocked(project)

    updated = _persist(supabase, project, {"date_completed": _today(), **_audit_fields(actor)})
    return _committed(
        supabase,
        updated,
        actor,
        title=f"[{_project_name(updated)}] finished",
        message=f"{actor.label} has marked the project as finished",
    )


def archive_project(supabase, project: Dict[str, Any], actor: Actor) -> TransitionResult:
    """Force every status field to its terminal value in a single update."""
    ensure_unlocked(project)

    today = _today()
    patch = {
        "status": ProjectStatus.COMPLETED.value,
        "client_status": "Completed",
        "preparer_status": "Completed",
        "reviewer_status": "Approved",
        "archived_at": today,
        "date_completed": today,
        "to_do_or_update": None,
        **_audit_fields(actor),
    }
    updated = _persist(supabase, project, patch)
    logger.info(f"Project {updated.get('project_id')} archived by {actor.user_id}")

    return _committed(
        supabase,
        updated,
        actor,
        title=f"[{_project_name(updated)}] archived",
        message=f"{actor.label} has archived the project",
    )


# =============================================================================
# CREATE & EDIT
# =============================================================================

def _assignment_message(project: Dict[str, Any]) -> Tuple[str, str]:
    return "New Project", f"{_project_name(project)} has been assigned to you"


def create_project(supabase, details: ProjectCreate, actor: Actor) -> TransitionResult:
    """Insert a new engagement and notify everyone assigned to it except the creator."""
    name = details.project_name.strip()
    if not name:
        raise ValidationError("Project name is required")
    if not details.due_date:
        raise ValidationError("Due date is required")
    preparers = [p for p in dict.fromkeys(details.preparer) if p]
    if not preparers:
        raise ValidationError("Please assign at least one staff member")

    now = _utcnow().isoformat()
    row = {
        **details.model_dump(),
        "project_name": name,
        "preparer": preparers,
        "reviewer": _blank_to_none(details.reviewer),
        "engagement_type": _blank_to_none(details.engagement_type),
        "client_partners": _blank_to_none(details.client_partners),
        "year_end": details.year_end or None,
        "created_by": actor.email or "Unknown User",
        "created_at": now,
        "updated_at": now,
    }
    try:
        res = supabase.table(PROJECTS_TABLE).insert(row).execute()
    except Exception as e:
        logger.error(f"Failed to create project {name!r}: {e}")
        raise PersistenceError(str(e) or "Failed to create project") from e
    if not res.data:
        raise PersistenceError("Failed to create project")

    created = res.data[0]
    logger.info(f"Project {created.get('project_id')} created by {actor.user_id}")

    title, message = _assignment_message(created)
    return _committed(supabase, created, actor, title, message)


def update_project(
    supabase,
    project: Dict[str, Any],
    actor: Actor,
    changes: ProjectUpdate,
    expected_updated_at: Optional[str] = None,
) -> TransitionResult:
    """
    Edit engagement details and assignments.

    Only users newly added as preparer or reviewer are notified.
    """
    ensure_unlocked(project)

    patch = changes.model_dump(exclude_unset=True)
    if not patch:
        raise ValidationError("No project fields to update")

    if "project_name" in patch:
        patch["project_name"] = _blank_to_none(patch["project_name"])
        if not patch["project_name"]:
            raise ValidationError("Project name is required")
    if "due_date" in patch and not patch["due_date"]:
        raise ValidationError("Due date is required")
    if "preparer" in patch:
        patch["preparer"] = [p for p in dict.fromkeys(patch["preparer"] or []) if p]
    for field in ("reviewer", "engagement_type", "client_partners", "year_end"):
        if field in patch:
            patch[field] = _blank_to_none(patch[field])
    patch.update(_audit_fields(actor))

    updated = _persist(supabase, project, patch, expected_updated_at)
    logger.info(f"Project {updated.get('project_id')} edited by {actor.user_id}: {sorted(changes.model_fields_set)}")

    already_assigned = set(stakeholder_ids(project))
    added = [u for u in stakeholder_ids(updated, actor.user_id) if u not in already_assigned]
    if not added:
        return TransitionResult(project=updated)

    title, message = _assignment_message(updated)
    return _committed(supabase, updated, actor, title, message, recipients=added)


# =============================================================================
# COMMENTS, DOCUMENTS & INVOICE
# =============================================================================

def add_comment(supabase, project: Dict[str, Any], actor: Actor, content: str) -> TransitionResult:
    """Prepend a comment. Existing comments are never edited."""
    ensure_unlocked(project)
    content = (content or "").strip()
    if not content:
        raise ValidationError("Comment cannot be empty")

    now = _utcnow()
    comment = {
        "id": str(int(now.timestamp() * 1000)),
        "author": actor.label,
        "content": content,
        "timestamp": now.isoformat(),
        "mentions": [],
    }
    comments = [comment] + get_comments(project)

    updated = _persist(
        supabase,
        project,
        {"comments": json.dumps(comments), **_audit_fields(actor)},
    )
    return _committed(
        supabase,
        updated,
        actor,
        title=f"New comment on {_project_name(updated)}",
        message=f"{actor.label} sent a comment about the project",
    )


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {units[unit]}"


def upload_document(
    supabase,
    project: Dict[str, Any],
    actor: Actor,
    filename: str,
    content: bytes,
    category: str = "General",
    content_type: Optional[str] = None,
) -> TransitionResult:
    """Store the file in the documents bucket, then record its metadata on the project."""
    ensure_unlocked(project)
    if not filename:
        raise ValidationError("A file name is required")

    filename = re.split(r"[\\/]", filename)[-1]
    safe_filename = re.sub(r"[^\w\.\-]", "_", filename)
    if not safe_filename.strip("._"):
        raise ValidationError("A file name is required")

    now = _utcnow()
    project_id = project.get("project_id")
    file_path = f"projects/{project_id}/{int(now.timestamp() * 1000)}_{safe_filename}"

    try:
        supabase.storage.from_(PROJECT_DOCUMENTS_BUCKET).upload(
            file_path,
            content,
            {"content-type": content_type or "application/octet-stream"},
        )
    except Exception as e:
        logger.error(f"Upload of {file_path} failed: {e}")
        raise PersistenceError(str(e) or "Failed to upload file") from e

    extension = filename.rsplit(".", 1)[-1].upper() if "." in filename else "FILE"
    document = {
        "id": str(int(now.timestamp() * 1000)),
        "name": filename,
        "category": category,
        "upload_date": now.date().isoformat(),
        "size": format_file_size(len(content)),
        "type": extension,
        "version": 1,
        "file_path": file_path,
        "uploaded_by": actor.label,
    }
    documents = [document] + get_documents(project)

    try:
        updated = _persist(
            supabase,
            project,
            {"notes": json.dumps({"documents": documents}), **_audit_fields(actor)},
        )
    except PersistenceError:
        _remove_stored_file(supabase, file_path)
        raise
    return _committed(
        supabase,
        updated,
        actor,
        title="New document uploaded",
        message=f"{actor.label} has uploaded a new document on {_project_name(updated)}",
    )


def _remove_stored_file(supabase, file_path: str) -> None:
    try:
        supabase.storage.from_(PROJECT_DOCUMENTS_BUCKET).remove([file_path])
    except Exception as e:
        logger.warning(f"Could not remove orphaned upload {file_path}: {e}")


def get_document_url(supabase, file_path: str, expires_in: int = 3600) -> str:
    try:
        res = supabase.storage.from_(PROJECT_DOCUMENTS_BUCKET).create_signed_url(file_path, expires_in)
    except Exception as e:
        raise PersistenceError(str(e) or "Failed to create download link") from e
    return res.get("signedURL") or res.get("signedUrl")


def update_invoice(supabase, project: Dict[str, Any], actor: Actor, invoice: InvoiceUpdate) -> Dict[str, Any]:
    ensure_unlocked(project)

    patch = invoice.model_dump(exclude_unset=True)
    if not patch:
        raise ValidationError("No invoice fields to update")
    if patch.get("invoice_number") is not None:
        patch["invoice_number"] = patch["invoice_number"].strip() or None
    if patch.get("date_of_efile_mail") is not None:
        patch["date_of_efile_mail"] = patch["date_of_efile_mail"].strip() or None
    patch.update(_audit_fields(actor))

    updated = _persist(supabase, project, patch)
    logger.info(f"Invoice fields updated on project {updated.get('project_id')} by {actor.user_id}")
    return updated
