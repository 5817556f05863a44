"""
PracticeFlow - Workflow Status Engine
=====================================
Status vocabulary and the derived values shown on dashboards:
display status, status bucket, outstanding balance and progress.

Everything in this module is pure. Derived values are recomputed on every
read and never written back to the projects table.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel

# =============================================================================
# ENUMS & CONSTANTS
# =============================================================================

class ProjectStatus(str, Enum):
    """Manual status set by staff. Order is the order shown in the picker."""
    CLIENT_TO_SIGN = "Client to sign engagement and pay deposit"
    INFO_TO_COME = "Not start—info to come"
    TO_DO = "To Do"
    WORK_IN_PROGRESS = "Work in progress (WIP)"
    READY_FOR_REVIEW = "Ready for reviewer/partner to review"
    REVIEWED = "Reviewed"
    STAFF_TO_UPDATE = "staff to update"
    READY_FOR_FINAL_REVIEW = "Ready for final review"
    CLIENT_REVIEW = "For client review & approval"
    CLIENT_SIGNATURE = "For client signature"
    TO_EFILE = "To efile & prepare invoice (client signed)"
    COMPLETED = "Completed"


STATUS_VOCABULARY = [s.value for s in ProjectStatus]

# Statuses that carry a to_do_or_update note
NOTE_BEARING_STATUSES = frozenset({
    ProjectStatus.TO_DO.value,
    ProjectStatus.STAFF_TO_UPDATE.value,
})


class DisplayStatus(str, Enum):
    """Derived dashboard status, computed from the sub-status fields."""
    COMPLETED = "Completed"
    WAITING_FOR_CLIENT = "Waiting for Client"
    IN_PROGRESS = "In Progress"
    READY_FOR_REVIEW = "Ready for Review"
    REVIEWED = "Reviewed"
    NOT_STARTED = "Not Started"


class StatusBucket(str, Enum):
    """Coarse grouping of stored status text, used for badges and filters."""
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    NOT_STARTED = "not_started"
    IN_REVIEW = "in_review"
    REVIEWED = "reviewed"
    WITH_CLIENT = "with_client"
    EFILE = "efile"
    STAFF_UPDATE = "staff_update"
    DEFAULT = "default"


CANONICAL_BUCKETS: Dict[str, StatusBucket] = {
    ProjectStatus.CLIENT_TO_SIGN.value: StatusBucket.WITH_CLIENT,
    ProjectStatus.INFO_TO_COME.value: StatusBucket.NOT_STARTED,
    ProjectStatus.TO_DO.value: StatusBucket.NOT_STARTED,
    ProjectStatus.WORK_IN_PROGRESS.value: StatusBucket.IN_PROGRESS,
    ProjectStatus.READY_FOR_REVIEW.value: StatusBucket.IN_REVIEW,
    ProjectStatus.REVIEWED.value: StatusBucket.REVIEWED,
    ProjectStatus.STAFF_TO_UPDATE.value: StatusBucket.STAFF_UPDATE,
    ProjectStatus.READY_FOR_FINAL_REVIEW.value: StatusBucket.IN_REVIEW,
    ProjectStatus.CLIENT_REVIEW.value: StatusBucket.WITH_CLIENT,
    ProjectStatus.CLIENT_SIGNATURE.value: StatusBucket.WITH_CLIENT,
    ProjectStatus.TO_EFILE.value: StatusBucket.EFILE,
    ProjectStatus.COMPLETED.value: StatusBucket.COMPLETED,
}

# Substring rules for legacy free text, checked in order. First hit wins.
LEGACY_BUCKET_RULES = [
    (("completed",), StatusBucket.COMPLETED),
    (("wip", "work in progress"), StatusBucket.IN_PROGRESS),
    (("to do", "not start"), StatusBucket.NOT_STARTED),
    (("reviewer", "ready for final review"), StatusBucket.IN_REVIEW),
    (("reviewed",), StatusBucket.REVIEWED),
    (("client review", "for client"), StatusBucket.WITH_CLIENT),
    (("efile",), StatusBucket.EFILE),
    (("staff to update",), StatusBucket.STAFF_UPDATE),
]


# =============================================================================
# SCHEMAS
# =============================================================================

class StatusFields(BaseModel):
    """The subset of a project row the display status depends on."""
    archived_at: Optional[str] = None
    client_status: Optional[str] = None
    preparer_status: Optional[str] = None
    reviewer_status: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StatusFields":
        archived_at = row.get("archived_at")
        return cls(
            archived_at=str(archived_at) if archived_at else None,
            client_status=row.get("client_status"),
            preparer_status=row.get("preparer_status"),
            reviewer_status=row.get("reviewer_status"),
            status=row.get("status"),
        )


# =============================================================================
# VOCABULARY
# =============================================================================

def is_valid_status(value: Optional[str]) -> bool:
    """Exact, case-sensitive membership in the manual vocabulary."""
    return value in STATUS_VOCABULARY


def is_note_bearing(value: Optional[str]) -> bool:
    return value in NOTE_BEARING_STATUSES


def classify_status(value: Optional[str]) -> StatusBucket:
    """
    Map stored status text to a bucket.

    Canonical values have a fixed bucket. Anything else (older rows hold free
    text) is matched case-insensitively against LEGACY_BUCKET_RULES.
    """
    if not value:
        return StatusBucket.DEFAULT
    if value in CANONICAL_BUCKETS:
        return CANONICAL_BUCKETS[value]

    lowered = value.lower()
    for needles, bucket in LEGACY_BUCKET_RULES:
        if any(n in lowered for n in needles):
            return bucket
    return StatusBucket.DEFAULT


# =============================================================================
# DERIVED DISPLAY STATUS
# =============================================================================

def _ci(value: Optional[str]) -> Optional[str]:
    return value.lower() if isinstance(value, str) else None


def derive_display_status(fields: Union[StatusFields, Mapping[str, Any]]) -> DisplayStatus:
    """
    Reconcile the independently-set status fields into one display status.

    Priority order, first match wins:
      1. archived, or manual status "completed"   -> Completed
      2. client status not "completed"            -> Waiting for Client
      3. preparer status not sent/completed       -> In Progress
      4. preparer status "sent to reviewer"       -> Ready for Review
      5. reviewer status "approved"               -> Reviewed
      6. manual status "completed"                -> Completed
      7. otherwise                                -> Not Started
    """
    if not isinstance(fields, StatusFields):
        fields = StatusFields.from_row(fields)

    status = _ci(fields.status)
    client_status = _ci(fields.client_status)
    preparer_status = _ci(fields.preparer_status)
    reviewer_status = _ci(fields.reviewer_status)

    if fields.archived_at or status == "completed":
        return DisplayStatus.COMPLETED
    if client_status != "completed":
        return DisplayStatus.WAITING_FOR_CLIENT
    if preparer_status not in ("sent to reviewer", "completed"):
        return DisplayStatus.IN_PROGRESS
    if preparer_status == "sent to reviewer":
        return DisplayStatus.READY_FOR_REVIEW
    if reviewer_status == "approved":
        return DisplayStatus.REVIEWED
    # Shadowed by rule 1.
    if status == "completed":
        return DisplayStatus.COMPLETED
    return DisplayStatus.NOT_STARTED


# =============================================================================
# MONEY & SCHEDULE
# =============================================================================

def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


def calculate_outstanding_balance(project: Mapping[str, Any]) -> float:
    """Explicit `outstanding` wins; otherwise invoice + HST - received, floored at 0."""
    outstanding = project.get("outstanding")
    if outstanding is not None and outstanding != "":
        return float(outstanding)

    total = _to_float(project.get("amount")) + _to_float(project.get("hst_amount"))
    return max(0.0, total - _to_float(project.get("amount_received")))


def parse_date(value: Any) -> Optional[date]:
    """Accepts date, datetime or ISO text. Returns None for anything unusable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def calculate_progress(date_in: Any, due_date: Any, today: Optional[date] = None) -> float:
    """
    Share of the date_in..due_date window that has elapsed, as 0-100.

    Missing or unparseable dates give 0. A window of zero or negative length
    is all-or-nothing: 100 once the due date is reached, 0 before.
    """
    start = parse_date(date_in)
    due = parse_date(due_date)
    if start is None or due is None:
        return 0.0

    today = today or date.today()
    total_days = (due - start).days
    if total_days <= 0:
        return 100.0 if today >= due else 0.0

    elapsed_days = (today - start).days
    return min(max(elapsed_days / total_days * 100, 0.0), 100.0)


def describe_project(row: Mapping[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    """Project row plus every derived value the dashboards read."""
    preparers = row.get("preparer") or []
    return {
        **row,
        "display_status": derive_display_status(row).value,
        "status_bucket": classify_status(row.get("status")).value,
        "outstanding_balance": calculate_outstanding_balance(row),
        "progress": calculate_progress(row.get("date_in"), row.get("due_date"), today),
        "assigned_staff": len(preparers) if isinstance(preparers, list) else 0,
    }
