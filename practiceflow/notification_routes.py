"""
Notification Routes - In-app notification inbox
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from practiceflow import supabase_client
from practiceflow.auth import AuthContext, get_auth_context
from practiceflow.project_workflow import NOTIFICATIONS_TABLE
from practiceflow.router_utils import wrap_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def _require_supabase():
    supabase = supabase_client.get_supabase()
    if not supabase:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return supabase


@router.get("")
async def get_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context)
):
    """
    Get the caller's notifications, newest first.
    """
    supabase = _require_supabase()

    query = supabase.table(NOTIFICATIONS_TABLE)\
        .select("*")\
        .eq("user_id", auth.user_id)

    if unread_only:
        query = query.eq("is_read", False)

    result = query.order("created_at", desc=True).limit(limit).execute()

    unread = supabase.table(NOTIFICATIONS_TABLE)\
        .select("id", count="exact")\
        .eq("user_id", auth.user_id)\
        .eq("is_read", False)\
        .execute()

    return wrap_response({
        "notifications": result.data or [],
        "unread_count": unread.count or 0,
    })


@router.post("/read-all")
async def mark_all_read(auth: AuthContext = Depends(get_auth_context)):
    """
    Mark every unread notification of the caller as read.
    """
    supabase = _require_supabase()

    supabase.table(NOTIFICATIONS_TABLE)\
        .update({"is_read": True})\
        .eq("user_id", auth.user_id)\
        .eq("is_read", False)\
        .execute()

    return wrap_response({"success": True})


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    auth: AuthContext = Depends(get_auth_context)
):
    """
    Mark a notification as read.
    """
    supabase = _require_supabase()

    supabase.table(NOTIFICATIONS_TABLE)\
        .update({"is_read": True})\
        .eq("id", notification_id)\
        .eq("user_id", auth.user_id)\
        .execute()

    return wrap_response({"success": True})


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    auth: AuthContext = Depends(get_auth_context)
):
    supabase = _require_supabase()

    supabase.table(NOTIFICATIONS_TABLE)\
        .delete()\
        .eq("id", notification_id)\
        .eq("user_id", auth.user_id)\
        .execute()

    logger.info(f"Notification {notification_id} deleted by {auth.user_id}")
    return wrap_response({"success": True})
