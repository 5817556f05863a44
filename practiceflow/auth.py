"""
Authorization & Permissions Module

Resolves the calling staff member from their Supabase token and decides
what firm role they hold. Role checks live here; the workflow coordinator
itself never checks roles.
"""

import uuid
import logging
from typing import Dict, Optional, Set
from enum import Enum

from fastapi import HTTPException, Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from practiceflow import supabase_client
from practiceflow.project_workflow import Actor

logger = logging.getLogger(__name__)

# =============================================================================
# CAPABILITY DEFINITIONS
# =============================================================================

class FirmRole(str, Enum):
    PARTNER = "Partner"
    SENIOR = "Senior"
    STAFF = "Staff"
    ADMIN = "Admin"
    DEV = "Dev"


class Capability(str, Enum):
    """All available capabilities in the system"""
    LOCK_PROJECTS = "can_lock_projects"
    EDIT_INVOICES = "can_edit_invoices"
    VIEW_ALL_PROJECTS = "can_view_all_projects"


ROLE_CAPABILITIES: Dict[FirmRole, Set[Capability]] = {
    FirmRole.PARTNER: {Capability.LOCK_PROJECTS, Capability.EDIT_INVOICES, Capability.VIEW_ALL_PROJECTS},
    FirmRole.DEV: {Capability.LOCK_PROJECTS, Capability.EDIT_INVOICES, Capability.VIEW_ALL_PROJECTS},
    FirmRole.ADMIN: {Capability.EDIT_INVOICES, Capability.VIEW_ALL_PROJECTS},
    FirmRole.SENIOR: set(),
    FirmRole.STAFF: set(),
}


# =============================================================================
# AUTHORIZATION CONTEXT
# =============================================================================

class AuthContext:
    """
    Authorization context for a request.
    Contains user info and firm role.
    """
    def __init__(
        self,
        user_id: str,
        email: Optional[str] = None,
        role: Optional[str] = None,
        display_name: Optional[str] = None,
        request_id: Optional[str] = None
    ):
        self.user_id = user_id
        self.email = email
        self.role = role
        self.display_name = display_name
        self.request_id = request_id or str(uuid.uuid4())[:8]

    def has_capability(self, cap: Capability) -> bool:
        try:
            role = FirmRole(self.role)
        except ValueError:
            return False
        return cap in ROLE_CAPABILITIES.get(role, set())

    def require_capability(self, cap: Capability, message: str = None):
        """Raise HTTPException if capability is missing"""
        if not self.has_capability(cap):
            raise HTTPException(
                status_code=403,
                detail=message or f"Permission denied: {cap.value} required"
            )

    def to_actor(self) -> Actor:
        return Actor(user_id=self.user_id, display_name=self.display_name, email=self.email)

    def to_log_context(self) -> Dict[str, Optional[str]]:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "request_id": self.request_id,
        }


def _display_name(*sources: Optional[dict]) -> Optional[str]:
    for source in sources:
        if not source:
            continue
        name = " ".join(p for p in [source.get("first_name"), source.get("last_name")] if p)
        if name:
            return name
    return None


# =============================================================================
# AUTHENTICATION HELPERS
# =============================================================================

security = HTTPBearer(auto_error=False)


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> AuthContext:
    """
    Extract and validate authentication, returning an AuthContext.
    This is the primary auth dependency for protected endpoints.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]

    token = credentials.credentials if credentials else None
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    user = supabase_client.verify_supabase_token(token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = user.get("id")
    profile = supabase_client.get_user_profile(user_id) or {}

    auth = AuthContext(
        user_id=user_id,
        email=profile.get("email") or user.get("email"),
        role=profile.get("role"),
        display_name=_display_name(profile, user),
        request_id=request_id,
    )
    logger.debug(f"[Auth] Authenticated {auth.to_log_context()}")
    return auth
