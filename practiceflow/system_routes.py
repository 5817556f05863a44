"""
System Routes - Health check
"""

import logging
from datetime import datetime
from typing import Dict

from fastapi import APIRouter
from pydantic import BaseModel

from practiceflow import __version__, supabase_client
from practiceflow.project_workflow import PROJECTS_TABLE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/system", tags=["system"])


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.
    Public - no auth required.
    """
    services = {}

    try:
        supabase = supabase_client.get_supabase()
        if supabase:
            supabase.table(PROJECTS_TABLE).select("project_id").limit(1).execute()
            services["database"] = "healthy"
        else:
            services["database"] = "unavailable"
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        services["database"] = f"error: {str(e)[:50]}"

    status = "healthy" if all(v == "healthy" for v in services.values()) else "degraded"

    return HealthResponse(
        status=status,
        timestamp=datetime.utcnow().isoformat(),
        version=__version__,
        environment=supabase_client.get_environment(),
        services=services
    )
