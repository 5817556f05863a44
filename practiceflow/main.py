import os
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from practiceflow import __version__, supabase_client
from practiceflow import notification_routes, project_routes, system_routes

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="PracticeFlow API",
    description="Engagement workflow, documents and notifications for the practice",
    version=__version__
)

allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

# Get additional allowed origins from environment
extra_origins = os.environ.get("CORS_ORIGINS", "")
if extra_origins:
    allowed_origins.extend([o.strip() for o in extra_origins.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system_routes.router)
app.include_router(project_routes.router)
app.include_router(notification_routes.router)


@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    port = os.environ.get("PORT", "8000")
    logger.info(f"PracticeFlow API starting on port {port}")
    logger.info(f"Supabase connected: {supabase_client.get_supabase() is not None}")
    logger.info(f"Environment: {supabase_client.get_environment()}")
