import os
import logging
from supabase import create_client, Client
from dotenv import load_dotenv
from jose import jwt, JWTError
from typing import Optional

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.environ.get("SUPABASE_URL") or os.environ.get("VITE_SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")  # Use service role for backend
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("VITE_SUPABASE_ANON_KEY")
SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET")  # JWT secret for token verification
PROJECT_DOCUMENTS_BUCKET = os.environ.get("PROJECT_DOCUMENTS_BUCKET", "project-documents")

if not SUPABASE_URL:
    logger.warning("SUPABASE_URL not set. Supabase features will be disabled.")
    supabase: Client | None = None
else:
    # Use service role key if available (full access), otherwise anon key
    key_to_use = SUPABASE_KEY or SUPABASE_ANON_KEY
    if key_to_use:
        supabase: Client = create_client(SUPABASE_URL, key_to_use)
    else:
        logger.warning("No Supabase key found. Supabase features will be disabled.")
        supabase = None

if not SUPABASE_JWT_SECRET:
    logger.warning("SUPABASE_JWT_SECRET not set. Token signatures will not be verified.")


def get_supabase() -> Client | None:
    """Get the Supabase client instance."""
    return supabase


def get_environment() -> str:
    return os.environ.get("ENVIRONMENT", "development")


def verify_supabase_token(token: str) -> Optional[dict]:
    """
    Decode a Supabase JWT and return the user data.

    When SUPABASE_JWT_SECRET is set the signature, algorithm and audience are
    verified. Returns None if the token is missing, fails verification or has
    no subject.
    """
    if not token:
        logger.debug("[Auth] No token provided")
        return None

    try:
        if SUPABASE_JWT_SECRET:
            decoded = jwt.decode(
                token,
                SUPABASE_JWT_SECRET,
                algorithms=["HS256"],
                audience="authenticated",
            )
        else:
            decoded = jwt.get_unverified_claims(token)
    except JWTError as decode_error:
        logger.warning(f"[Auth] JWT decode error: {decode_error}")
        return None

    user_id = decoded.get("sub")
    if not user_id:
        logger.warning("[Auth] No user_id (sub) in decoded token")
        return None

    metadata = decoded.get("user_metadata") or {}
    return {
        "id": user_id,
        "email": decoded.get("email"),
        "role": decoded.get("role", "authenticated"),
        "first_name": metadata.get("first_name"),
        "last_name": metadata.get("last_name"),
    }


def get_user_profile(user_id: str) -> dict | None:
    """Get user profile (name, email, firm role) from Supabase."""
    if not supabase:
        return None

    try:
        response = supabase.table("profiles").select("*").eq("id", user_id).single().execute()
        return response.data
    except Exception as e:
        logger.error(f"Error fetching profile {user_id}: {e}")
        return None
