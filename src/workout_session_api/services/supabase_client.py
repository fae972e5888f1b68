"""Supabase client factory."""
import logging
from typing import Optional

from supabase import Client, create_client

from workout_session_api.config import settings

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_supabase_client() -> Optional[Client]:
    """Get (or lazily create) the shared Supabase client.

    Returns None when credentials are missing or the client cannot be built.
    """
    global _client
    if _client is not None:
        return _client

    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        logger.warning("Supabase credentials not configured. Session persistence is disabled.")
        return None

    try:
        _client = create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    except Exception as e:
        logger.error(f"Failed to create Supabase client: {e}")
        return None
    return _client


def reset_supabase_client() -> None:
    """Drop the cached client (used after settings change and in tests)."""
    global _client
    _client = None
