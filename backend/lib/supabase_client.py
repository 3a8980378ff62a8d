"""
Supabase client for the persistence mirror
"""
from typing import Optional

from supabase import create_client, Client

from socratic_code_tutor.config import TutorSettings

_supabase_client: Optional[Client] = None


def get_supabase_client(settings: TutorSettings) -> Optional[Client]:
    """
    Get or create the Supabase client singleton.

    Returns None when SUPABASE_URL / SUPABASE_SERVICE_KEY are not set, in which
    case sessions are only kept in memory.
    """
    global _supabase_client

    if not settings.persistence_enabled:
        return None

    if _supabase_client is None:
        # Service role key: the backend writes on behalf of every student
        _supabase_client = create_client(settings.supabase_url, settings.supabase_service_key)

    return _supabase_client
