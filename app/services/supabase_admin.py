from loguru import logger
from supabase import Client, create_client

from app.core.config import SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL

_client: Client | None = None


def supabase_admin() -> Client:
    """Service-role client for the location store; bypasses row level security."""
    global _client
    if _client is None:
        if not (SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY):
            raise RuntimeError("LOCATION_STORE=supabase needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
        _client = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
        logger.info(f"Supabase admin client created | url={SUPABASE_URL}")
    return _client
