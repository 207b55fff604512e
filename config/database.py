"""
Database connection management.

Provides the Supabase client singleton used by the repositories.
"""

from supabase import create_client, Client
from functools import lru_cache
import structlog

from config.settings import settings
from exceptions.errors import DatabaseError

logger = structlog.get_logger(__name__)


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get cached Supabase client instance.

    Uses the service role key when configured, since version transfer
    writes across tenders. Call get_supabase_client.cache_clear() to
    reconnect.

    Raises:
        DatabaseError: If connection fails
    """
    key = settings.supabase_service_key or settings.supabase_key

    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "...",  # Log partial URL only
            service_role=bool(settings.supabase_service_key)
        )

        client = create_client(settings.supabase_url, key)

        # Test connection with simple query
        client.table("tenders").select("id").limit(1).execute()

        logger.info("supabase_connected")
        return client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise DatabaseError("connect", str(e)) from e


def check_connection() -> dict:
    """
    Check database connection health.

    Returns:
        dict: Connection status with row counts of the versioning tables
    """
    try:
        client = get_supabase_client()

        tenders = client.table("tenders").select("id", count="exact").execute()
        mappings = client.table("tender_version_mappings").select("id", count="exact").execute()

        return {
            "status": "healthy",
            "tenders_count": tenders.count,
            "mappings_count": mappings.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }
