"""
Supabase client construction and query execution helpers.
"""
from typing import Any

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import Client, create_client

from app.core.config import Settings
from app.core.exceptions import ConfigurationError, DatabaseConnectionError, DatabaseError

logger = structlog.get_logger(__name__)


def get_supabase_client(settings: Settings) -> Client:
    """
    Create a Supabase client with the service key.

    Args:
        settings: Application settings carrying SUPABASE_URL and SUPABASE_KEY

    Returns:
        Supabase client instance

    Raises:
        ConfigurationError: If the URL or key is missing
    """
    if not settings.supabase_url:
        raise ConfigurationError("Supabase URL is required for the supabase backend", setting="supabase_url")
    if not settings.supabase_key:
        raise ConfigurationError("Supabase key is required for the supabase backend", setting="supabase_key")

    logger.info("Creating Supabase client", supabase_url=settings.supabase_url)
    return create_client(settings.supabase_url, settings.supabase_key)


def execute_query(query: Any, operation: str) -> Any:
    """
    Execute a PostgREST query builder and normalize its failures.

    Args:
        query: Query builder returned by the Supabase client
        operation: Operation name for logging and error context

    Returns:
        The PostgREST response (``.data`` holds the rows)

    Raises:
        DatabaseConnectionError: Transport-level failure (retryable for reads)
        DatabaseError: The query was rejected by the database
    """
    try:
        return query.execute()
    except httpx.TransportError as e:
        logger.error("Database connection error", operation=operation, error=str(e))
        raise DatabaseConnectionError(f"Connection error during {operation}: {e}") from e
    except APIError as e:
        logger.error("Database query rejected", operation=operation, error=str(e))
        raise DatabaseError(f"Query failed during {operation}: {e}", operation=operation) from e
