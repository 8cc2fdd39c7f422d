"""
Canonical Supabase client module - SINGLE SOURCE OF TRUTH.

This is the ONLY module allowed to call create_client directly. Stores receive
the client through their constructor; get_calendar_client() is the helper used
when wiring the application.
"""
import os
import logging
from typing import Dict

import httpx
from supabase import create_client, Client
from supabase.client import ClientOptions

from app import config

logger = logging.getLogger(__name__)


class Schema:
    """Database schema constants for explicit schema binding."""
    PUBLIC = 'public'


class Tables:
    """Table names used by the calendar stores."""
    CALENDARS = 'practitioner_calendars'
    APPOINTMENTS = 'appointments'
    USERS = 'users'
    PRACTITIONER_PROFILES = 'practitioner_profiles'


# Timeouts (configured once, used throughout)
DEFAULT_DB_TIMEOUT = 30.0  # seconds
DEFAULT_CONNECT_TIMEOUT = 10.0  # seconds


def _get_credentials() -> tuple:
    """Get Supabase credentials from environment."""
    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")

    if not supabase_url or not supabase_key:
        raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY/SERVICE_ROLE_KEY must be set")

    return supabase_url, supabase_key


_supabase_clients: Dict[str, Client] = {}


def _build_http_client() -> httpx.Client:
    """Build HTTP/1.1 client with tight timeouts for PostgREST calls."""
    return httpx.Client(
        http2=False,
        timeout=httpx.Timeout(
            connect=DEFAULT_CONNECT_TIMEOUT,
            read=DEFAULT_DB_TIMEOUT,
            write=DEFAULT_DB_TIMEOUT,
            pool=DEFAULT_DB_TIMEOUT
        ),
        limits=httpx.Limits(
            max_connections=100,
            max_keepalive_connections=20,
            keepalive_expiry=30.0
        ),
        follow_redirects=True
    )


def create_supabase_client(schema: str = Schema.PUBLIC) -> Client:
    """
    Create or get cached Supabase client for specified schema.

    The client is synchronous; stores call it through asyncio.to_thread so the
    event loop is never blocked.

    Args:
        schema: Database schema to bind

    Returns:
        Configured Supabase client
    """
    if schema in _supabase_clients:
        return _supabase_clients[schema]

    supabase_url, supabase_key = _get_credentials()

    options = ClientOptions(
        schema=schema,
        auto_refresh_token=False,  # For server/service-role usage
        persist_session=False
    )

    client = create_client(supabase_url, supabase_key, options=options)

    try:
        http_client = _build_http_client()
        if hasattr(client, '_postgrest') and hasattr(client._postgrest, 'session'):
            client._postgrest.session = http_client
    except Exception as e:
        logger.warning(f"Could not apply HTTP optimization: {e}")

    _supabase_clients[schema] = client
    logger.info(f"Created Supabase client for schema: {schema}")

    return client


def get_calendar_client() -> Client:
    """Get Supabase client bound to the calendar schema."""
    return create_supabase_client(config.CALENDAR_DB_SCHEMA)


def reset_clients() -> None:
    """Drop cached clients (used on shutdown and in tests)."""
    _supabase_clients.clear()
