"""Supabase client for the saved route store."""

from __future__ import annotations

import logging
from functools import lru_cache

from supabase import Client, create_client

from ..config import settings

logger = logging.getLogger(__name__)


def supabase_configured() -> bool:
    return bool(settings.supabase_url and settings.supabase_key)


@lru_cache()
def get_supabase_client() -> Client | None:
    """Cached client for the configured project, or None without credentials.

    Creating the client does not contact the server; bad credentials show up
    on the first query.
    """
    if not supabase_configured():
        logger.info("Supabase credentials not set (FIELDROUTE_SUPABASE_URL / FIELDROUTE_SUPABASE_KEY)")
        return None
    logger.debug(f"Creating Supabase client for {settings.supabase_url}")
    return create_client(settings.supabase_url, settings.supabase_key)
