"""
Supabase service client shared by the project store, profile store and storage.

Uses the service role key, so row ownership is enforced in Python
(see project_service) rather than by RLS.
"""

import os
import logging
from typing import Optional

from supabase import create_client, Client

logger = logging.getLogger(__name__)

_service_client: Optional[Client] = None


def get_service_client() -> Client:
    """Lazy-init Supabase client using service role key."""
    global _service_client
    if _service_client is None:
        url = os.getenv("SUPABASE_URL", "")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _service_client = create_client(url, key)
        logger.info("Supabase service client initialised")
    return _service_client
