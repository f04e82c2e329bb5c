from functools import lru_cache

from supabase import create_client, Client

from nutripal.core import config


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """Shared service-role client, built on first use."""
    url, key = config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY
    if not url or not key:
        raise EnvironmentError("Supabase URL and Key must be set in .env file")
    return create_client(url, key)
