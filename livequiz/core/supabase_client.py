# livequiz/core/supabase_client.py
from supabase import acreate_client, AsyncClient
from .config import settings

_supabase: AsyncClient | None = None


async def get_supabase() -> AsyncClient:
    """Singleton async Supabase client (PostgREST queries + Realtime channels)."""
    global _supabase
    if _supabase is None:
        if settings.SUPABASE_URL is None or not settings.supabase_key:
            raise RuntimeError("SUPABASE_URL and a Supabase key must be configured")
        # the client expects plain strings, not AnyUrl
        _supabase = await acreate_client(str(settings.SUPABASE_URL), str(settings.supabase_key))
    return _supabase


async def close_supabase() -> None:
    global _supabase
    if _supabase is not None:
        await _supabase.remove_all_channels()
        _supabase = None
