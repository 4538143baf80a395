from typing import Annotated

from fastapi import Depends

from ..core.config import settings
from ..repositories.base import Store
from ..services.quiz_service import QuizService

_store: Store | None = None


async def get_store() -> Store:
    """Store singleton for the configured backend."""
    global _store
    if _store is None:
        if settings.STORE_BACKEND == "redis":
            from ..core.redis_manager import get_redis
            from ..repositories.redis_store import RedisStore

            _store = RedisStore(await get_redis())
        else:
            from ..core.supabase_client import get_supabase
            from ..repositories.supabase_store import SupabaseStore

            _store = SupabaseStore(await get_supabase(), schema=settings.SUPABASE_SCHEMA)
    return _store


def get_service(store: Annotated[Store, Depends(get_store)]) -> QuizService:
    return QuizService(store, code_attempts=settings.SESSION_CODE_ATTEMPTS)


StoreDep = Annotated[Store, Depends(get_store)]
ServiceDep = Annotated[QuizService, Depends(get_service)]
