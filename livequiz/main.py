from contextlib import asynccontextmanager

from fastapi import FastAPI
from .core.config import settings
from .core.cors import setup_cors
from .core.logging_config import configure_logging
from .api.v1.routers import sessions as sessions_router
from .api.v1.routers import ws_router

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if settings.STORE_BACKEND == "redis":
        from .core.redis_manager import close_redis
        await close_redis()
    else:
        from .core.supabase_client import close_supabase
        await close_supabase()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
setup_cors(app)

app.include_router(sessions_router.router, prefix=settings.API_V1_PREFIX)

app.include_router(ws_router.ws_router)


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}
