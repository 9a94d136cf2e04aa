import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tunesync.api.v1.router import api_router
from tunesync.core.config import settings
from tunesync.core.redis import close_redis_client
from tunesync.services.ws_manager import manager

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
    )

    if settings.BACKEND_CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/health")
    async def health():
        return {"status": "ok", "ws": manager.get_stats()}

    @app.on_event("shutdown")
    async def shutdown():
        await close_redis_client()

    return app


app = create_app()
