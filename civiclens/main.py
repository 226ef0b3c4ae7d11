import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.base import BaseHTTPMiddleware

from civiclens.core.config import get_app_settings
from civiclens.routes.complaints import router as complaints_router
from civiclens.services.mongodb_service import close_db, init_db
from civiclens.services.redis_service import close_redis, init_redis
from civiclens.services.service_factory import ServiceFactory

settings = get_app_settings()

# --- LOGGING SETUP ---
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


class TimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting CivicLens backend...")
    app_settings = get_app_settings()

    cache = await init_redis(app_settings.redis_url)
    app.state.cache = cache

    factory = ServiceFactory(cache=cache)
    result = await factory.initialize()
    app.state.services = factory
    logger.info(f"✅ AI and location services ready (gemini={result['services']['gemini']})")

    try:
        app.state.repository = await init_db(app_settings)
    except Exception as e:
        logger.error(f"❌ MongoDB initialization error: {e}", exc_info=True)
        app.state.repository = None
    if app.state.repository is None:
        logger.warning("⚠️ Starting without MongoDB - complaint routes will answer 503")

    logger.info("✅ All services initialized - Server ready!")
    yield

    logger.info("🔄 Shutting down...")
    await factory.shutdown()
    await close_db(app.state.repository)
    await close_redis(cache)
    logger.info("✅ All services closed gracefully")


def create_app() -> FastAPI:
    app = FastAPI(title="CivicLens Backend", version="1.0.0", lifespan=lifespan)
    app.state.services = None
    app.state.repository = None
    app.state.cache = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TimingMiddleware)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        path = request.url.path
        if not path.startswith("/uploads"):
            logger.info(f"📥 {request.method} {path}")
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"💥 Error causing 500: {path} - {e}", exc_info=True)
            return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(complaints_router, prefix="/api", tags=["Complaints"])
    app.mount(
        "/uploads",
        StaticFiles(directory=get_app_settings().upload_dir, check_dir=False),
        name="uploads",
    )

    @app.get("/health")
    async def health(request: Request):
        factory = request.app.state.services
        cache = request.app.state.cache
        return {
            "status": "ok" if factory is not None and factory.initialized else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "database": request.app.state.repository is not None,
            "cache": await cache.get_cache_stats() if cache is not None else {"status": "disconnected"},
            "services": factory.get_service_stats() if factory is not None else None,
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("civiclens.main:app", host="0.0.0.0", port=8000, reload=False)
