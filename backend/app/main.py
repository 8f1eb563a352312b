import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from scrapers.base_scraper import TargetAdapter
from scrapers.context_pool import AutomationContextPool
from scrapers.orchestrator import SearchOrchestrator, default_adapters

from .api import api_router
from .config import Settings, get_settings
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

# Long-lived client bundle assets
_CACHED_SUFFIXES = {".js", ".css", ".png", ".jpg", ".svg"}
_CACHE_CONTROL = "public, max-age=2592000"


def create_app(
    settings: Settings = None,
    pool: AutomationContextPool = None,
    adapters: dict[str, TargetAdapter] = None,
) -> FastAPI:
    settings = settings or get_settings()
    pool = pool or AutomationContextPool()
    adapters = adapters or default_adapters(settings.scrape_timeouts())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down, closing all browsers")
        await pool.stop()

    app = FastAPI(
        title="QuickCompare API",
        description="Live grocery price comparison across Blinkit, Zepto and Instamart",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.pool = pool
    app.state.registry = SessionRegistry(pool, list(adapters))
    app.state.orchestrator = SearchOrchestrator(adapters, payload_timeout_s=settings.payload_timeout_s)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.get("/api/health")
    def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.app_env,
        }

    static_root = Path(settings.static_dir).resolve()

    @app.get("/{full_path:path}", include_in_schema=False)
    def client_app(full_path: str):
        if full_path == "api" or full_path.startswith("api/"):
            return JSONResponse({"error": "API endpoint not found"}, status_code=404)

        if full_path:
            candidate = (static_root / full_path).resolve()
            if candidate.is_file() and candidate.is_relative_to(static_root):
                headers = {"Cache-Control": _CACHE_CONTROL} if candidate.suffix in _CACHED_SUFFIXES else None
                return FileResponse(candidate, headers=headers)

        # Client-side routing: every other path renders the app shell
        index = static_root / "index.html"
        if index.is_file():
            return FileResponse(index)
        return JSONResponse({"error": "Client build not found"}, status_code=404)

    return app


app = create_app()
