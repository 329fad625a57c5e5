import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agriguru import __version__
from agriguru.config import settings
from agriguru.di import Container
from agriguru.errors import ConfigurationError
from agriguru.routers import ask, markets

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger("agriguru.main")


def create_app(container: Container = None) -> FastAPI:
    """Build the app. Tests pass a ready container; otherwise one is wired from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = container is None
        app.state.container = container or Container.build()
        log.info("🚀 AgriGuru API started")
        try:
            yield
        finally:
            if owned:
                await app.state.container.aclose()
            log.info("AgriGuru API stopped")

    app = FastAPI(title="AgriGuru", version=__version__, lifespan=lifespan)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError):
        log.error("❌ configuration error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    # API endpoints
    @app.get("/")
    async def root():
        return {"ok": True, "service": "AgriGuru", "version": app.version}

    @app.get("/health")
    async def health():
        return {
            "ok": True,
            "llm": bool(settings.OPENAI_API_KEY),
            "price_api": bool(settings.DATA_GOV_IN_API_KEY),
            "history_day_budget": settings.HISTORY_DAY_BUDGET,
            "nearby_radius_km": settings.NEARBY_RADIUS_KM,
            "deadline_sec": settings.RESOLVE_DEADLINE_SEC,
        }

    app.include_router(ask.router)
    app.include_router(markets.router)
    return app


app = create_app()
