import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .forecast_service import ForecastService, build_service
from .routes import router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def create_app(service: Optional[ForecastService] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Forecast API startup...")
        forecast_service = service
        if forecast_service is None:
            settings = Settings.from_env()
            logging.getLogger("diet_forecast").setLevel(settings.log_level)
            forecast_service = build_service(settings)
        app.state.forecast_service = forecast_service
        logger.info(
            "Forecast service ready (%d regions, cache backend %s)",
            len(forecast_service.reference.regions), forecast_service.settings.cache_backend,
        )
        yield
        logger.info("Forecast API shutdown")

    app = FastAPI(title="Diet Election Forecast API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app


app = create_app()
