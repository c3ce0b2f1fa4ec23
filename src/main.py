from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes_http import router as http_router
from api.routes_ws import router as ws_router
from config import settings
from ephemeris.bodies import SOLAR_SYSTEM

logger = logging.getLogger("swingby")
logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: expose the body catalog. Shutdown: cleanup."""
    logger.info("Body catalog ready: %d bodies", len(SOLAR_SYSTEM))
    app.state.catalog = SOLAR_SYSTEM
    yield
    logger.info("Shutting down Swingby")


app = FastAPI(
    title="Swingby: Multi Gravity Assist Trajectory Optimizer",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(http_router)
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.reload)
