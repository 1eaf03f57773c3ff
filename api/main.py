"""
FastAPI application entrypoint.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from api import routes
from api.routes import router

logging.basicConfig(level=getattr(logging, routes.settings.LOG_LEVEL.upper(), logging.INFO))


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # release camera / microphone on shutdown
    routes.live_analyzer.stop()


app = FastAPI(title="Live Sensing API", version="1.0.0", lifespan=lifespan)
app.include_router(router)

@app.get("/health")
def health() -> dict:
    """
    Health check endpoint.

    Returns:
        dict: Simple status payload, including whether the landmark model is ready.
    """
    return {"status": "ok", "ready": routes.live_analyzer.is_ready()}
