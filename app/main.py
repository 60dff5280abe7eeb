import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.v1.router import router as v1_router
from app.core.config import settings
from app.core.telemetry import setup_telemetry
from app.services.bootstrap import build_aggregator


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=logging.INFO)
    aggregator = build_aggregator(settings)
    app.state.aggregator = aggregator
    try:
        yield
    finally:
        await aggregator.client.aclose()


app = FastAPI(title="Listing Aggregator API", version="0.1.0", lifespan=lifespan)

setup_telemetry(app)
app.include_router(v1_router)
