import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from worker.celery_app import celery
from app.core.config import settings
from app.repositories.sql import SqlListingRepository
from app.services.bootstrap import build_aggregator


log = logging.getLogger(__name__)


async def _refresh_listings() -> dict:
    if settings.store_backend != "sql":
        # a memory store lives inside the API process; nothing to refresh from here
        log.warning("refresh_listings: store_backend=%s, skipping", settings.store_backend)
        return {"ok": False, "skipped": True, "sources": {}}

    # fresh engine per task: asyncio.run() gives every task its own loop
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    aggregator = build_aggregator(settings, repo=SqlListingRepository(Session))
    try:
        summary = await aggregator.fetch_and_reconcile_all()
        return summary.as_dict()
    finally:
        await aggregator.client.aclose()
        await engine.dispose()


# Sent by an external scheduler or an operator; the service never schedules it itself.
@celery.task(name="worker.tasks.refresh_listings", bind=True, max_retries=0)
def refresh_listings(self) -> dict:
    return asyncio.run(_refresh_listings())
