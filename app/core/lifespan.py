import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from app.core.config import settings
from app.services.processing_service import get_processing_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    service = get_processing_service()
    # Holds left behind by a crash are resolved before new work is accepted.
    service.reconcile_stale_debits()

    stop_event = asyncio.Event()

    async def periodic_reconcile() -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=max(60, settings.stale_debit_seconds))
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            try:
                await asyncio.to_thread(service.reconcile_stale_debits)
            except Exception as exc:  # pragma: no cover - defensive guard
                logger.warning("credit_reconcile_failed: %s", exc)

    reconcile_task = asyncio.create_task(periodic_reconcile())
    yield
    stop_event.set()
    if not reconcile_task.done():
        reconcile_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reconcile_task
