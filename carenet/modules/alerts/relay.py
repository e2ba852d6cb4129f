import asyncio
import logging
from carenet.core.config import settings
from carenet.core.db import SessionLocal
from carenet.modules.alerts.service import AlertDispatcher

log = logging.getLogger("alerts.relay")

async def run_delivery_relay(poll_interval_seconds: float | None = None):
    """Retries due notification deliveries and escalates unacknowledged alerts."""
    interval = poll_interval_seconds or settings.DELIVERY_RELAY_POLL_SECONDS
    log.info("Delivery relay started (poll=%ss)", interval)
    try:
        while True:
            async with SessionLocal() as session:
                dispatcher = AlertDispatcher(session)
                try:
                    attempted = await dispatcher.deliver_due(limit=50)
                    escalated = await dispatcher.sweep_unacknowledged()
                    if attempted or escalated:
                        log.debug("Relay pass: %s deliveries retried, %s alerts escalated", attempted, escalated)
                except Exception:
                    log.exception("Delivery relay iteration failed")
                    await session.rollback()
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        log.info("Delivery relay cancelled; shutting down")
        raise
