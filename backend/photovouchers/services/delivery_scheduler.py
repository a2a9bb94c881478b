from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from fastapi import FastAPI

from photovouchers.core.config import settings
from photovouchers.db.session import SessionLocal
from photovouchers.services import leader_lock
from photovouchers.services.vouchers import deliver_due_vouchers

logger = logging.getLogger(__name__)


async def _run_once() -> int:
    async with SessionLocal() as session:
        return await deliver_due_vouchers(session)


async def _loop(stop: asyncio.Event) -> None:
    interval = max(30, int(getattr(settings, "voucher_delivery_poll_interval_seconds", 300) or 300))
    while not stop.is_set():
        try:
            sent = await _run_once()
            if sent:
                logger.info("voucher_delivery_sent", extra={"count": int(sent)})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.warning("voucher_delivery_scheduler_failed", extra={"error": str(exc)})

        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval)


def start(app: FastAPI) -> None:
    if not settings.voucher_delivery_scheduler_enabled:
        return
    if getattr(app.state, "voucher_delivery_task", None) is not None:
        return

    stop_event = asyncio.Event()
    app.state.voucher_delivery_stop = stop_event
    app.state.voucher_delivery_task = asyncio.create_task(
        leader_lock.run_as_leader(name="voucher_delivery_scheduler", stop=stop_event, work=_loop)
    )


async def stop(app: FastAPI) -> None:
    stop_event = getattr(app.state, "voucher_delivery_stop", None)
    task = getattr(app.state, "voucher_delivery_task", None)
    if stop_event:
        stop_event.set()
    if task:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    if getattr(app.state, "voucher_delivery_stop", None) is not None:
        delattr(app.state, "voucher_delivery_stop")
    if getattr(app.state, "voucher_delivery_task", None) is not None:
        delattr(app.state, "voucher_delivery_task")
