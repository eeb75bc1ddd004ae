"""
Background Dispatcher Worker
============================

Runs every ``WORKER_INTERVAL_SECONDS`` (default 15 s).

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs a cycle at a
  time across multiple API processes.
* Both steps are idempotent, so a cycle cut short by lock expiry is
  simply repeated by the next holder.

Steps per cycle
---------------
1. Activate scheduled loads whose ``schedule_date`` has passed.
2. Drain one batch of the outbox (reward retries, chat retries, pushes).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from loadmatch.config import settings
from loadmatch.infrastructure.database import async_session_factory
from loadmatch.infrastructure.locks import DistributedLock
from loadmatch.infrastructure.push import ExpoPushNotifier, PushNotifier
from loadmatch.infrastructure.redis_client import get_redis
from loadmatch.services.listings import ListingService
from loadmatch.services.outbox import OutboxProcessor

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_dispatch_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Dispatcher worker started (interval=%ds)", settings.worker_interval_seconds
    )


async def stop_dispatch_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Dispatcher worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a cycle then sleep."""
    assert _stop_event is not None
    notifier = ExpoPushNotifier()
    while not _stop_event.is_set():
        try:
            await run_dispatch_cycle(notifier=notifier)
        except Exception:
            logger.exception("Unhandled error in dispatch cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.worker_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_dispatch_cycle(
    session_factory=None,
    redis=None,
    notifier: Optional[PushNotifier] = None,
) -> dict[str, int]:
    """Execute one cycle.  Returns counters, empty if the lock was busy."""
    session_factory = session_factory or async_session_factory
    redis = redis or await get_redis()
    lock = DistributedLock(
        redis, "outbox_dispatcher", ttl_seconds=settings.worker_lock_ttl_seconds
    )

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return {}

    stats = {"activated": 0, "done": 0, "failed": 0}
    try:
        async with session_factory() as session:
            stats["activated"] = await ListingService(
                session
            ).activate_scheduled_loads()
            await session.commit()

        async with session_factory() as session:
            processor = OutboxProcessor(session, notifier or ExpoPushNotifier())
            stats["done"], stats["failed"] = await processor.drain(
                settings.outbox_batch_size
            )
            await session.commit()
    except Exception:
        logger.exception("Error in dispatch cycle")
    finally:
        await lock.release()

    return stats
