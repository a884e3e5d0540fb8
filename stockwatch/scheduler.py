"""Optional periodic reconciliation.

Webhooks are the primary trigger. When CHECK_INTERVAL > 0, a background
thread also runs a full pass on that interval. Errors are logged without
stopping the loop.
"""

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from . import config

log = logging.getLogger(__name__)

_shutdown = threading.Event()
_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reconcile-loop")

MIN_INTERVAL = 10  # floor to prevent hammering the Shopify API


def _run_loop(name: str, check_fn: Callable[[], object], interval: int):
    """Run check_fn every interval seconds until shutdown is signalled.

    Sleeps in 1-second increments so shutdown is responsive.
    """
    interval = max(interval, MIN_INTERVAL)
    log.info(f"Scheduler: {name} started (interval={interval}s)")
    while not _shutdown.is_set():
        try:
            check_fn()
        except Exception:
            log.exception(f"Scheduler: {name} error")
        for _ in range(interval):
            if _shutdown.wait(1):
                break
    log.info(f"Scheduler: {name} stopped")


async def start_scheduler(check_fn: Callable[[], object]) -> list[asyncio.Future]:
    """Launch the periodic loop if enabled. Returns future handles."""
    _shutdown.clear()
    if config.CHECK_INTERVAL <= 0:
        log.info("Scheduler: periodic checks disabled (CHECK_INTERVAL=0)")
        return []
    loop = asyncio.get_running_loop()
    log.info(f"Scheduler: reconciliation every {config.CHECK_INTERVAL}s")
    return [loop.run_in_executor(_pool, _run_loop, "reconcile", check_fn, config.CHECK_INTERVAL)]


def stop_scheduler():
    """Signal the loop to stop."""
    log.info("Scheduler: stopping...")
    _shutdown.set()
