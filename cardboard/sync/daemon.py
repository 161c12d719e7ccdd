from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from ..events import ChangeOccurred
from .engine import IssueSync

logger = logging.getLogger(__name__)


async def run_sync_daemon(
    engine: IssueSync,
    *,
    stop_event: asyncio.Event | None = None,
    on_change: Callable[[ChangeOccurred], None] | None = None,
) -> None:
    """Poll until ``stop_event`` is set.

    The first cycle arms the timer before it touches the network, so a
    failed first sync is retried by the next timer like any other cycle.
    """
    unsubscribe = engine.subscribe(ChangeOccurred, on_change) if on_change else None
    engine.start_polling()
    stop = stop_event or asyncio.Event()
    try:
        try:
            cards = await engine.fetch_issues()
            logger.info("initial sync: %d cards", len(cards))
        except Exception:
            logger.exception("initial sync failed; retrying on next timer")
        await stop.wait()
    finally:
        engine.stop_polling()
        if unsubscribe is not None:
            unsubscribe()
        await engine.aclose()
