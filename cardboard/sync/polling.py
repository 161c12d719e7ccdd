from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

RELOAD_TIME_SHORT_S = 30.0
RELOAD_TIME_LONG_S = 5 * 60.0

SyncCallback = Callable[[], Awaitable[Any]]
VisibilityListener = Callable[[bool, bool], None]


class VisibilitySignal:
    """Whether the consumer of the board is currently looking at it."""

    def __init__(self, hidden: bool = False) -> None:
        self._hidden = hidden
        self._listeners: list[VisibilityListener] = []

    @property
    def hidden(self) -> bool:
        return self._hidden

    def set_hidden(self, hidden: bool) -> None:
        previous = self._hidden
        if previous == hidden:
            return
        self._hidden = hidden
        for listener in list(self._listeners):
            listener(previous, hidden)

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe


class PollingController:
    """Single pending timer whose period follows visibility.

    Enabling does not start a timer by itself; every sync cycle calls
    ``arm`` and the timer is only created while enabled and idle. When the
    board becomes visible again the pending timer is dropped and, if
    enabled, ``on_visible`` runs straight away.
    """

    def __init__(
        self,
        visibility: VisibilitySignal | None = None,
        *,
        short_s: float = RELOAD_TIME_SHORT_S,
        long_s: float = RELOAD_TIME_LONG_S,
        on_visible: SyncCallback | None = None,
    ) -> None:
        self.visibility = visibility or VisibilitySignal()
        self.short_s = short_s
        self.long_s = long_s
        self._on_visible = on_visible
        self._enabled = False
        self._timer: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()
        self._unsubscribe = self.visibility.subscribe(self._visibility_changed)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def period(self) -> float:
        return self.long_s if self.visibility.hidden else self.short_s

    def arm(self, callback: SyncCallback) -> bool:
        if not self._enabled or self._timer is not None:
            return False
        delay = self.period()
        self._timer = asyncio.get_running_loop().create_task(self._fire(delay, callback))
        self._running.add(self._timer)
        self._timer.add_done_callback(self._running.discard)
        logger.debug("next sync in %.0fs", delay)
        return True

    def cancel(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    async def _fire(self, delay: float, callback: SyncCallback) -> None:
        await asyncio.sleep(delay)
        self._timer = None
        await self._run(callback)

    async def _run(self, callback: SyncCallback) -> None:
        try:
            await callback()
        except Exception:
            logger.exception("polling sync cycle failed; retrying on next timer")

    def _visibility_changed(self, was_hidden: bool, hidden: bool) -> None:
        if hidden or not was_hidden:
            return
        self.cancel()
        if not self._enabled or self._on_visible is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("board visible again but no event loop is running; skipping sync")
            return
        task = loop.create_task(self._run(self._on_visible))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def aclose(self) -> None:
        self._unsubscribe()
        self.cancel()
        pending = list(self._running)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
