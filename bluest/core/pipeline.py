"""Producer/consumer queue between notification delivery and application code."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections.abc import Awaitable, Callable

from bluest.core.model import FeatureFrame
from bluest.core.session import DeviceSession

FrameHandler = Callable[[FeatureFrame], Awaitable[None] | None]
LOGGER = logging.getLogger(__name__)


class NotificationPipeline:
    """Unbounded frame queue drained by a single consumer loop.

    ``submit`` never blocks and may be called from any thread. After ``stop``
    new frames are refused, and ``run`` returns once every frame accepted
    before the stop has been handled.
    """

    def __init__(self, *, idle_wait_s: float = 0.05) -> None:
        self._idle_wait_s = idle_wait_s
        self._queue: asyncio.Queue[FeatureFrame] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stopping = threading.Event()
        self._draining = False
        self.processed = 0
        self.failed = 0

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def pending(self) -> int:
        return self._queue.qsize()

    def attach(self, session: DeviceSession) -> Callable[[], None]:
        """Feed every frame decoded by ``session`` into this pipeline."""
        return session.subscribe(self.submit)

    def submit(self, frame: FeatureFrame) -> None:
        if self._stopping.is_set():
            return
        loop = self._loop
        if loop is None or _running_loop() is loop:
            self._queue.put_nowait(frame)
        else:
            loop.call_soon_threadsafe(self._queue.put_nowait, frame)

    def stop(self) -> None:
        self._stopping.set()
        loop = self._loop
        if loop is None or _running_loop() is loop:
            self._draining = True
        else:
            # Queued after any put_nowait already scheduled from this thread.
            loop.call_soon_threadsafe(self._start_draining)

    def _start_draining(self) -> None:
        self._draining = True

    async def run(self, handler: FrameHandler) -> int:
        """Hand each queued frame to ``handler`` until stopped and drained."""
        self._loop = asyncio.get_running_loop()
        while True:
            try:
                frame = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                if self._draining:
                    break
                await asyncio.sleep(self._idle_wait_s)
                continue

            try:
                result = handler(frame)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self.failed += 1
                LOGGER.exception("Frame handler failed for timestamp %s", frame.timestamp)
            else:
                self.processed += 1

        LOGGER.debug("Pipeline drained: processed=%s failed=%s", self.processed, self.failed)
        return self.processed


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
