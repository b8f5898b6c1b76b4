"""Worker threads for crop requests.

The event loop never runs OpenCV work itself. Each request waits for one of
``max_concurrent`` slots, then ``FaceCropper.process`` runs on a worker thread
with a deadline measured from when the request arrived. A request that waits
longer than ``queue_timeout`` for a slot is refused with ``TimeoutError``.
Detection inside the cropper stays serialized by the detector lock.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from facecropper.cropper import FaceCropper

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkerStats:
    active: int
    waiting: int


class CropWorkers:
    """Runs crops for one shared cropper on a bounded set of threads."""

    def __init__(
        self,
        cropper: FaceCropper,
        max_concurrent: int,
        queue_timeout: float = 5.0,
        request_timeout: float | None = None,
    ) -> None:
        self._cropper = cropper
        self._slots = asyncio.Semaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="facecrop")
        self._queue_timeout = queue_timeout
        self._request_timeout = request_timeout
        self._active = 0
        self._waiting = 0
        self._stats_lock = threading.Lock()

    @property
    def cropper(self) -> FaceCropper:
        return self._cropper

    @property
    def stats(self) -> WorkerStats:
        with self._stats_lock:
            return WorkerStats(active=self._active, waiting=self._waiting)

    async def crop(self, content: bytes) -> bytes:
        """Crop ``content`` on a worker thread.

        Raises:
            TimeoutError: If no worker frees up within the queue timeout.
            CropperError: Whatever ``FaceCropper.process`` raises.
        """
        deadline = None
        if self._request_timeout is not None:
            deadline = time.monotonic() + self._request_timeout
        async with self._slot():
            loop = asyncio.get_running_loop()
            work = partial(self._cropper.process, content, deadline=deadline)
            return await loop.run_in_executor(self._executor, work)

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        self._adjust(waiting=1)
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._queue_timeout)
        finally:
            self._adjust(waiting=-1)
        self._adjust(active=1)
        try:
            yield
        finally:
            self._adjust(active=-1)
            self._slots.release()

    def _adjust(self, active: int = 0, waiting: int = 0) -> None:
        with self._stats_lock:
            self._active += active
            self._waiting += waiting

    def shutdown(self) -> None:
        """Wait for running crops, then stop the worker threads."""
        self._executor.shutdown(wait=True)
        logger.info("Crop workers stopped")
