"""
Update Debouncer - coalesce bursts of writes to the same document.

Each ``(collection, document id)`` key holds at most one pending timer. A new
change cancels the previous timer and restarts the quiet window, so a burst
of writes results in one processing run with the latest document state.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from ..models.sync_models import PendingUpdate, document_id_of, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

ProcessCallback = Callable[[str, Dict[str, Any]], Awaitable[Any]]
PendingKey = Tuple[str, str]


def is_recently_embedded(
    document: Dict[str, Any], freshness_window: float, now: Optional[datetime] = None
) -> bool:
    """Whether the document carries an embedding stamp inside the window."""
    stamp = parse_timestamp(document.get("lastEmbeddingUpdate"))
    if stamp is None:
        return False
    now = now or utcnow()
    return (now - stamp).total_seconds() < freshness_window


class UpdateDebouncer:
    """Per-document debounce timers feeding a processing callback."""

    def __init__(
        self,
        callback: ProcessCallback,
        debounce_interval: float,
        freshness_window: float,
    ):
        self.callback = callback
        self.debounce_interval = debounce_interval
        self.freshness_window = freshness_window

        self._pending: Dict[PendingKey, PendingUpdate] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._closed = False

        self.notifications = 0
        self.coalesced = 0
        self.skipped_fresh = 0

    def notify(self, collection_name: str, document: Dict[str, Any]) -> bool:
        """
        Schedule processing of a changed document.

        Returns False when the change was dropped by the freshness guard or
        the debouncer is closed.
        """
        if self._closed:
            return False
        self.notifications += 1

        if is_recently_embedded(document, self.freshness_window):
            self.skipped_fresh += 1
            logger.debug(
                f"Skipping {collection_name}/{document_id_of(document)}: embedded recently"
            )
            return False

        key = (collection_name, document_id_of(document))
        previous = self._pending.pop(key, None)
        if previous is not None:
            previous.timer_handle.cancel()
            self.coalesced += 1

        loop = asyncio.get_running_loop()
        handle = loop.call_later(self.debounce_interval, self._fire, key)
        self._pending[key] = PendingUpdate(
            collection_name=collection_name,
            document_id=key[1],
            document=document,
            timer_handle=handle,
            scheduled_at=time.monotonic(),
        )
        return True

    def _fire(self, key: PendingKey) -> None:
        update = self._pending.pop(key, None)
        if update is None:
            return

        task = asyncio.get_running_loop().create_task(self._run(update))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run(self, update: PendingUpdate) -> None:
        try:
            await self.callback(update.collection_name, update.document)
        except Exception as e:
            logger.error(
                f"Processing {update.collection_name}/{update.document_id} failed: {e}"
            )

    def pending_count(self) -> int:
        return len(self._pending)

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def cancel_all(self) -> int:
        """Drop every pending timer without firing it."""
        count = len(self._pending)
        for update in self._pending.values():
            update.timer_handle.cancel()
        self._pending.clear()
        if count:
            logger.info(f"Cancelled {count} pending updates")
        return count

    def close(self) -> int:
        """Refuse further notifications and drop every pending timer."""
        self._closed = True
        return self.cancel_all()

    async def drain(self, timeout: float) -> int:
        """
        Wait for in-flight processing to finish.

        Tasks still running after ``timeout`` seconds are cancelled; the
        number cancelled is returned.
        """
        if not self._in_flight:
            return 0

        tasks = list(self._in_flight)
        logger.info(f"Waiting for {len(tasks)} in-flight updates")
        _, pending = await asyncio.wait(tasks, timeout=timeout)

        if pending:
            logger.warning(
                f"{len(pending)} updates still running after {timeout:.1f}s, cancelling"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        return len(pending)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "notifications": self.notifications,
            "coalesced": self.coalesced,
            "skipped_fresh": self.skipped_fresh,
            "pending": self.pending_count(),
            "in_flight": self.in_flight_count(),
        }
