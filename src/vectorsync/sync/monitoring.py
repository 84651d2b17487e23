"""
Pipeline Monitoring - periodic metrics logging.
"""

import asyncio
import logging
from typing import Callable, Optional

import psutil

from ..models.sync_models import PipelineMetrics

logger = logging.getLogger(__name__)


def process_memory_mb() -> float:
    """Resident memory of the current process in megabytes."""
    return psutil.Process().memory_info().rss / 1024 / 1024


class PipelineMonitor:
    """Logs a metrics snapshot every ``interval`` seconds until stopped."""

    def __init__(self, metrics_provider: Callable[[], PipelineMetrics], interval: float = 60.0):
        self.metrics_provider = metrics_provider
        self.interval = interval

        self.monitoring_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self.snapshots_logged = 0

    @property
    def is_running(self) -> bool:
        return self.monitoring_task is not None and not self.monitoring_task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._shutdown_event.clear()
        self.monitoring_task = asyncio.create_task(self._monitoring_loop())
        logger.debug(f"Pipeline monitoring started (every {self.interval:.0f}s)")

    async def stop(self) -> None:
        if self.monitoring_task is None:
            return

        self._shutdown_event.set()
        try:
            await asyncio.wait_for(self.monitoring_task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Monitoring task shutdown timeout, cancelling")
            self.monitoring_task.cancel()
            try:
                await self.monitoring_task
            except asyncio.CancelledError:
                pass
        self.monitoring_task = None
        logger.debug("Pipeline monitoring stopped")

    async def _monitoring_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass  # Interval elapsed

            if self._shutdown_event.is_set():
                break

            try:
                self.log_snapshot()
            except Exception as e:
                logger.error(f"Error in monitoring loop: {e}")

    def log_snapshot(self) -> None:
        metrics = self.metrics_provider()
        logger.info(
            f"Vector sync: {metrics.documents_processed} processed, "
            f"{metrics.embeddings_generated} embedded, {metrics.errors} errors, "
            f"{metrics.pending_updates} pending, "
            f"{metrics.active_subscriptions} streams, {metrics.document_types} types, "
            f"{process_memory_mb():.1f} MB"
        )
        self.snapshots_logged += 1
