"""
Change Subscription Manager - one resilient change stream per collection.

Each subscription is consumed by its own task. Transient stream failures
restart the stream after ``retry_delay``; failures that would repeat on
every restart (oversized documents, servers without change streams) leave
the subscription permanently failed without affecting the others.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from ..core.document_store import DocumentStore
from ..core.error_classifier import ErrorClassifier, default_classifier
from ..core.exceptions import ChangeStreamError
from ..models.sync_models import Subscription, SubscriptionState

logger = logging.getLogger(__name__)

EventSink = Callable[[str, Dict[str, Any]], Any]


class ChangeSubscriptionManager:
    """Owns the table of live change subscriptions."""

    def __init__(
        self,
        store: DocumentStore,
        event_sink: EventSink,
        retry_delay: float,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.store = store
        self.event_sink = event_sink
        self.retry_delay = retry_delay
        self.classifier = classifier or default_classifier

        self._subscriptions: Dict[str, Subscription] = {}
        self.errors = 0

    async def open(self, collection_name: str) -> Subscription:
        """
        Start watching a collection; returns the existing subscription if open.

        Returns once the first watch attempt has either produced a live stream
        or failed, so the subscription state reflects the server's answer.
        """
        existing = self._subscriptions.get(collection_name)
        if existing is not None and existing.state is not SubscriptionState.CLOSED:
            await existing.first_attempt.wait()
            return existing

        subscription = Subscription(collection_name=collection_name)
        self._subscriptions[collection_name] = subscription
        subscription.task = asyncio.create_task(
            self._consume(subscription), name=f"change-stream:{collection_name}"
        )
        await subscription.first_attempt.wait()
        logger.info(f"Change stream for {collection_name} is {subscription.state.value}")
        return subscription

    async def _consume(self, subscription: Subscription) -> None:
        name = subscription.collection_name

        try:
            while subscription.state is not SubscriptionState.CLOSED:
                try:
                    await self._stream_once(subscription)
                    if subscription.state is SubscriptionState.CLOSED:
                        break
                    raise ChangeStreamError(f"Change stream for {name} ended unexpectedly")
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if subscription.state is SubscriptionState.CLOSED:
                        break

                    self.errors += 1
                    self.classifier.classify(e)
                    subscription.last_error = str(e)
                    await self._close_handle(subscription)

                    if self.classifier.is_terminal_stream_error(e):
                        subscription.state = SubscriptionState.PERMANENTLY_FAILED
                        subscription.first_attempt.set()
                        logger.error(
                            f"Change stream for {name} failed permanently, "
                            f"vector updates for this collection are disabled: {e}"
                        )
                        return

                    subscription.state = SubscriptionState.RESTARTING
                    subscription.restart_count += 1
                    subscription.first_attempt.set()
                    logger.warning(
                        f"Change stream error for {name}: {e}; "
                        f"restarting in {self.retry_delay:.1f}s (restart #{subscription.restart_count})"
                    )
                    await asyncio.sleep(self.retry_delay)
        finally:
            subscription.first_attempt.set()

    async def _stream_once(self, subscription: Subscription) -> None:
        name = subscription.collection_name
        stream = await self.store.watch(name)
        subscription.handle = stream

        if subscription.state is SubscriptionState.CLOSED:
            await self._close_handle(subscription)
            return

        if subscription.state is SubscriptionState.RESTARTING:
            logger.info(f"Change stream for {name} restarted")
        subscription.state = SubscriptionState.ACTIVE
        subscription.first_attempt.set()

        async for change in stream:
            subscription.events_received += 1
            document = change.get("fullDocument")
            if not document:
                continue
            await self._deliver(name, document)

    async def _deliver(self, collection_name: str, document: Dict[str, Any]) -> None:
        try:
            result = self.event_sink(collection_name, document)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.errors += 1
            category = self.classifier.classify(e)
            logger.error(f"Failed to handle change in {collection_name} ({category.value}): {e}")

    async def _close_handle(self, subscription: Subscription) -> None:
        handle, subscription.handle = subscription.handle, None
        if handle is None:
            return
        try:
            await handle.close()
        except Exception as e:
            logger.debug(f"Ignoring error closing stream for {subscription.collection_name}: {e}")

    async def close(self, collection_name: str) -> None:
        subscription = self._subscriptions.pop(collection_name, None)
        if subscription is not None:
            await self._shutdown(subscription)

    async def close_all(self) -> None:
        """Stop every subscription and clear the table."""
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()

        await asyncio.gather(*(self._shutdown(sub) for sub in subscriptions))
        if subscriptions:
            logger.info(f"Closed {len(subscriptions)} change streams")

    async def _shutdown(self, subscription: Subscription) -> None:
        subscription.state = SubscriptionState.CLOSED
        subscription.first_attempt.set()
        await self._close_handle(subscription)

        task = subscription.task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Subscription task for {subscription.collection_name} ended with: {e}")

    def active_count(self) -> int:
        return sum(
            1 for sub in self._subscriptions.values()
            if sub.state is SubscriptionState.ACTIVE
        )

    def get_subscription(self, collection_name: str) -> Optional[Subscription]:
        return self._subscriptions.get(collection_name)

    def list_subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "active": self.active_count(),
            "errors": self.errors,
            "subscriptions": [sub.to_dict() for sub in self._subscriptions.values()],
        }
