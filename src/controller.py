"""
Operator Controller - Ingress reconciliation loop.

Similar to Kubernetes controllers: watches Ingresses and the Routes they own,
and for every notification reconciles the Ingress' desired state with the
actual state through a translator plugin.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from db import ConflictError, DatabaseManager, NotFoundError
from events import EventBus, ObjectEvent
from objects import Ingress, NamespacedName, Route, semantic_equal
from plugins.translators.base import IngressTranslator
from watch import EnqueueRequestForObject, EnqueueRequestForOwner, EventHandler
from workqueue import WorkQueue

logger = logging.getLogger(__name__)


@dataclass
class ControllerConfig:
    """Configuration for the controller."""

    max_concurrent_reconciles: int = 5
    resync_interval: int = 300  # seconds between full resyncs, 0 disables

    # Exponential backoff configuration for failed reconciles
    backoff_base_delay: float = 1.0  # base delay in seconds
    backoff_max_delay: float = 300.0  # max delay in seconds
    backoff_jitter_factor: float = 0.1  # ±10% jitter


@dataclass
class ReconcileResult:
    """Outcome of a reconcile that did not raise."""

    requeue: bool = False
    requeue_after: Optional[float] = None


class IngressReconciler:
    """
    Reconciles a single Ingress per call.

    Each call re-derives everything from the persisted object: fetch, work on
    a private copy, let the translator realize it, and write the status back
    only when it actually changed.
    """

    def __init__(self, store: DatabaseManager, translator: IngressTranslator):
        self.store = store
        self.translator = translator

    async def reconcile(self, key: NamespacedName) -> ReconcileResult:
        """
        Reconcile the Ingress identified by ``key``.

        Raises:
            Exception: Any read, status write or translator error. The caller
                retries the whole call.
        """
        try:
            original = await self.store.get_ingress(key.namespace, key.name)
        except NotFoundError:
            # Deleted since it was queued; owned Routes go with it
            logger.debug(f"Ingress {key} no longer exists")
            return ReconcileResult()

        ingress = original.deep_copy()

        translate_error: Optional[Exception] = None
        try:
            await self.translator.reconcile(ingress)
        except Exception as e:
            translate_error = e

        if not semantic_equal(original.status, ingress.status):
            try:
                await self.update_status(ingress)
            except NotFoundError:
                logger.debug(f"Ingress {key} deleted during reconcile")
                return ReconcileResult()
            except ConflictError as e:
                logger.info(f"Status of {key} changed underneath us, requeueing: {e}")
                raise
            except Exception as e:
                logger.warning(f"Failed to update ingress status for {key}: {e}")
                raise

        if translate_error is not None:
            raise translate_error

        return ReconcileResult()

    async def update_status(self, desired: Ingress) -> Ingress:
        """
        Persist the status of ``desired`` on top of the latest stored Ingress.

        Returns:
            The stored Ingress after the write, or the fresh one if it already
            carries the desired status.
        """
        namespace, name = desired.key
        fresh = await self.store.get_ingress(namespace, name)

        if semantic_equal(fresh.status, desired.status):
            return fresh

        existing = fresh.deep_copy()
        existing.status = desired.status
        return await self.store.update_ingress_status(existing)


class Controller:
    """
    Drives an IngressReconciler from store events.

    Events are mapped to reconcile keys by the registered watch handlers and
    fed into a work queue served by ``max_concurrent_reconciles`` workers. A
    periodic resync re-queues every Ingress.
    """

    def __init__(
        self,
        reconciler: IngressReconciler,
        store: DatabaseManager,
        event_bus: EventBus,
        queue: Optional[WorkQueue] = None,
        config: Optional[ControllerConfig] = None,
    ):
        self.reconciler = reconciler
        self.store = store
        self.event_bus = event_bus
        self.config = config or ControllerConfig()
        self.queue = queue or WorkQueue(
            backoff_base_delay=self.config.backoff_base_delay,
            backoff_max_delay=self.config.backoff_max_delay,
            backoff_jitter_factor=self.config.backoff_jitter_factor,
        )
        self.running = False

        self._handlers: Dict[str, List[EventHandler]] = {}
        self._subscriber_id: Optional[str] = None
        self._tasks: List[asyncio.Task] = []

        self.watch(Ingress.KIND, EnqueueRequestForObject())
        self.watch(Route.KIND, EnqueueRequestForOwner(Ingress.KIND, is_controller=True))

    def watch(self, kind: str, handler: EventHandler) -> None:
        """Route events of ``kind`` through ``handler``."""
        self._handlers.setdefault(kind, []).append(handler)

    def enqueue(self, key: NamespacedName) -> None:
        """Queue a reconcile for ``key``."""
        self.queue.add(key)

    def keys_for(self, event: ObjectEvent) -> List[NamespacedName]:
        keys: List[NamespacedName] = []
        for handler in self._handlers.get(event.kind, []):
            for key in handler.map(event):
                if key not in keys:
                    keys.append(key)
        return keys

    async def start(self):
        """Start the event dispatcher, the workers and the resync loop."""
        logger.info(
            f"Starting Ingress Controller with "
            f"{self.config.max_concurrent_reconciles} workers"
        )
        self.running = True

        watched = set(self._handlers)
        self._subscriber_id, subscription = await self.event_bus.subscribe(
            filter_fn=lambda event: event.kind in watched
        )

        # Objects that existed before the subscription never produce an event
        await self._enqueue_all("Initial sync")
        if not self.running:
            return

        self._tasks = [asyncio.create_task(self._dispatch_events(subscription))]
        for _ in range(self.config.max_concurrent_reconciles):
            self._tasks.append(asyncio.create_task(self._worker()))
        if self.config.resync_interval > 0:
            self._tasks.append(asyncio.create_task(self._resync_loop()))

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Controller error: {e}")
            raise

    async def stop(self):
        """Stop the controller gracefully."""
        logger.info("Stopping Ingress Controller")
        self.running = False
        self.queue.shut_down()

        if self._subscriber_id is not None:
            await self.event_bus.unsubscribe(self._subscriber_id)
            self._subscriber_id = None

        for task in self._tasks:
            if not task.done():
                task.cancel()
        self._tasks.clear()

    async def _dispatch_events(self, subscription) -> None:
        async for event in subscription:
            for key in self.keys_for(event):
                logger.debug(
                    f"{event.event_type.value} {event.kind} {event.key} -> {key}"
                )
                self.enqueue(key)

    async def _worker(self) -> None:
        while self.running:
            key = await self.queue.get()
            if key is None:
                return
            try:
                await self._process(key)
            finally:
                self.queue.done(key)

    async def _process(self, key: NamespacedName) -> None:
        """Run one reconcile for ``key`` and hand its outcome to the queue."""
        try:
            result = await self.reconciler.reconcile(key)
        except ConflictError:
            delay = self.queue.add_rate_limited(key)
            logger.info(f"Conflict reconciling {key}, retrying in {delay:.1f}s")
            return
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(
                f"Error reconciling {key}, retrying in {delay:.1f}s: {e}",
                exc_info=True,
            )
            return

        if result.requeue_after:
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
        elif result.requeue:
            self.queue.add_rate_limited(key)
        else:
            self.queue.forget(key)
            logger.debug(f"Reconciled {key}")

    async def _resync_loop(self) -> None:
        """Periodically queue every Ingress so dropped events still converge."""
        while self.running:
            await asyncio.sleep(self.config.resync_interval)
            await self._enqueue_all("Resync")

    async def _enqueue_all(self, reason: str) -> None:
        """Queue a reconcile for every stored Ingress."""
        try:
            ingresses = await self.store.list_ingresses()
        except Exception as e:
            logger.error(f"{reason}: error listing ingresses: {e}", exc_info=True)
            return

        logger.info(f"{reason}: queueing {len(ingresses)} ingresses")
        for ingress in ingresses:
            self.enqueue(ingress.key)
