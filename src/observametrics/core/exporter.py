"""Buffered, time- and size-triggered metrics exporter.

BufferedExporter decouples the request path from a slower, failure-prone
remote send. Observations are appended to an in-memory batch; a flush hands
the whole batch to a MetricSenderPort when the batch reaches ``batch_size``,
when the repeating timer fires, or when ``flush()`` is awaited explicitly.

A failed send prepends the batch back onto the buffer, ahead of anything
that arrived meanwhile, so it is retried by the next trigger. There is no
retry limit and no dead-lettering: under sustained failure the buffer grows
without bound. Watch ``buffer_size`` to detect that.

Hosts without an event loop (Django, WSGI) get one on a daemon thread owned
by the exporter. It is started by the first export made outside a loop and
released by ``close()``.
"""

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Coroutine, Iterable, Mapping
from typing import Any

from observametrics.core.config import ExporterConfig
from observametrics.core.models import MetricObservation
from observametrics.core.ports import FlushErrorHook, MetricSenderPort

logger = logging.getLogger(__name__)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class _LoopThread:
    """Event loop running forever on a daemon thread."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run, name="observametrics-exporter", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def submit(
        self, coro: Coroutine[Any, Any, None]
    ) -> "concurrent.futures.Future[None]":
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def close(self, timeout: float | None = None) -> None:
        """Cancel leftover tasks, stop the loop and join the thread."""
        try:
            self.submit(_cancel_other_tasks()).result(timeout)
        finally:
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join(timeout)
            if not self._thread.is_alive():
                self.loop.close()


async def _cancel_other_tasks() -> None:
    current = asyncio.current_task()
    tasks = [task for task in asyncio.all_tasks() if task is not current]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


class BufferedExporter:
    """Batches metric observations and flushes them to a sender.

    The buffer swap in ``flush()`` happens before the first ``await`` and
    under a lock, so overlapping flushes (timer, size threshold, explicit
    call) each take a disjoint batch and never lose or duplicate
    observations, whichever thread exports. Sends are not serialized: two
    back-to-back flushes may reach the backend out of order.
    """

    def __init__(
        self,
        config: ExporterConfig,
        sender: MetricSenderPort | None = None,
        *,
        on_flush_error: FlushErrorHook | None = None,
    ) -> None:
        """Initialize the exporter.

        The flush timer is armed right away when an event loop is running.
        Otherwise it is armed by ``start()`` or by the first export.

        Args:
            config: Exporter settings (batch size, flush interval, target).
            sender: Remote-send boundary. Defaults to a CloudWatchSender that
                only logs payloads.
            on_flush_error: Called with the exception when an automatic
                flush fails. Explicit ``flush()`` calls raise instead. It runs
                on the worker thread when flushes are scheduled there.
        """
        if sender is None:
            from observametrics.adapters.exporters.cloudwatch import CloudWatchSender

            sender = CloudWatchSender(config)
        self.config = config
        self.sender = sender
        self.on_flush_error = on_flush_error
        self._buffer: list[MetricObservation] = []
        self._lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._timer: Any = None
        self._size_flush: Any = None
        self._background: set[asyncio.Task[None]] = set()
        self._worker: _LoopThread | None = None
        self._stopped = False
        if _running_loop() is not None:
            self.start()

    @property
    def buffer_size(self) -> int:
        """Number of observations waiting to be sent."""
        return len(self._buffer)

    def get_buffer_size(self) -> int:
        """Return the number of observations waiting to be sent."""
        return len(self._buffer)

    @property
    def running(self) -> bool:
        """True while the repeating flush timer is armed."""
        return self._timer is not None and not self._timer.done()

    @property
    def uses_worker_thread(self) -> bool:
        """True when flushes run on the exporter's own thread."""
        return self._worker is not None

    def export_metric(
        self,
        name: str,
        value: float,
        labels: Mapping[str, str] | None = None,
        timestamp: float | None = None,
    ) -> None:
        """Queue one observation for export.

        Never raises. When the buffer reaches ``batch_size`` an asynchronous
        flush is scheduled; the caller is not blocked. Called outside an
        event loop, this arms the timer on the worker thread first.

        Args:
            name: Metric name.
            value: Measured value.
            labels: Dimension labels.
            timestamp: Unix timestamp in seconds, defaults to now.
        """
        # @tra: Exporter.Buffer.Append
        if timestamp is None:
            observation = MetricObservation(name, value, dict(labels or {}))
        else:
            observation = MetricObservation(name, value, dict(labels or {}), timestamp)
        with self._lock:
            self._buffer.append(observation)
            full = len(self._buffer) >= self.config.batch_size

        if not self._stopped and not self.running and _running_loop() is None:
            self.start()

        # @tra: Exporter.Trigger.Size
        if full:
            self._schedule_size_flush()

    def export_metrics(
        self, observations: Iterable[MetricObservation | Mapping[str, Any]]
    ) -> None:
        """Queue several observations, preserving their order."""
        for item in observations:
            if isinstance(item, MetricObservation):
                self.export_metric(item.name, item.value, item.labels, item.timestamp)
            else:
                self.export_metric(
                    item["name"],
                    item["value"],
                    item.get("labels"),
                    item.get("timestamp"),
                )

    async def flush(self) -> None:
        """Send every buffered observation as one batch.

        No-op when the buffer is empty.

        Raises:
            Exception: Whatever the sender raised. The batch is back at the
                front of the buffer when this propagates.
        """
        # @tra: Exporter.Flush.Swap
        with self._lock:
            if not self._buffer:
                return
            batch, self._buffer = self._buffer, []
        try:
            await self.sender.send(batch)
        except BaseException:
            # @tra: Exporter.Flush.Requeue
            with self._lock:
                self._buffer = batch + self._buffer
            raise

    async def wait_pending(self) -> None:
        """Wait for automatic flushes already in flight.

        Their failures are reported through the usual log line and hook, so
        this never raises on their account. A failed flush has requeued its
        batch by the time this returns.
        """
        loop = asyncio.get_running_loop()
        pending: list[Any] = [
            task for task in list(self._background) if task.get_loop() is loop
        ]
        size_flush = self._size_flush
        if isinstance(size_flush, concurrent.futures.Future) and not size_flush.done():
            pending.append(asyncio.wrap_future(size_flush))
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def clear_buffer(self) -> None:
        """Drop every pending observation."""
        with self._lock:
            self._buffer = []

    def start(self) -> None:
        """Arm the repeating flush timer.

        Idempotent. Inside a running event loop the timer is a task on that
        loop; outside one it runs on the exporter's worker thread.
        """
        with self._state_lock:
            self._stopped = False
            if self.running:
                return
            loop = _running_loop()
            if loop is not None:
                self._timer = loop.create_task(self._flush_periodically())
            else:
                logger.debug("No running event loop, flushing from a worker thread")
                self._timer = self._ensure_worker().submit(self._flush_periodically())

    def stop(self) -> None:
        """Cancel the repeating flush timer.

        Idempotent. An in-flight send is not cancelled.
        """
        with self._state_lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def close(self, timeout: float | None = 10.0) -> None:
        """Stop the timer, send what is left and release the worker thread.

        The counterpart of ``stop()`` plus ``await flush()`` for synchronous
        hosts. Must not be called from inside a running event loop.

        Raises:
            Exception: Whatever the final send raised. The batch is back at
                the front of the buffer when this propagates.
        """
        self.stop()
        with self._state_lock:
            worker, self._worker = self._worker, None
        if worker is None:
            if self._buffer:
                asyncio.run(self.flush())
            return
        try:
            worker.submit(self._finish()).result(timeout)
        finally:
            worker.close(timeout)

    async def _finish(self) -> None:
        await self.wait_pending()
        await self.flush()

    def _ensure_worker(self) -> _LoopThread:
        with self._state_lock:
            if self._worker is None:
                self._worker = _LoopThread()
            return self._worker

    async def _flush_periodically(self) -> None:
        # @tra: Exporter.Trigger.Timer
        while True:
            await asyncio.sleep(self.config.flush_interval)
            # Shielded so stop() never cancels a send halfway through.
            task = asyncio.ensure_future(self._flush_quietly())
            self._track(task)
            await asyncio.shield(task)

    def _schedule_size_flush(self) -> None:
        with self._state_lock:
            if self._size_flush is not None and not self._size_flush.done():
                return
            loop = _running_loop()
            if loop is not None:
                self._size_flush = loop.create_task(self._flush_quietly())
                self._track(self._size_flush)
            else:
                self._size_flush = self._ensure_worker().submit(self._flush_quietly())

    def _track(self, task: "asyncio.Task[None]") -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _flush_quietly(self) -> None:
        """Flush, reporting failures instead of raising them."""
        try:
            await self.flush()
        except Exception as e:
            logger.exception(
                "Metrics flush failed, %d observations requeued", len(self._buffer)
            )
            if self.on_flush_error is not None:
                self.on_flush_error(e)
