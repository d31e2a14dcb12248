"""
Async processor - bounded worker pool that runs handlers outside the request.

submit() never blocks: it enqueues onto a bounded asyncio.Queue and returns a
Future. A fixed number of worker tasks drain the queue, so a slow or stuck
handler can only ever tie up its own worker. Each invocation has a deadline;
on expiry the handler task is cancelled and the attempt counts as a
transient failure.

After the handler resolves, the worker records the outcome in its own session:
PROCESSED, a retry (RETRYING) or the dead letter store.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from hookgate.schemas.processing import ProcessingOutcome
from hookgate.schemas.statuses import AuditStatus
from hookgate.services.audit import log_fallback, record_transition
from hookgate.services.retry_scheduler import RetryPolicy, dead_letter, schedule_retry
from hookgate.utils.errors import (
    InvalidAuditTransition,
    PermanentProcessingError,
    ProcessorSaturated,
    TransientProcessingError,
)
from hookgate.utils.logging import set_correlation_id
from hookgate.utils.metrics import MetricName, Timer, increment_counter

logger = logging.getLogger(__name__)


def _is_async_handler(handler: Callable) -> bool:
    """Coroutine functions, and callable objects with an async __call__."""
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


@dataclass
class _Job:
    event: Any
    handler: Callable
    attempt_number: int
    future: asyncio.Future = field(repr=False)


class AsyncProcessor:
    def __init__(
        self,
        session_factory: Callable,
        retry_policy: RetryPolicy,
        workers: int = 8,
        queue_size: int = 1000,
        handler_timeout: float = 30.0,
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self._session_factory = session_factory
        self._retry_policy = retry_policy
        self._worker_count = workers
        self._queue_size = queue_size
        self._handler_timeout = handler_timeout
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def worker_count(self) -> int:
        return self._worker_count

    async def start(self) -> None:
        if self._running:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"hookgate-processor-{i}")
            for i in range(self._worker_count)
        ]
        self._running = True
        logger.info(
            "Async processor started (%d workers, queue=%d, timeout=%.1fs)",
            self._worker_count, self._queue_size, self._handler_timeout,
        )

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop accepting work, let queued jobs drain for up to `timeout`, then cancel."""
        if not self._running:
            return
        self._running = False
        try:
            await asyncio.wait_for(self.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Processor shutdown timed out with %d queued jobs - they will be "
                "recovered by the stalled-event sweep",
                self._queue.qsize(),
            )
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Async processor stopped")

    async def join(self) -> None:
        """Wait until every queued job has been executed and recorded."""
        if self._queue is not None:
            await self._queue.join()

    def submit(self, event, handler: Callable, attempt_number: int = 1) -> asyncio.Future:
        """
        Enqueue a handler invocation. Returns a Future resolving to ProcessingOutcome.
        Raises ProcessorSaturated when the queue is full or the pool is not running.
        """
        if not self._running:
            raise ProcessorSaturated("Processor is not running")
        future = asyncio.get_running_loop().create_future()
        try:
            self._queue.put_nowait(_Job(event, handler, attempt_number, future))
        except asyncio.QueueFull:
            raise ProcessorSaturated(f"Processor queue full ({self._queue_size} jobs)")
        return future

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                outcome = await self.execute(job.event, job.handler, job.attempt_number)
                if not job.future.done():
                    job.future.set_result(outcome)
            except asyncio.CancelledError:
                if not job.future.done():
                    job.future.cancel()
                raise
            except Exception as e:
                logger.error("Processor worker %d job error: %s", index, str(e), exc_info=True)
                if not job.future.done():
                    job.future.set_exception(e)
            finally:
                self._queue.task_done()

    async def execute(self, event, handler: Callable, attempt_number: int = 1) -> ProcessingOutcome:
        """Run one attempt and record its outcome."""
        set_correlation_id(getattr(event, "correlation_id", None))
        timer = Timer().start()
        outcome = await self._invoke(event, handler)
        elapsed = timer.stop()

        logger.info(
            "Handler for %s/%s attempt %d finished in %dms: %s",
            event.provider, event.topic, attempt_number, elapsed, outcome.kind,
            extra={
                "webhook_id": str(event.id), "provider": event.provider,
                "topic": event.topic, "attempt": attempt_number,
            },
        )
        await self._record_outcome(event, attempt_number, outcome)
        return outcome

    async def _invoke(self, event, handler: Callable) -> ProcessingOutcome:
        try:
            if _is_async_handler(handler):
                result = await asyncio.wait_for(handler(event), timeout=self._handler_timeout)
            else:
                # Threads cannot be cancelled; the deadline still frees this worker
                loop = asyncio.get_running_loop()
                deadline = loop.time() + self._handler_timeout
                result = await asyncio.wait_for(
                    asyncio.to_thread(handler, event), timeout=self._handler_timeout
                )
                # A plain callable may still hand back an awaitable (partials, wrappers)
                if inspect.isawaitable(result):
                    result = await asyncio.wait_for(
                        result, timeout=max(deadline - loop.time(), 0.001)
                    )
        except asyncio.TimeoutError:
            return ProcessingOutcome.transient(f"timeout after {self._handler_timeout:g}s")
        except TransientProcessingError as e:
            return ProcessingOutcome.transient(str(e) or type(e).__name__)
        except PermanentProcessingError as e:
            return ProcessingOutcome.permanent(str(e) or type(e).__name__)
        except Exception as e:
            logger.warning(
                "Handler raised %s - treating as transient: %s", type(e).__name__, str(e),
                exc_info=True,
            )
            return ProcessingOutcome.transient(f"{type(e).__name__}: {e}")

        if isinstance(result, ProcessingOutcome):
            return result
        if result is None or result is True:
            return ProcessingOutcome.success()
        if result is False:
            return ProcessingOutcome.transient("handler returned False")
        return ProcessingOutcome.success()

    async def _record_outcome(self, event, attempt_number: int, outcome: ProcessingOutcome) -> None:
        try:
            async with self._session_factory() as db:
                if outcome.is_success:
                    await record_transition(db, event.id, AuditStatus.PROCESSED)
                elif outcome.is_transient:
                    await schedule_retry(
                        db, event.id, attempt_number, outcome.reason or "transient failure",
                        self._retry_policy,
                    )
                else:
                    await dead_letter(
                        db, event.id, attempts=attempt_number,
                        error=outcome.reason or "permanent failure", failure_kind="permanent",
                    )
                await db.commit()
        except InvalidAuditTransition as e:
            # Another attempt already closed this webhook's lifecycle (e.g. a stall recovery raced it)
            logger.warning("Stale outcome discarded: %s", str(e), extra={"webhook_id": str(event.id)})
            return
        except Exception as e:
            log_fallback(event.id, outcome.kind, outcome.reason, f"outcome write failed: {e}")
            logger.error(
                "Failed to record outcome for webhook %s: %s", str(event.id)[:8], str(e),
                exc_info=True,
            )
            return

        if outcome.is_success:
            await increment_counter(MetricName.PROCESSED)
