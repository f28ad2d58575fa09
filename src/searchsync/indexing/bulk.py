"""Bulk buffer batching index/delete operations into bulk requests."""

import asyncio
import itertools
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from searchsync.errors import BufferOverflowError, IndexOperationError
from searchsync.utils.metrics import (
    clear_bulk_queue_size,
    record_bulk_flush,
    set_bulk_queue_size,
)

logger = logging.getLogger(__name__)

_buffer_ids = itertools.count(1)


class BulkConfig(BaseModel):
    """Configuration for bulk indexing."""

    model_config = ConfigDict(strict=True, extra="forbid")

    bulk_size: int = Field(default=100, gt=0, description="Max operations per bulk request")
    bulk_timeout_ms: int = Field(default=1000, gt=0, description="Max ms before a flush")
    bulk_buffer_size: int | None = Field(
        default=None, gt=0, description="Max pending operations (unbounded when None)"
    )


class BulkAction(BaseModel):
    """Action descriptor of a single bulk operation."""

    op: Literal["index", "delete"]
    index: str
    type: str
    id: str

    def header(self) -> dict[str, Any]:
        """Render the bulk action line."""
        return {self.op: {"_index": self.index, "_type": self.type, "_id": self.id}}


@dataclass
class BulkOperation:
    """A queued action and its document body (None for deletes)."""

    action: BulkAction
    doc: dict[str, Any] | None = None


SubmitCallback = Callable[[list[dict[str, Any]]], Awaitable[Any]]
ErrorListener = Callable[[Exception, list[BulkOperation]], Any]


def build_bulk_body(operations: list[BulkOperation]) -> list[dict[str, Any]]:
    """Build the alternating action/document body of a bulk request."""
    body: list[dict[str, Any]] = []
    for operation in operations:
        body.append(operation.action.header())
        if operation.doc is not None:
            body.append(operation.doc)
    return body


class BulkBuffer:
    """FIFO buffer that submits queued operations as bulk requests.

    A flush is triggered when either:
    - The queue reaches ``bulk_size`` operations
    - ``bulk_timeout_ms`` elapsed since the timer was armed

    Only one flush runs at a time. Each flush submits at most ``bulk_size``
    operations; operations enqueued while a request is in flight wait for
    the next flush, which is triggered again when the current one ends.

    Submission failures never reach the callers that enqueued the failed
    operations. They are logged and passed to the registered error
    listeners, and the operations are discarded.
    """

    def __init__(
        self, config: BulkConfig, submit: SubmitCallback, name: str | None = None
    ) -> None:
        """Initialize the bulk buffer.

        Args:
            config: Bulk configuration.
            submit: Async callback sending one bulk request body.
            name: Label of the buffer's queue size metric. Generated when omitted.
        """
        self.config = config
        self.name = name or f"buffer-{next(_buffer_ids)}"
        self._submit = submit
        self._queue: deque[BulkOperation] = deque()
        self._is_flushing = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._timer: asyncio.TimerHandle | None = None
        self._scheduled: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._error_listeners: list[ErrorListener] = []

    @property
    def queue_size(self) -> int:
        """Number of operations waiting to be flushed."""
        return len(self._queue)

    @property
    def is_flushing(self) -> bool:
        return self._is_flushing

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Register a callback receiving ``(error, operations)`` for failed flushes."""
        self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        if listener in self._error_listeners:
            self._error_listeners.remove(listener)

    def enqueue(self, action: BulkAction, doc: dict[str, Any] | None = None) -> BulkOperation:
        """Append an operation to the queue and evaluate the flush trigger.

        Args:
            action: Bulk action descriptor.
            doc: Document body, None for deletes.

        Returns:
            The queued operation.

        Raises:
            BufferOverflowError: If the queue is at ``bulk_buffer_size``.
        """
        limit = self.config.bulk_buffer_size
        if limit is not None and len(self._queue) >= limit:
            logger.error(f"Bulk buffer at max capacity ({limit}), rejecting operation")
            raise BufferOverflowError(f"Bulk buffer is full ({limit} pending operations)")

        operation = BulkOperation(action=action, doc=doc)
        self._queue.append(operation)
        set_bulk_queue_size(self.name, len(self._queue))

        self._evaluate_trigger()
        return operation

    async def flush(self) -> None:
        """Submit up to ``bulk_size`` queued operations as one bulk request.

        Does nothing while another flush is in flight.
        """
        if self._is_flushing:
            return

        self._cancel_timer()
        if not self._queue:
            return

        self._is_flushing = True
        self._idle.clear()
        batch = [self._queue.popleft() for _ in range(min(self.config.bulk_size, len(self._queue)))]
        set_bulk_queue_size(self.name, len(self._queue))

        logger.debug(f"Flushing bulk request of {len(batch)} operations")
        start_time = time.perf_counter()

        try:
            response = await self._submit(build_bulk_body(batch))
            _raise_for_item_errors(response)

            record_bulk_flush(True, len(batch), time.perf_counter() - start_time)
            logger.info(f"Flushed {len(batch)} bulk operations")
        except Exception as e:
            record_bulk_flush(False, len(batch), time.perf_counter() - start_time)
            logger.error(f"Bulk flush of {len(batch)} operations failed: {e}", exc_info=True)
            await self._emit_error(e, batch)
        finally:
            self._is_flushing = False
            self._idle.set()
            self._evaluate_trigger()

    async def drain(self) -> None:
        """Flush until the queue is empty and no flush is in flight."""
        while self._queue or self._tasks or self._is_flushing:
            if self._is_flushing:
                await self._idle.wait()
                continue
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
                continue
            await self.flush()

    async def close(self) -> None:
        """Flush everything still queued and stop the timer."""
        self._cancel_timer()
        await self.drain()
        self._cancel_timer()
        clear_bulk_queue_size(self.name)

    def _evaluate_trigger(self) -> None:
        if not self._queue:
            return

        if len(self._queue) >= self.config.bulk_size:
            self._schedule_flush()
        elif self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.config.bulk_timeout_ms / 1000.0, self._on_timeout)

    def _on_timeout(self) -> None:
        self._timer = None
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._is_flushing or self._scheduled is not None:
            return

        task = asyncio.ensure_future(self._run_scheduled_flush())
        self._scheduled = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_scheduled_flush(self) -> None:
        self._scheduled = None
        await self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _emit_error(self, error: Exception, operations: list[BulkOperation]) -> None:
        for listener in list(self._error_listeners):
            try:
                result = listener(error, operations)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Bulk error listener failed")


def _raise_for_item_errors(response: Any) -> None:
    if not isinstance(response, Mapping) or not response.get("errors"):
        return

    failed = [
        item
        for item in response.get("items", [])
        if any(isinstance(result, Mapping) and "error" in result for result in item.values())
    ]
    raise IndexOperationError(f"Bulk request reported {len(failed)} failed items", items=failed)

