"""Progressive batch loader with partial-failure tolerance.

The loader fans a list of items out through a RetryManager (and so through
its RequestQueue), one operation per item. Unlike asyncio.gather, a failed
item never aborts the batch: once its retries are exhausted, or its error
is permanent, it is replaced by a fallback value and recorded as a failure.
The result list always has exactly one entry per input item, in input
order.

A progress callback fires once per finished item, never on intermediate
retries, with a completed count that rises strictly from 1 to total.

Example usage:
    loader = BatchLoader.create(settings)

    def show(progress: BatchProgress) -> None:
        print(f"{progress.percentage:.0f}% {progress.current_label}")

    employees = await loader.load_all(
        employee_ids,
        fetch_employee,
        show,
        fallback=lambda employee_id, error: None,
        label=lambda employee_id: f"employee {employee_id}",
    )
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from planday_api.scheduler.errors import QueueClearedError
from planday_api.scheduler.request_queue import RequestQueue
from planday_api.scheduler.retry_manager import RetryManager, RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from planday_api.config.settings import SchedulerSettings
    from planday_api.scheduler.request_queue import QueueStatistics

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass(frozen=True, slots=True)
class BatchProgress:
    """Progress event emitted after each finished item.

    Attributes:
        completed_count: Items finished so far (success or fallback)
        total: Total items in the batch
        percentage: completed_count / total as a percentage (0-100)
        current_label: Label of the item that just finished
        last_item: Result (or fallback value) of that item
    """

    completed_count: int
    total: int
    percentage: float
    current_label: str
    last_item: Any = None


@dataclass(frozen=True, slots=True)
class ItemFailure:
    """A batch item that ended in a terminal failure.

    Attributes:
        index: Position of the item in the input
        item: The input item
        entity_id: Entity identifier used for diagnostics
        error: The terminal error
    """

    index: int
    item: Any
    entity_id: int | str | None
    error: BaseException


@dataclass
class BatchOutcome(Generic[ResultT]):
    """Results of a batch together with its failures.

    Attributes:
        results: One entry per input item, in input order
        failures: Items replaced by their fallback value
    """

    results: list[ResultT]
    failures: list[ItemFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        """Number of items that fell back."""
        return len(self.failures)

    @property
    def succeeded(self) -> int:
        """Number of items loaded successfully."""
        return len(self.results) - len(self.failures)


class BatchLoader:
    """Loads many independent items through the retry/queue stack.

    Attributes:
        base_priority: Priority of the first item
        shared_priority: If True every item uses base_priority; otherwise
                         item i uses base_priority + i, so earlier items are
                         serviced first
    """

    def __init__(
        self,
        retry_manager: RetryManager,
        *,
        base_priority: int = 0,
        shared_priority: bool = False,
    ) -> None:
        """Initialize the batch loader.

        Args:
            retry_manager: Retry manager wrapping the request queue
            base_priority: Priority of the first item
            shared_priority: Use one priority for every item
        """
        self._retry_manager = retry_manager
        self.base_priority = base_priority
        self.shared_priority = shared_priority

    @classmethod
    def create(
        cls,
        settings: SchedulerSettings,
        *,
        base_priority: int = 0,
        name: str = "batch",
    ) -> BatchLoader:
        """Build a loader with its own queue and retry manager."""
        queue = RequestQueue.from_settings(settings, name=name)
        retries = RetryManager(queue, RetryPolicy.from_settings(settings))
        return cls(retries, base_priority=base_priority)

    @property
    def retry_manager(self) -> RetryManager:
        """The retry manager items are executed through."""
        return self._retry_manager

    async def load_all(
        self,
        items: Sequence[ItemT],
        fetch_one: Callable[[ItemT], Awaitable[ResultT]],
        on_progress: Callable[[BatchProgress], None] | None = None,
        *,
        fallback: Callable[[ItemT, BaseException], ResultT] | None = None,
        label: Callable[[ItemT], str] = str,
        entity_id: Callable[[ItemT], int | str | None] | None = None,
        max_retries: int | None = None,
    ) -> list[ResultT | None]:
        """Load every item, substituting fallbacks for failed ones.

        Args:
            items: Items to load
            fetch_one: Async function loading a single item
            on_progress: Called once per finished item
            fallback: Builds the substitute for a failed item from the item
                      and its error. Failed items become None if omitted.
            label: Human-readable label for progress events
            entity_id: Entity identifier for diagnostics. Defaults to the
                       item itself when it is an int or str.
            max_retries: Override of the retry policy's retry count

        Returns:
            One result per input item, in input order

        Raises:
            QueueClearedError: If the queue was cleared mid-batch
        """
        outcome = await self.load_all_detailed(
            items,
            fetch_one,
            on_progress,
            fallback=fallback,
            label=label,
            entity_id=entity_id,
            max_retries=max_retries,
        )
        return outcome.results

    async def load_all_detailed(
        self,
        items: Sequence[ItemT],
        fetch_one: Callable[[ItemT], Awaitable[ResultT]],
        on_progress: Callable[[BatchProgress], None] | None = None,
        *,
        fallback: Callable[[ItemT, BaseException], ResultT] | None = None,
        label: Callable[[ItemT], str] = str,
        entity_id: Callable[[ItemT], int | str | None] | None = None,
        max_retries: int | None = None,
    ) -> BatchOutcome[ResultT | None]:
        """Load every item and report which ones fell back.

        Same arguments as load_all().

        Returns:
            BatchOutcome with ordered results and the list of failures
        """
        total = len(items)
        results: list[ResultT | None] = [None] * total
        failures: list[ItemFailure] = []
        completed = 0

        logger.info("Loading %d items", total)

        def finish(index: int, value: ResultT | None) -> None:
            nonlocal completed
            results[index] = value
            completed += 1
            if on_progress is None:
                return
            progress = BatchProgress(
                completed_count=completed,
                total=total,
                percentage=completed / total * 100,
                current_label=label(items[index]),
                last_item=value,
            )
            try:
                on_progress(progress)
            except Exception:
                logger.exception("Progress callback failed for item %d", index)

        async def load_one(index: int, item: ItemT) -> None:
            item_id = _entity_id_for(item, entity_id)
            priority = (
                self.base_priority
                if self.shared_priority
                else self.base_priority + index
            )
            try:
                value = await self._retry_manager.execute(
                    lambda: fetch_one(item),
                    max_retries,
                    priority=priority,
                    entity_id=item_id,
                    operation_name=f"load:{label(item)}",
                )
            except QueueClearedError:
                raise
            except Exception as e:
                logger.warning(
                    "Item %d (%s, entity=%s) failed, using fallback: %s",
                    index,
                    label(item),
                    item_id,
                    e,
                )
                failures.append(
                    ItemFailure(index=index, item=item, entity_id=item_id, error=e)
                )
                finish(index, fallback(item, e) if fallback is not None else None)
            else:
                finish(index, value)

        tasks = [
            asyncio.ensure_future(load_one(index, item))
            for index, item in enumerate(items)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        failures.sort(key=lambda failure: failure.index)
        logger.info(
            "Loaded %d items (%d succeeded, %d fell back)",
            total,
            total - len(failures),
            len(failures),
        )
        return BatchOutcome(results=results, failures=failures)

    def get_statistics(self) -> QueueStatistics:
        """Get statistics of the underlying queue."""
        return self._retry_manager.queue.get_statistics()

    def clear_queue(self) -> int:
        """Reject all pending items of the underlying queue."""
        return self._retry_manager.queue.clear_queue()


def _entity_id_for(
    item: Any, entity_id: Callable[[Any], int | str | None] | None
) -> int | str | None:
    """Resolve the diagnostic entity id of an item."""
    if entity_id is not None:
        return entity_id(item)
    if isinstance(item, int | str):
        return item
    return None
