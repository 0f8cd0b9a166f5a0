"""Shared per-item loop for bulk task processors."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from bulkgen.jobs.models import BatchResult, ItemStatus, JobProgress, TaskData, TaskType
from bulkgen.jobs.progress import DEFAULT_ITEM_SECONDS, build_progress
from bulkgen.providers.models import GenerateOptions
from bulkgen.providers.router import Router, RouterResult
from bulkgen.providers.routes import RouteCategory

logger = logging.getLogger(__name__)

DEFAULT_JOB_TIMEOUT_SECONDS = 540.0
COMPLETED_LABEL = "Completed"

ProgressSink = Callable[[JobProgress], None]
DataT = TypeVar("DataT", bound=TaskData)
ItemT = TypeVar("ItemT")


class JobTimeoutError(RuntimeError):
    """Attempt exceeded the job timeout between two items."""


@dataclass(slots=True)
class ProcessingContext:
    """Mutable state for one processing attempt."""

    job_id: str
    started_at: float
    progress_sink: ProgressSink
    item_durations: list[float] = field(default_factory=list)


class BatchProcessor(ABC, Generic[DataT, ItemT]):
    """Iterates work items, drives the router per item and collects outcomes."""

    task_type: ClassVar[TaskType]
    category: ClassVar[RouteCategory]
    item_noun: ClassVar[str]
    temperature: ClassVar[float] = 0.7
    max_tokens: ClassVar[int] = 4_000

    def __init__(
        self,
        *,
        router: Router,
        timeout_seconds: float = DEFAULT_JOB_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.router = router
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    def process(self, *, job_id: str, task_data: DataT, progress_sink: ProgressSink) -> BatchResult:
        """Run one attempt over all items; raise `JobTimeoutError` when out of time."""

        ctx = ProcessingContext(
            job_id=job_id,
            started_at=self._clock(),
            progress_sink=progress_sink,
        )
        items = self._items(task_data)
        total = len(items)
        outcomes: list[Any] = []
        total_tokens = 0
        total_cost = 0.0
        logger.info(
            "Job %s: starting %s batch with %d item(s)",
            job_id,
            self.task_type.value,
            total,
        )

        for index, item in enumerate(items):
            elapsed = self._clock() - ctx.started_at
            if elapsed > self.timeout_seconds:
                logger.error(
                    "Job %s: timeout after %.1fs, processed %d of %d %s",
                    job_id,
                    elapsed,
                    index,
                    total,
                    self.item_noun,
                )
                raise JobTimeoutError(
                    f"Job timeout: processed {index} of {total} {self.item_noun} before timeout",
                )

            label = self._item_label(item)
            self._emit_progress(ctx, completed=index, total=total, label=label)

            item_started = self._clock()
            outcome = self._process_item(ctx, item=item, task_data=task_data)
            ctx.item_durations.append(self._clock() - item_started)

            outcomes.append(outcome)
            if outcome.status == ItemStatus.SUCCESS:
                total_tokens += outcome.tokens_used
                total_cost += outcome.cost_usd

        self._emit_progress(ctx, completed=total, total=total, label=COMPLETED_LABEL)
        result = BatchResult(
            kind=self.task_type,
            items=outcomes,
            total_tokens=total_tokens,
            total_cost=round(total_cost, 6),
            processing_time_seconds=int(round(self._clock() - ctx.started_at)),
        )
        logger.info(
            "Job %s: %s batch finished succeeded=%d failed=%d tokens=%d cost=%.6f",
            job_id,
            self.task_type.value,
            result.succeeded,
            result.failed,
            result.total_tokens,
            result.total_cost,
        )
        return result

    def _process_item(self, ctx: ProcessingContext, *, item: ItemT, task_data: DataT) -> Any:
        try:
            prompt = self._build_prompt(item, task_data)
            routed = self.router.route(
                self.category,
                prompt,
                GenerateOptions(temperature=self.temperature, max_tokens=self.max_tokens),
            )
            if not routed.success:
                logger.warning(
                    "Job %s: item %r failed on all providers: %s",
                    ctx.job_id,
                    self._item_label(item),
                    routed.error,
                )
                return self._failure(
                    item,
                    provider=routed.provider,
                    error=routed.error or "Generation failed",
                )
            return self._success(item, task_data=task_data, routed=routed)
        except Exception as error:  # noqa: BLE001
            logger.exception("Job %s: item %r raised", ctx.job_id, self._item_label(item))
            return self._failure(
                item,
                provider="unknown",
                error=str(error) or error.__class__.__name__,
            )

    def _emit_progress(
        self,
        ctx: ProcessingContext,
        *,
        completed: int,
        total: int,
        label: str,
    ) -> None:
        progress = build_progress(
            completed=completed,
            total=total,
            label=label,
            item_durations=ctx.item_durations,
            default_item_seconds=DEFAULT_ITEM_SECONDS[self.task_type],
        )
        try:
            ctx.progress_sink(progress)
        except Exception as error:  # noqa: BLE001
            logger.warning("Job %s: failed to update progress: %s", ctx.job_id, error)

    @abstractmethod
    def _items(self, task_data: DataT) -> list[ItemT]:
        """Work items of the batch, in processing order."""

    @abstractmethod
    def _item_label(self, item: ItemT) -> str: ...

    @abstractmethod
    def _build_prompt(self, item: ItemT, task_data: DataT) -> str: ...

    @abstractmethod
    def _success(self, item: ItemT, *, task_data: DataT, routed: RouterResult) -> Any:
        """Parse a successful reply into the item outcome."""

    @abstractmethod
    def _failure(self, item: ItemT, *, provider: str, error: str) -> Any: ...
