"""Task processors keyed by task type."""

from __future__ import annotations

import time
from collections.abc import Callable

from bulkgen.jobs.models import TaskType
from bulkgen.jobs.processors.articles import ArticleProcessor
from bulkgen.jobs.processors.base import (
    DEFAULT_JOB_TIMEOUT_SECONDS,
    BatchProcessor,
    JobTimeoutError,
    ProgressSink,
)
from bulkgen.jobs.processors.design import DesignProcessor
from bulkgen.jobs.processors.products import ProductProcessor
from bulkgen.providers.router import Router

_PROCESSOR_TYPES: tuple[type[BatchProcessor], ...] = (
    ArticleProcessor,
    ProductProcessor,
    DesignProcessor,
)


def build_processors(
    *,
    router: Router,
    timeout_seconds: float = DEFAULT_JOB_TIMEOUT_SECONDS,
    clock: Callable[[], float] = time.monotonic,
) -> dict[TaskType, BatchProcessor]:
    """One processor per task type, sharing the router."""

    return {
        processor_type.task_type: processor_type(
            router=router,
            timeout_seconds=timeout_seconds,
            clock=clock,
        )
        for processor_type in _PROCESSOR_TYPES
    }


__all__ = [
    "ArticleProcessor",
    "BatchProcessor",
    "DesignProcessor",
    "JobTimeoutError",
    "ProductProcessor",
    "ProgressSink",
    "build_processors",
]
