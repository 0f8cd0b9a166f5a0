"""Progress percentage and ETA derived from per-item timings."""

from __future__ import annotations

import math
from collections.abc import Sequence

from bulkgen.jobs.models import JobProgress, TaskType

DEFAULT_ITEM_SECONDS: dict[TaskType, float] = {
    TaskType.ARTICLES: 15.0,
    TaskType.PRODUCTS: 10.0,
    TaskType.DESIGN_SECTIONS: 20.0,
}


def progress_percent(completed: int, total: int) -> int:
    """Completion percentage rounded half-up, clamped to 0..100."""

    if total <= 0:
        return 100
    ratio = max(0, min(completed, total)) / total
    return int(math.floor(ratio * 100 + 0.5))


def estimate_eta_seconds(
    *,
    remaining: int,
    item_durations: Sequence[float],
    default_item_seconds: float,
) -> int:
    """Remaining items times the mean observed item duration, or the flat default."""

    if remaining <= 0:
        return 0
    if not item_durations:
        return int(round(remaining * default_item_seconds))
    average = sum(item_durations) / len(item_durations)
    return int(round(remaining * average))


def build_progress(
    *,
    completed: int,
    total: int,
    label: str,
    item_durations: Sequence[float],
    default_item_seconds: float,
) -> JobProgress:
    return JobProgress(
        percent=progress_percent(completed, total),
        items_completed=completed,
        items_total=total,
        current_item_label=label,
        eta_seconds=estimate_eta_seconds(
            remaining=total - completed,
            item_durations=item_durations,
            default_item_seconds=default_item_seconds,
        ),
    )
