"""Domain models for bulk generation jobs, task payloads and batch results."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
ACTIVE_JOB_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})


class TaskType(str, Enum):
    """Supported bulk generation task types."""

    ARTICLES = "articles"
    PRODUCTS = "products"
    DESIGN_SECTIONS = "design_sections"


class ItemStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(slots=True)
class ArticlesTaskData:
    """Topics to turn into articles."""

    topics: list[str]
    tone: str = "professional"
    language: str = "en"
    word_count: int = 800
    include_seo: bool = True

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ProductInput:
    name: str
    category: str | None = None
    specs: str | None = None
    price: str | None = None
    context: str | None = None


@dataclass(slots=True)
class ProductsTaskData:
    """Products to describe."""

    products: list[ProductInput]
    tone: str = "professional"
    language: str = "en"
    include_seo: bool = True

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class DesignSectionInput:
    name: str
    description: str
    style: str | None = None
    colors: list[str] = field(default_factory=list)
    section_type: str | None = None


@dataclass(slots=True)
class DesignTheme:
    primary_color: str | None = None
    secondary_color: str | None = None
    font_family: str = "Poppins"


@dataclass(slots=True)
class DesignSectionsTaskData:
    """Page sections to render as Elementor JSON."""

    sections: list[DesignSectionInput]
    theme: DesignTheme | None = None

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


TaskData = ArticlesTaskData | ProductsTaskData | DesignSectionsTaskData


@dataclass(slots=True)
class ArticleSeo:
    meta_title: str | None = None
    meta_description: str | None = None
    keywords: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ProductSeo:
    seo_title: str | None = None
    seo_description: str | None = None


@dataclass(slots=True)
class ArticleOutcome:
    """Per-topic article result."""

    topic: str
    title: str
    content: str
    status: ItemStatus
    provider: str
    model: str | None = None
    tokens_input: int = 0
    tokens_output: int = 0
    tokens_used: int = 0
    cost_usd: float = 0.0
    error: str | None = None
    seo: ArticleSeo | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ArticleOutcome:
        seo = payload.get("seo")
        return cls(
            topic=str(payload["topic"]),
            title=str(payload.get("title", "")),
            content=str(payload.get("content", "")),
            seo=ArticleSeo(**seo) if isinstance(seo, dict) else None,
            **_usage_fields(payload),
        )


@dataclass(slots=True)
class ProductOutcome:
    """Per-product description result."""

    product_name: str
    short_desc: str
    long_desc: str
    status: ItemStatus
    provider: str
    model: str | None = None
    tokens_input: int = 0
    tokens_output: int = 0
    tokens_used: int = 0
    cost_usd: float = 0.0
    error: str | None = None
    seo: ProductSeo | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ProductOutcome:
        seo = payload.get("seo")
        return cls(
            product_name=str(payload["product_name"]),
            short_desc=str(payload.get("short_desc", "")),
            long_desc=str(payload.get("long_desc", "")),
            seo=ProductSeo(**seo) if isinstance(seo, dict) else None,
            **_usage_fields(payload),
        )


@dataclass(slots=True)
class DesignSectionOutcome:
    """Per-section Elementor JSON result."""

    section_name: str
    elementor_json: dict[str, Any]
    status: ItemStatus
    provider: str
    model: str | None = None
    tokens_input: int = 0
    tokens_output: int = 0
    tokens_used: int = 0
    cost_usd: float = 0.0
    error: str | None = None
    valid_structure: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> DesignSectionOutcome:
        elementor_json = payload.get("elementor_json")
        return cls(
            section_name=str(payload["section_name"]),
            elementor_json=elementor_json if isinstance(elementor_json, dict) else {},
            valid_structure=bool(payload.get("valid_structure", False)),
            **_usage_fields(payload),
        )


ItemOutcome = ArticleOutcome | ProductOutcome | DesignSectionOutcome

_OUTCOME_TYPES: dict[TaskType, type[ArticleOutcome | ProductOutcome | DesignSectionOutcome]] = {
    TaskType.ARTICLES: ArticleOutcome,
    TaskType.PRODUCTS: ProductOutcome,
    TaskType.DESIGN_SECTIONS: DesignSectionOutcome,
}


@dataclass(slots=True)
class ProviderUsage:
    """Token and cost totals attributed to one provider within a batch."""

    tokens_input: int = 0
    tokens_output: int = 0
    cost_usd: float = 0.0


@dataclass(slots=True)
class BatchResult:
    """Tagged batch result: `kind` selects the per-item outcome type."""

    kind: TaskType
    items: list[Any]
    total_tokens: int
    total_cost: float
    processing_time_seconds: int

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.status == ItemStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if item.status == ItemStatus.FAILED)

    def usage_by_provider(self) -> dict[str, ProviderUsage]:
        usage: dict[str, ProviderUsage] = {}
        for item in self.items:
            if item.status != ItemStatus.SUCCESS or item.tokens_used <= 0:
                continue
            bucket = usage.setdefault(item.provider, ProviderUsage())
            bucket.tokens_input += item.tokens_input
            bucket.tokens_output += item.tokens_output
            bucket.cost_usd += item.cost_usd
        return usage

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "items": [_outcome_payload(item) for item in self.items],
            "total_count": len(self.items),
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "processing_time_seconds": self.processing_time_seconds,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> BatchResult:
        kind = TaskType(str(payload["kind"]))
        outcome_type = _OUTCOME_TYPES[kind]
        return cls(
            kind=kind,
            items=[outcome_type.from_payload(item) for item in payload.get("items", [])],
            total_tokens=int(payload.get("total_tokens", 0)),
            total_cost=float(payload.get("total_cost", 0.0)),
            processing_time_seconds=int(payload.get("processing_time_seconds", 0)),
        )


@dataclass(slots=True)
class JobProgress:
    """Progress snapshot for the current attempt."""

    percent: int
    items_completed: int
    items_total: int
    current_item_label: str
    eta_seconds: int

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> JobProgress:
        return cls(
            percent=int(payload.get("percent", 0)),
            items_completed=int(payload.get("items_completed", 0)),
            items_total=int(payload.get("items_total", 0)),
            current_item_label=str(payload.get("current_item_label", "")),
            eta_seconds=int(payload.get("eta_seconds", 0)),
        )


@dataclass(slots=True)
class JobView:
    """Readable job view for services, worker and CLI."""

    job_id: str
    license_id: str
    task_type: str
    task_data: dict[str, Any]
    status: JobStatus
    attempts: int
    max_attempts: int
    progress: JobProgress | None
    result: BatchResult | None
    error_message: str | None
    tokens_used: int
    cost_usd: float
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class JobEventView:
    """Job event entry for the audit trail."""

    event_id: int
    job_id: str
    event_type: str
    status_from: JobStatus | None
    status_to: JobStatus | None
    details: dict[str, object]
    created_at: datetime


def _usage_fields(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "status": ItemStatus(str(payload.get("status", ItemStatus.FAILED.value))),
        "provider": str(payload.get("provider", "")),
        "model": payload.get("model"),
        "tokens_input": int(payload.get("tokens_input", 0)),
        "tokens_output": int(payload.get("tokens_output", 0)),
        "tokens_used": int(payload.get("tokens_used", 0)),
        "cost_usd": float(payload.get("cost_usd", 0.0)),
        "error": payload.get("error"),
    }


def _outcome_payload(item: ItemOutcome) -> dict[str, Any]:
    payload = asdict(item)
    payload["status"] = item.status.value
    return payload
