"""Task payload validation and processing time estimates."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from bulkgen.jobs.models import (
    ArticlesTaskData,
    DesignSectionInput,
    DesignSectionsTaskData,
    DesignTheme,
    ProductInput,
    ProductsTaskData,
    TaskData,
    TaskType,
)

DEFAULT_MAX_BULK_ITEMS = 50
BASE_WAIT_SECONDS = 5
PER_ITEM_SECONDS: dict[TaskType, int] = {
    TaskType.ARTICLES: 15,
    TaskType.PRODUCTS: 10,
    TaskType.DESIGN_SECTIONS: 20,
}

ARTICLE_TONES = ("professional", "casual", "technical", "friendly")
PRODUCT_TONES = ("professional", "casual", "luxury", "technical")
DESIGN_STYLES = ("modern", "minimal", "classic", "bold")
SECTION_TYPES = ("hero", "features", "testimonials", "cta", "footer", "gallery", "pricing")
MIN_WORD_COUNT = 100
MAX_WORD_COUNT = 5_000


class TaskDataError(ValueError):
    """Submitted task type or payload failed validation."""

    def __init__(self, message: str, *, code: str = "INVALID_TASK_DATA") -> None:
        super().__init__(message)
        self.code = code


def parse_task_type(value: object) -> TaskType:
    if not isinstance(value, str) or not value.strip():
        raise TaskDataError("task_type is required", code="INVALID_TASK_TYPE")
    try:
        return TaskType(value.strip().lower())
    except ValueError as error:
        supported = ", ".join(task_type.value for task_type in TaskType)
        raise TaskDataError(
            f"Invalid task_type {value!r}. Must be one of: {supported}",
            code="INVALID_TASK_TYPE",
        ) from error


def parse_task_data(
    task_type: TaskType,
    raw: object,
    *,
    max_items: int = DEFAULT_MAX_BULK_ITEMS,
) -> TaskData:
    """Validate a raw payload and build the typed task data for `task_type`."""

    if raw is None:
        raise TaskDataError("task_data is required", code="MISSING_TASK_DATA")
    if not isinstance(raw, Mapping):
        raise TaskDataError("task_data must be an object")
    if task_type is TaskType.ARTICLES:
        return _parse_articles(raw, max_items=max_items)
    if task_type is TaskType.PRODUCTS:
        return _parse_products(raw, max_items=max_items)
    return _parse_design_sections(raw, max_items=max_items)


def count_items(task_data: TaskData) -> int:
    if isinstance(task_data, ArticlesTaskData):
        return len(task_data.topics)
    if isinstance(task_data, ProductsTaskData):
        return len(task_data.products)
    return len(task_data.sections)


def estimate_processing_seconds(task_type: TaskType, item_count: int) -> int:
    """Initial wait estimate: a fixed startup cost plus a per-item cost."""

    return BASE_WAIT_SECONDS + PER_ITEM_SECONDS[task_type] * max(0, item_count)


def _parse_articles(raw: Mapping[str, Any], *, max_items: int) -> ArticlesTaskData:
    topics = _require_list(raw, "topics", max_items=max_items)
    parsed_topics: list[str] = []
    for index, topic in enumerate(topics):
        if not isinstance(topic, str) or not topic.strip():
            raise TaskDataError(f"topics[{index}] must be a non-empty string")
        parsed_topics.append(topic.strip())

    word_count = raw.get("word_count", 800)
    if isinstance(word_count, bool) or not isinstance(word_count, int):
        raise TaskDataError("word_count must be an integer")
    if not MIN_WORD_COUNT <= word_count <= MAX_WORD_COUNT:
        raise TaskDataError(
            f"word_count must be between {MIN_WORD_COUNT} and {MAX_WORD_COUNT}",
        )

    return ArticlesTaskData(
        topics=parsed_topics,
        tone=_optional_choice(raw, "tone", ARTICLE_TONES, default="professional"),
        language=_optional_str(raw, "language") or "en",
        word_count=word_count,
        include_seo=_optional_bool(raw, "include_seo", default=True),
    )


def _parse_products(raw: Mapping[str, Any], *, max_items: int) -> ProductsTaskData:
    products = _require_list(raw, "products", max_items=max_items)
    parsed_products: list[ProductInput] = []
    for index, product in enumerate(products):
        if not isinstance(product, Mapping):
            raise TaskDataError(f"products[{index}] must be an object")
        name = product.get("name")
        if not isinstance(name, str) or not name.strip():
            raise TaskDataError(f"products[{index}].name is required")
        parsed_products.append(
            ProductInput(
                name=name.strip(),
                category=_optional_str(product, "category"),
                specs=_optional_str(product, "specs"),
                price=_optional_str(product, "price"),
                context=_optional_str(product, "context"),
            ),
        )

    return ProductsTaskData(
        products=parsed_products,
        tone=_optional_choice(raw, "tone", PRODUCT_TONES, default="professional"),
        language=_optional_str(raw, "language") or "en",
        include_seo=_optional_bool(raw, "include_seo", default=True),
    )


def _parse_design_sections(raw: Mapping[str, Any], *, max_items: int) -> DesignSectionsTaskData:
    sections = _require_list(raw, "sections", max_items=max_items)
    parsed_sections: list[DesignSectionInput] = []
    for index, section in enumerate(sections):
        if not isinstance(section, Mapping):
            raise TaskDataError(f"sections[{index}] must be an object")
        name = section.get("name")
        description = section.get("description")
        if not isinstance(name, str) or not name.strip():
            raise TaskDataError(f"sections[{index}].name is required")
        if not isinstance(description, str) or not description.strip():
            raise TaskDataError(f"sections[{index}].description is required")
        colors = section.get("colors") or []
        if not isinstance(colors, list) or not all(isinstance(color, str) for color in colors):
            raise TaskDataError(f"sections[{index}].colors must be a list of strings")
        style = section.get("style")
        if style is not None and style not in DESIGN_STYLES:
            raise TaskDataError(
                f"sections[{index}].style must be one of: {', '.join(DESIGN_STYLES)}",
            )
        section_type = section.get("section_type")
        if section_type is not None and section_type not in SECTION_TYPES:
            raise TaskDataError(
                f"sections[{index}].section_type must be one of: {', '.join(SECTION_TYPES)}",
            )
        parsed_sections.append(
            DesignSectionInput(
                name=name.strip(),
                description=description.strip(),
                style=style,
                colors=list(colors),
                section_type=section_type,
            ),
        )

    theme_raw = raw.get("theme")
    theme: DesignTheme | None = None
    if theme_raw is not None:
        if not isinstance(theme_raw, Mapping):
            raise TaskDataError("theme must be an object")
        theme = DesignTheme(
            primary_color=_optional_str(theme_raw, "primary_color"),
            secondary_color=_optional_str(theme_raw, "secondary_color"),
            font_family=_optional_str(theme_raw, "font_family") or "Poppins",
        )
    return DesignSectionsTaskData(sections=parsed_sections, theme=theme)


def _require_list(raw: Mapping[str, Any], key: str, *, max_items: int) -> list[Any]:
    value = raw.get(key)
    if not isinstance(value, list) or not value:
        raise TaskDataError(f"{key} must be a non-empty array")
    if len(value) > max_items:
        raise TaskDataError(f"Maximum {max_items} {key} allowed per request")
    return value


def _optional_str(raw: Mapping[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, str | int | float):
        raise TaskDataError(f"{key} must be a string")
    text = str(value).strip()
    return text or None


def _optional_bool(raw: Mapping[str, Any], key: str, *, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise TaskDataError(f"{key} must be a boolean")
    return value


def _optional_choice(
    raw: Mapping[str, Any],
    key: str,
    choices: tuple[str, ...],
    *,
    default: str,
) -> str:
    value = raw.get(key)
    if value is None:
        return default
    if value not in choices:
        raise TaskDataError(f"{key} must be one of: {', '.join(choices)}")
    return value
