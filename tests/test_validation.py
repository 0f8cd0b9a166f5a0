import allure
import pytest

from bulkgen.jobs.models import ArticlesTaskData, DesignSectionsTaskData, ProductsTaskData, TaskType
from bulkgen.jobs.validation import (
    TaskDataError,
    count_items,
    estimate_processing_seconds,
    parse_task_data,
    parse_task_type,
)

pytestmark = [
    allure.epic("Bulk Jobs"),
    allure.feature("Task Validation"),
]


def test_parse_task_type_normalizes_case() -> None:
    assert parse_task_type(" Articles ") is TaskType.ARTICLES


@pytest.mark.parametrize("value", [None, "", "videos", 3])
def test_parse_task_type_rejects_unknown(value: object) -> None:
    with pytest.raises(TaskDataError) as error:
        parse_task_type(value)
    assert error.value.code == "INVALID_TASK_TYPE"


def test_missing_task_data_has_dedicated_code() -> None:
    with pytest.raises(TaskDataError) as error:
        parse_task_data(TaskType.ARTICLES, None)
    assert error.value.code == "MISSING_TASK_DATA"


def test_articles_defaults_are_applied() -> None:
    data = parse_task_data(TaskType.ARTICLES, {"topics": [" Topic A ", "Topic B"]})

    assert isinstance(data, ArticlesTaskData)
    assert data.topics == ["Topic A", "Topic B"]
    assert data.tone == "professional"
    assert data.language == "en"
    assert data.word_count == 800
    assert data.include_seo is True
    assert count_items(data) == 2


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"topics": []}, "non-empty array"),
        ({"topics": "one"}, "non-empty array"),
        ({"topics": ["ok", "  "]}, r"topics\[1\]"),
        ({"topics": ["ok"], "tone": "angry"}, "tone must be one of"),
        ({"topics": ["ok"], "word_count": 50}, "word_count must be between"),
        ({"topics": ["ok"], "word_count": True}, "word_count must be an integer"),
        ({"topics": ["ok"], "include_seo": "yes"}, "include_seo must be a boolean"),
    ],
)
def test_articles_payload_errors(payload: dict[str, object], message: str) -> None:
    with pytest.raises(TaskDataError, match=message) as error:
        parse_task_data(TaskType.ARTICLES, payload)
    assert error.value.code == "INVALID_TASK_DATA"


def test_item_limit_is_enforced() -> None:
    with pytest.raises(TaskDataError, match="Maximum 2 topics"):
        parse_task_data(TaskType.ARTICLES, {"topics": ["a", "b", "c"]}, max_items=2)


def test_products_require_names() -> None:
    data = parse_task_data(
        TaskType.PRODUCTS,
        {"products": [{"name": "Lamp", "price": 19.99, "category": "Home"}], "tone": "luxury"},
    )
    assert isinstance(data, ProductsTaskData)
    assert data.products[0].name == "Lamp"
    assert data.products[0].price == "19.99"
    assert data.tone == "luxury"

    with pytest.raises(TaskDataError, match=r"products\[0\].name is required"):
        parse_task_data(TaskType.PRODUCTS, {"products": [{"category": "Home"}]})


def test_design_sections_validate_style_and_theme() -> None:
    data = parse_task_data(
        TaskType.DESIGN_SECTIONS,
        {
            "sections": [
                {
                    "name": "Hero",
                    "description": "Big banner",
                    "style": "bold",
                    "section_type": "hero",
                    "colors": ["#000"],
                },
            ],
            "theme": {"primary_color": "#111"},
        },
    )
    assert isinstance(data, DesignSectionsTaskData)
    assert data.sections[0].section_type == "hero"
    assert data.theme is not None
    assert data.theme.font_family == "Poppins"

    with pytest.raises(TaskDataError, match="style must be one of"):
        parse_task_data(
            TaskType.DESIGN_SECTIONS,
            {"sections": [{"name": "Hero", "description": "x", "style": "grunge"}]},
        )
    with pytest.raises(TaskDataError, match="description is required"):
        parse_task_data(TaskType.DESIGN_SECTIONS, {"sections": [{"name": "Hero"}]})


@pytest.mark.parametrize(
    ("task_type", "items", "expected"),
    [
        (TaskType.ARTICLES, 2, 35),
        (TaskType.PRODUCTS, 3, 35),
        (TaskType.DESIGN_SECTIONS, 1, 25),
    ],
)
def test_estimated_wait(task_type: TaskType, items: int, expected: int) -> None:
    assert estimate_processing_seconds(task_type, items) == expected
