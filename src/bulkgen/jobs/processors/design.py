"""Design sections processor: Elementor section JSON per requested section."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from bulkgen.jobs.models import (
    DesignSectionInput,
    DesignSectionOutcome,
    DesignSectionsTaskData,
    ItemStatus,
    TaskType,
)
from bulkgen.jobs.parsing import parse_json_object
from bulkgen.jobs.processors.base import BatchProcessor
from bulkgen.providers.router import RouterResult
from bulkgen.providers.routes import RouteCategory

logger = logging.getLogger(__name__)

DEFAULT_COLORS = ("#ffffff", "#000000", "#3b82f6")
DEFAULT_FONT_FAMILY = "Poppins"

_ELEMENTOR_TEMPLATE = """{
  "id": "unique_section_id",
  "elType": "section",
  "settings": {
    "layout": "full_width",
    "content_width": {"size": 1140, "unit": "px"},
    "background_background": "classic",
    "background_color": "%(primary)s"
  },
  "elements": [
    {
      "id": "column_1",
      "elType": "column",
      "settings": {"_column_size": 100},
      "elements": [
        {
          "id": "widget_1",
          "elType": "widget",
          "widgetType": "heading",
          "settings": {
            "title": "Your Heading Here",
            "align": "center",
            "typography_typography": "custom",
            "typography_font_family": "%(font)s"
          }
        }
      ]
    }
  ]
}"""


class DesignProcessor(BatchProcessor[DesignSectionsTaskData, DesignSectionInput]):
    task_type = TaskType.DESIGN_SECTIONS
    category = RouteCategory.DESIGN_GEN
    item_noun = "sections"
    temperature = 0.8
    max_tokens = 4_000

    def _items(self, task_data: DesignSectionsTaskData) -> list[DesignSectionInput]:
        return list(task_data.sections)

    def _item_label(self, item: DesignSectionInput) -> str:
        return f"Generating design: {item.name}"

    def _build_prompt(self, item: DesignSectionInput, task_data: DesignSectionsTaskData) -> str:
        style = item.style or "modern"
        section_type = item.section_type or "hero"
        colors = item.colors or list(DEFAULT_COLORS)
        theme = task_data.theme
        primary = (theme.primary_color if theme else None) or colors[0]
        secondary = (theme.secondary_color if theme else None) or (
            colors[1] if len(colors) > 1 else "#1e40af"
        )
        font = (theme.font_family if theme else None) or DEFAULT_FONT_FAMILY

        return "\n".join(
            [
                "Generate an Elementor-compatible JSON structure for a "
                f"{section_type} section.",
                "",
                "Section Details:",
                f"- Name: {item.name}",
                f"- Description: {item.description}",
                f"- Style: {style}",
                f"- Section Type: {section_type}",
                "",
                "Design Guidelines:",
                f"- Primary Color: {primary}",
                f"- Secondary Color: {secondary}",
                f"- Font Family: {font}",
                f"- Colors to use: {', '.join(colors)}",
                "",
                "Requirements:",
                "1. Generate a valid Elementor JSON structure",
                "2. Include realistic placeholder content (text, headings)",
                "3. Use proper Elementor widget types (heading, text-editor, button, image)",
                "4. Apply the specified colors and style",
                "5. Make it responsive-ready",
                "",
                "Return ONLY valid JSON in this exact Elementor format:",
                "```json",
                _ELEMENTOR_TEMPLATE % {"primary": primary, "font": font},
                "```",
            ],
        )

    def _success(
        self,
        item: DesignSectionInput,
        *,
        task_data: DesignSectionsTaskData,
        routed: RouterResult,
    ) -> DesignSectionOutcome:
        parsed = parse_json_object(routed.content)
        elementor_json = parsed if parsed is not None else fallback_section(item.name)
        valid = is_elementor_section(elementor_json)
        if not valid:
            logger.warning("Section %r: reply is not a valid Elementor section", item.name)
        return DesignSectionOutcome(
            section_name=item.name,
            elementor_json=elementor_json,
            valid_structure=valid and parsed is not None,
            status=ItemStatus.SUCCESS,
            provider=routed.provider,
            model=routed.model,
            tokens_input=routed.tokens_input,
            tokens_output=routed.tokens_output,
            tokens_used=routed.total_tokens,
            cost_usd=routed.cost_usd,
        )

    def _failure(
        self,
        item: DesignSectionInput,
        *,
        provider: str,
        error: str,
    ) -> DesignSectionOutcome:
        return DesignSectionOutcome(
            section_name=item.name,
            elementor_json={},
            status=ItemStatus.FAILED,
            provider=provider,
            error=error,
        )


def is_elementor_section(payload: dict[str, Any]) -> bool:
    return payload.get("elType") == "section" and isinstance(payload.get("elements"), list)


def fallback_section(section_name: str) -> dict[str, Any]:
    """Minimal Elementor section used when the reply holds no usable JSON."""

    suffix = uuid.uuid4().hex[:8]
    return {
        "id": f"section_{suffix}",
        "elType": "section",
        "settings": {"layout": "full_width"},
        "elements": [
            {
                "id": f"column_{suffix}",
                "elType": "column",
                "settings": {"_column_size": 100},
                "elements": [
                    {
                        "id": f"widget_{suffix}",
                        "elType": "widget",
                        "widgetType": "text-editor",
                        "settings": {
                            "editor": (
                                f"<p>Section: {section_name}</p>"
                                "<p>Content generation failed. Please try again.</p>"
                            ),
                        },
                    },
                ],
            },
        ],
    }
