"""Products processor: short and long descriptions per product."""

from __future__ import annotations

from bulkgen.jobs.models import (
    ItemStatus,
    ProductInput,
    ProductOutcome,
    ProductSeo,
    ProductsTaskData,
    TaskType,
)
from bulkgen.jobs.parsing import parse_json_object
from bulkgen.jobs.processors.base import BatchProcessor
from bulkgen.providers.router import RouterResult
from bulkgen.providers.routes import RouteCategory


class ProductProcessor(BatchProcessor[ProductsTaskData, ProductInput]):
    task_type = TaskType.PRODUCTS
    category = RouteCategory.ECOMMERCE_GEN
    item_noun = "products"
    temperature = 0.7
    max_tokens = 2_000

    def _items(self, task_data: ProductsTaskData) -> list[ProductInput]:
        return list(task_data.products)

    def _item_label(self, item: ProductInput) -> str:
        return f"Generating product: {item.name}"

    def _build_prompt(self, item: ProductInput, task_data: ProductsTaskData) -> str:
        lines = [
            "Generate product descriptions for the following product:",
            "",
            f"Product Name: {item.name}",
        ]
        if item.category:
            lines.append(f"Category: {item.category}")
        if item.specs:
            lines.append(f"Specifications: {item.specs}")
        if item.price:
            lines.append(f"Price: {item.price}")
        if item.context:
            lines.append(f"Additional Context: {item.context}")

        contract_fields = [
            '  "short_desc": "Your short description here"',
            '  "long_desc": "Your detailed HTML description here with <ul><li> for features"',
        ]
        if task_data.include_seo:
            contract_fields.append('  "seo_title": "SEO optimized title (max 60 chars)"')
            contract_fields.append(
                '  "seo_description": "SEO meta description (max 160 chars)"',
            )
        lines.extend(
            [
                "",
                "Requirements:",
                f"- Tone: {task_data.tone}",
                f"- Language: {task_data.language}",
                "- Generate TWO descriptions:",
                "  1. Short description (2-3 sentences, max 150 characters)",
                "  2. Long description (detailed, 200-300 words with bullet points for features)",
                "",
                "Format your response as JSON:",
                "```json",
                "{",
                ",\n".join(contract_fields),
                "}",
                "```",
            ],
        )
        return "\n".join(lines)

    def _success(
        self,
        item: ProductInput,
        *,
        task_data: ProductsTaskData,
        routed: RouterResult,
    ) -> ProductOutcome:
        short_desc, long_desc, seo = parse_product_reply(routed.content, product_name=item.name)
        return ProductOutcome(
            product_name=item.name,
            short_desc=short_desc,
            long_desc=long_desc,
            seo=seo if task_data.include_seo else None,
            status=ItemStatus.SUCCESS,
            provider=routed.provider,
            model=routed.model,
            tokens_input=routed.tokens_input,
            tokens_output=routed.tokens_output,
            tokens_used=routed.total_tokens,
            cost_usd=routed.cost_usd,
        )

    def _failure(self, item: ProductInput, *, provider: str, error: str) -> ProductOutcome:
        return ProductOutcome(
            product_name=item.name,
            short_desc="",
            long_desc="",
            status=ItemStatus.FAILED,
            provider=provider,
            error=error,
        )


def parse_product_reply(
    text: str,
    *,
    product_name: str,
) -> tuple[str, str, ProductSeo | None]:
    """Structured descriptions when the reply is JSON; otherwise synthesized defaults."""

    fallback_short = f"{product_name} - Quality product"
    payload = parse_json_object(text)
    if payload is None:
        return fallback_short, text, None

    short_desc = payload.get("short_desc")
    long_desc = payload.get("long_desc")
    seo_title = payload.get("seo_title")
    seo_description = payload.get("seo_description")
    seo = None
    if seo_title or seo_description:
        seo = ProductSeo(
            seo_title=str(seo_title) if seo_title else None,
            seo_description=str(seo_description) if seo_description else None,
        )
    return (
        str(short_desc) if short_desc else fallback_short,
        str(long_desc) if long_desc else text,
        seo,
    )
