"""Articles processor: one HTML article per topic, with optional SEO metadata."""

from __future__ import annotations

from bulkgen.jobs.models import (
    ArticleOutcome,
    ArticleSeo,
    ArticlesTaskData,
    ItemStatus,
    TaskType,
)
from bulkgen.jobs.parsing import find_fenced_json
from bulkgen.jobs.processors.base import BatchProcessor
from bulkgen.providers.router import RouterResult
from bulkgen.providers.routes import RouteCategory

_SEO_CONTRACT = """
- At the end, provide SEO metadata in the following JSON format:
```json
{
  "meta_title": "SEO optimized title (max 60 chars)",
  "meta_description": "SEO optimized description (max 160 chars)",
  "keywords": ["keyword1", "keyword2", "keyword3"]
}
```"""


class ArticleProcessor(BatchProcessor[ArticlesTaskData, str]):
    task_type = TaskType.ARTICLES
    category = RouteCategory.TEXT_GEN
    item_noun = "articles"
    temperature = 0.7
    max_tokens = 4_000

    def _items(self, task_data: ArticlesTaskData) -> list[str]:
        return list(task_data.topics)

    def _item_label(self, item: str) -> str:
        return f"Generating article: {item}"

    def _build_prompt(self, item: str, task_data: ArticlesTaskData) -> str:
        prompt = (
            f'Write a comprehensive article about "{item}".\n\n'
            "Requirements:\n"
            f"- Tone: {task_data.tone}\n"
            f"- Language: {task_data.language}\n"
            f"- Target length: approximately {task_data.word_count} words\n"
            "- Format: HTML with proper headings (h2, h3), paragraphs, and lists where "
            "appropriate\n"
            "- Include an engaging introduction and a clear conclusion\n"
            "- Make the content informative and well-structured"
        )
        if task_data.include_seo:
            prompt += _SEO_CONTRACT
        return prompt

    def _success(
        self,
        item: str,
        *,
        task_data: ArticlesTaskData,
        routed: RouterResult,
    ) -> ArticleOutcome:
        content, seo = parse_article_reply(routed.content, include_seo=task_data.include_seo)
        return ArticleOutcome(
            topic=item,
            title=item,
            content=content,
            seo=seo,
            status=ItemStatus.SUCCESS,
            provider=routed.provider,
            model=routed.model,
            tokens_input=routed.tokens_input,
            tokens_output=routed.tokens_output,
            tokens_used=routed.total_tokens,
            cost_usd=routed.cost_usd,
        )

    def _failure(self, item: str, *, provider: str, error: str) -> ArticleOutcome:
        return ArticleOutcome(
            topic=item,
            title=item,
            content="",
            status=ItemStatus.FAILED,
            provider=provider,
            error=error,
        )


def parse_article_reply(text: str, *, include_seo: bool) -> tuple[str, ArticleSeo | None]:
    """Split the article body from its fenced SEO block, when one was requested."""

    if not include_seo:
        return text, None
    fenced = find_fenced_json(text)
    if fenced is None:
        return text, None
    payload, match = fenced
    content = (text[: match.start()] + text[match.end() :]).strip()
    keywords = payload.get("keywords")
    return content, ArticleSeo(
        meta_title=_optional_text(payload.get("meta_title")),
        meta_description=_optional_text(payload.get("meta_description")),
        keywords=[str(keyword) for keyword in keywords] if isinstance(keywords, list) else [],
    )


def _optional_text(value: object) -> str | None:
    return str(value) if value is not None else None
