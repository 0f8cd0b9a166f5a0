"""Token cost calculation for provider responses."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1k tokens."""

    input_per_1k: float
    output_per_1k: float


MODEL_PRICING: dict[str, ModelPricing] = {
    "claude-opus-4-5-20251101": ModelPricing(input_per_1k=0.015, output_per_1k=0.075),
    "gemini-2.5-pro": ModelPricing(input_per_1k=0.00125, output_per_1k=0.005),
    "gemini-2.5-pro-preview-05-06": ModelPricing(input_per_1k=0.00125, output_per_1k=0.01),
    "gpt-4o": ModelPricing(input_per_1k=0.005, output_per_1k=0.015),
}

# Unknown models are billed at a conservative rate so cost is never silently zero.
DEFAULT_PRICING = ModelPricing(input_per_1k=0.01, output_per_1k=0.03)


def calculate_cost_usd(
    *,
    provider: str,
    model: str,
    tokens_input: int,
    tokens_output: int,
) -> float:
    """Cost of one generation in USD, rounded to micro-dollars."""

    pricing = lookup_pricing(provider=provider, model=model)
    cost = (max(0, tokens_input) / 1_000) * pricing.input_per_1k + (
        max(0, tokens_output) / 1_000
    ) * pricing.output_per_1k
    return round(cost, 6)


def lookup_pricing(*, provider: str, model: str) -> ModelPricing:
    mapping = _parse_pricing_mapping(os.getenv("BULKGEN_LLM_PRICING", ""))
    normalized_provider = provider.strip().lower()
    normalized_model = model.strip()
    for key in (
        (normalized_provider, normalized_model),
        (normalized_provider, "*"),
        ("*", normalized_model),
    ):
        override = mapping.get(key)
        if override is not None:
            return override

    static = MODEL_PRICING.get(normalized_model)
    if static is not None:
        return static

    global_default = mapping.get(("*", "*"))
    if global_default is not None:
        return global_default
    return DEFAULT_PRICING


def _parse_pricing_mapping(raw: str) -> dict[tuple[str, str], ModelPricing]:
    """Parse `BULKGEN_LLM_PRICING` mapping.

    Format:
    - `provider:model:input_per_1k:output_per_1k`
    - multiple entries separated by `,`
    - supports wildcards in provider/model (`*`)
    """

    parsed: dict[tuple[str, str], ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) != 4:
            continue
        provider, model, input_price, output_price = parts
        try:
            input_per_1k = float(input_price)
            output_per_1k = float(output_price)
        except ValueError:
            continue
        if input_per_1k < 0 or output_per_1k < 0:
            continue
        parsed[(provider.lower(), model)] = ModelPricing(
            input_per_1k=input_per_1k,
            output_per_1k=output_per_1k,
        )
    return parsed
