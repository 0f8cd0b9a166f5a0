"""Per-category provider fallback chains."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from bulkgen.config import ProviderSettings

SUPPORTED_PROVIDERS = ("claude", "gemini", "openai")

CLAUDE_OPUS = "claude-opus-4-5-20251101"
GEMINI_PRO = "gemini-2.5-pro"
OPENAI_GPT4O = "gpt-4o"


class RouteCategory(str, Enum):
    """Generation categories, each with its own fallback chain."""

    TEXT_GEN = "text_gen"
    CODE_GEN = "code_gen"
    DESIGN_GEN = "design_gen"
    ECOMMERCE_GEN = "ecommerce_gen"


@dataclass(slots=True, frozen=True)
class RouteEntry:
    """One (provider, model) hop in a fallback chain."""

    provider: str
    model: str

    @property
    def cache_key(self) -> str:
        return f"{self.provider}:{self.model}"


_DEFAULT_CHAIN = (
    RouteEntry(provider="claude", model=CLAUDE_OPUS),
    RouteEntry(provider="gemini", model=GEMINI_PRO),
    RouteEntry(provider="openai", model=OPENAI_GPT4O),
)

DEFAULT_ROUTES: Mapping[RouteCategory, tuple[RouteEntry, ...]] = MappingProxyType(
    {category: _DEFAULT_CHAIN for category in RouteCategory},
)


@dataclass(slots=True, frozen=True)
class RoutingDefaults:
    """Immutable route matrix resolved once at startup."""

    chains: Mapping[RouteCategory, tuple[RouteEntry, ...]]

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> RoutingDefaults:
        """Build validated chains from defaults plus `BULKGEN_ROUTE_<CATEGORY>` overrides."""

        chains = dict(DEFAULT_ROUTES)
        for raw_category, raw_chain in settings.route_overrides.items():
            category = parse_route_category(raw_category)
            chains[category] = parse_route_chain(raw_chain)
        return cls(chains=MappingProxyType(chains))

    def chain_for(self, category: RouteCategory) -> tuple[RouteEntry, ...]:
        chain = self.chains.get(category)
        if not chain:
            raise ValueError(f"No route chain configured for category={category.value!r}")
        return chain


def parse_route_category(value: str) -> RouteCategory:
    normalized = value.strip().lower()
    try:
        return RouteCategory(normalized)
    except ValueError as error:
        supported = ", ".join(category.value for category in RouteCategory)
        raise ValueError(
            f"Unsupported route category: {value!r}. Expected one of: {supported}",
        ) from error


def parse_route_chain(raw: str) -> tuple[RouteEntry, ...]:
    """Parse `provider:model,provider:model,...` into an ordered chain."""

    entries: list[RouteEntry] = []
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if ":" not in token:
            raise ValueError(
                f"Invalid route entry: {token!r}. Expected format '<provider>:<model>'.",
            )
        provider, model = token.split(":", 1)
        provider = provider.strip().lower()
        model = model.strip()
        _validate_supported_provider(provider)
        if not model:
            raise ValueError(f"Empty model id in route entry: {token!r}")
        entries.append(RouteEntry(provider=provider, model=model))
    if not entries:
        raise ValueError(f"Route chain is empty: {raw!r}")
    return tuple(entries)


def _validate_supported_provider(provider: str) -> None:
    if provider not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"Unsupported provider: {provider!r}. "
            f"Expected one of: {', '.join(SUPPORTED_PROVIDERS)}",
        )
