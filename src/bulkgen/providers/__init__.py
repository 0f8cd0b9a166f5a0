"""AI provider clients and the fallback router."""

from bulkgen.providers.base import ProviderCallError, ProviderClient
from bulkgen.providers.models import GenerateOptions, ProviderErrorCode, ProviderResponse
from bulkgen.providers.router import ALL_PROVIDERS_FAILED, Router, RouterResult, build_router
from bulkgen.providers.routes import RouteCategory, RouteEntry, RoutingDefaults

__all__ = [
    "ALL_PROVIDERS_FAILED",
    "GenerateOptions",
    "ProviderCallError",
    "ProviderClient",
    "ProviderErrorCode",
    "ProviderResponse",
    "RouteCategory",
    "RouteEntry",
    "Router",
    "RouterResult",
    "RoutingDefaults",
    "build_router",
]
