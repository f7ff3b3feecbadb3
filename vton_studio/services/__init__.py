from .fal_provider import FalImageProvider
from .generator import GenerationAdapter, classify_provider_error
from .quota import (
    CounterStore,
    InMemoryCounterStore,
    QuotaDecision,
    RateLimiter,
    UpstashCounterStore,
    create_counter_store,
)
from .studio_client import StudioClient

__all__ = [
    "FalImageProvider",
    "GenerationAdapter",
    "classify_provider_error",
    "CounterStore",
    "InMemoryCounterStore",
    "QuotaDecision",
    "RateLimiter",
    "UpstashCounterStore",
    "create_counter_store",
    "StudioClient",
]
