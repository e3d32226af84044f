"""
unistream Adapters Module

Provider variant adapters: each provider is a ``ProviderAdapter``
capability set describing its transports and chunk extractors.
"""

from typing import Dict, Union

from .base import ProviderAdapter, TransportKind, as_mapping, map_finish_reason
from .openai_adapter import OPENAI_ADAPTER, MISTRAL_ADAPTER, OPENAI_DONE_SENTINEL
from .anthropic_adapter import ANTHROPIC_ADAPTER
from .google_adapter import GOOGLE_ADAPTER
from .bedrock_adapter import (
    BEDROCK_ANTHROPIC_ADAPTER,
    BEDROCK_COHERE_ADAPTER,
    BEDROCK_LLAMA2_ADAPTER,
)
from ..core.errors import UnsupportedProviderError
from ..core.models import Provider

ADAPTERS: Dict[Provider, ProviderAdapter] = {
    adapter.provider: adapter
    for adapter in (
        OPENAI_ADAPTER,
        MISTRAL_ADAPTER,
        ANTHROPIC_ADAPTER,
        GOOGLE_ADAPTER,
        BEDROCK_ANTHROPIC_ADAPTER,
        BEDROCK_COHERE_ADAPTER,
        BEDROCK_LLAMA2_ADAPTER,
    )
}

__all__ = [
    "ProviderAdapter",
    "TransportKind",
    "as_mapping",
    "map_finish_reason",
    "ADAPTERS",
    "OPENAI_DONE_SENTINEL",
    "get_adapter",
]


def get_adapter(provider: Union[str, Provider, ProviderAdapter]) -> ProviderAdapter:
    """
    Look up the adapter for a provider tag.

    Args:
        provider: Provider tag ("openai", "bedrock-cohere", ...), a Provider
            member, or an adapter instance (returned unchanged)

    Returns:
        The registered adapter

    Raises:
        UnsupportedProviderError: If no adapter is registered for the tag
    """
    if isinstance(provider, ProviderAdapter):
        return provider

    tag = provider.value if isinstance(provider, Provider) else str(provider).lower()
    try:
        return ADAPTERS[Provider(tag)]
    except (ValueError, KeyError):
        raise UnsupportedProviderError(tag, sorted(p.value for p in ADAPTERS)) from None
