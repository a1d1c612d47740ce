"""AI metadata enrichment for uploaded files."""
from lokaldrive.services.enrichment.gateway import (
    EnrichmentGateway,
    LLMMetadataEnricher,
    MetadataEnricher,
)
from lokaldrive.services.enrichment.llm_base import BaseLLMProvider, provider_from_settings

__all__ = [
    "EnrichmentGateway",
    "LLMMetadataEnricher",
    "MetadataEnricher",
    "BaseLLMProvider",
    "provider_from_settings",
]
