"""Selection of the invoice extraction provider from settings."""

import logging

from invoice_ingest.extraction.base import ExtractionProvider
from invoice_ingest.extraction.gemini_provider import GeminiExtractionProvider
from invoice_ingest.extraction.openai_provider import OpenAIExtractionProvider
from invoice_ingest.shared.config import Settings

logger = logging.getLogger(__name__)

# Keys match the values Settings.extraction_provider accepts.
PROVIDERS: dict[str, type[ExtractionProvider]] = {
    "gemini": GeminiExtractionProvider,
    "openai": OpenAIExtractionProvider,
}


def create_extraction_service(settings: Settings) -> ExtractionProvider:
    """Create the provider named by settings.extraction_provider.

    A provider without credentials is still returned, with a warning; each
    extraction request then fails with a configuration error instead of the
    service refusing to start.

    Raises:
        ValueError: If the provider name is unknown
    """
    name = settings.extraction_provider
    provider_class = PROVIDERS.get(name)
    if provider_class is None:
        raise ValueError(
            f"Unknown extraction provider: '{name}'. Available providers: {', '.join(PROVIDERS)}"
        )

    provider = provider_class(settings)
    if provider.is_available():
        logger.info(f"Invoice extraction via {name}")
    else:
        logger.warning(f"Extraction provider '{name}' has no API key; OCR requests will fail")
    return provider
