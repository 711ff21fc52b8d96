"""Factory for AI document services and the set of extraction methods.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging

from services.errors.tracker import ErrorTracker
from services.extraction.ai_vision import AIVisionMethod
from services.extraction.base import AIDocumentService, ExtractionMethod
from services.extraction.ocr_patterns import OCRPatternMethod
from services.extraction.ollama_provider import OllamaDocumentService
from services.extraction.openai_provider import OpenAIDocumentService
from services.extraction.structured_parser import StructuredParserMethod
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available AI document service providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[AIDocumentService]] = {
        "openai": OpenAIDocumentService,
        "ollama": OllamaDocumentService,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[AIDocumentService]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (must match Settings.ai_provider)
            provider_class: Provider class implementing AIDocumentService interface
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered AI provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[AIDocumentService]:
        """Get provider class by name.

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(f"Unknown AI provider: '{name}'. Available providers: {available}")
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())


def create_ai_service(settings: Settings) -> AIDocumentService:
    """Create the AI document service selected by settings.ai_provider.

    Logs a warning if the provider is not available (e.g., missing API key).

    Raises:
        ValueError: If configured provider is unknown
    """
    provider_class = ProviderRegistry.get_provider_class(settings.ai_provider)
    service = provider_class(settings)

    if not service.is_available():
        logger.warning(
            f"AI provider '{settings.ai_provider}' is not fully available. "
            f"Check configuration (e.g., API keys, Ollama server)."
        )

    logger.info(f"Created AI provider: {settings.ai_provider}")
    return service


def create_extraction_methods(
    settings: Settings,
    error_tracker: ErrorTracker | None = None,
    ai_service: AIDocumentService | None = None,
) -> list[ExtractionMethod]:
    """Build every extraction method enabled by configuration.

    Args:
        settings: Application settings
        error_tracker: Tracker the AI vision method reports failures to
        ai_service: Pre-built AI service (defaults to create_ai_service)

    Returns:
        Methods in priority order: AI vision (if enabled), structured parser, OCR patterns
    """
    methods: list[ExtractionMethod] = []
    if settings.ai_enabled:
        service = ai_service or create_ai_service(settings)
        methods.append(AIVisionMethod(settings, service, error_tracker))
    methods.append(StructuredParserMethod(settings))
    methods.append(OCRPatternMethod(settings))
    return methods
