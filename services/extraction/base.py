"""Abstract base classes for VAT extraction strategies.

Two seams live here:

- ExtractionMethod: one independent way of turning a document into
  ExtractedVATData (AI vision, structured table parsing, OCR patterns). Each
  method declares the document kinds it accepts so the validator selects
  methods by capability instead of re-checking MIME strings.
- AIDocumentService: the external document-understanding collaborator the AI
  vision method delegates to (OpenAI, Ollama).

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

from abc import ABC, abstractmethod

from services.extraction.schema import (
    AIProcessingResult,
    DocumentInput,
    DocumentKind,
    ExtractedVATData,
    MethodTag,
)
from services.shared.config import Settings

# Static priority of each method in the consensus weighting
METHOD_WEIGHTS: dict[MethodTag, float] = {
    MethodTag.AI_VISION: 1.0,
    MethodTag.STRUCTURED_PARSER: 0.9,
    MethodTag.OCR_PATTERNS: 0.7,
}


class ExtractionError(RuntimeError):
    """A method could not read the document (OCR failure, unreadable file)."""


class ExtractionMethod(ABC):
    """Abstract base class for VAT extraction methods.

    Implementations return None when the document holds nothing they can use.
    They may raise on unexpected failures; the validator wraps every call so
    one method's exception never aborts the others.
    """

    tag: MethodTag
    accepted_kinds: frozenset[DocumentKind] = frozenset()

    def __init__(self, settings: Settings) -> None:
        """Initialize method with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @property
    def weight(self) -> float:
        return METHOD_WEIGHTS[self.tag]

    def accepts(self, document: DocumentInput) -> bool:
        """Whether this method should be attempted for the given document."""
        return document.kind in self.accepted_kinds

    @abstractmethod
    async def extract(self, document: DocumentInput) -> ExtractedVATData | None:
        """Extract VAT data from a document.

        Args:
            document: Uploaded document bytes and metadata

        Returns:
            ExtractedVATData, or None if nothing usable was found
        """
        pass


class AIDocumentService(ABC):
    """Abstract base class for AI document-understanding providers.

    Providers never raise for service failures; they report them through
    AIProcessingResult(success=False, error=...).
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @abstractmethod
    def process_document(
        self, file_data: bytes, mime_type: str, file_name: str, category: str
    ) -> AIProcessingResult:
        """Read VAT figures and business details from a document.

        Args:
            file_data: Raw document bytes
            mime_type: MIME type reported by the upload
            file_name: Original filename
            category: Caller-supplied SALES/PURCHASE category hint

        Returns:
            AIProcessingResult with EnhancedVATData or error
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'openai', 'ollama')
        """
        pass
