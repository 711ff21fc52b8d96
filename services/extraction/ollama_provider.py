"""Ollama-based AI document service for self-hosted vision LLM inference.

Uses a local Ollama server with a vision model (e.g. Qwen2.5-VL) so documents
never leave the premises. PDFs are rendered to page images first.

Requires Ollama server running on localhost:11434.
See: https://ollama.ai/
"""

import base64
import io
import json
import logging

import httpx
import pdfplumber
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.extraction.base import AIDocumentService
from services.extraction.prompts import (
    SYSTEM_PROMPT,
    build_vat_prompt,
    document_text,
    parse_json_response,
)
from services.extraction.schema import (
    AIProcessingResult,
    DocumentInput,
    DocumentKind,
    EnhancedVATData,
)
from services.shared.config import Settings

logger = logging.getLogger(__name__)

MAX_PDF_PAGES = 3
PDF_RENDER_RESOLUTION = 150


class OllamaDocumentService(AIDocumentService):
    """Ollama-based document service for self-hosted inference.

    Uses local Ollama server running on localhost:11434.
    Supports vision models like Qwen2.5-VL and Llama 3.2 Vision.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize Ollama document service.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url
        self._model = settings.ollama_model
        self._client = httpx.Client(timeout=settings.method_timeout_seconds)

    @property
    def provider_name(self) -> str:
        return "ollama"

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except httpx.HTTPError:
            return False

    def process_document(
        self, file_data: bytes, mime_type: str, file_name: str, category: str
    ) -> AIProcessingResult:
        """Extract VAT data from a document using Ollama.

        Returns:
            AIProcessingResult with EnhancedVATData or error
        """
        if not file_data:
            return AIProcessingResult(
                success=False, error="Empty document provided", provider=self.provider_name
            )

        try:
            document = DocumentInput(
                file_data=file_data, mime_type=mime_type, file_name=file_name, category=category
            )
            prompt = build_vat_prompt(file_name, category, document_text(document))
            images = self._document_images(document)

            response_text = self._call_ollama_with_retry(prompt, images)

            vat_dict = parse_json_response(response_text)
            extracted = EnhancedVATData(**vat_dict)

            return AIProcessingResult(
                success=True, extracted_data=extracted, provider=self.provider_name
            )

        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON from Ollama response: {e}")
            return AIProcessingResult(
                success=False,
                error=f"JSON parsing failed: {str(e)}",
                provider=self.provider_name,
            )
        except Exception as e:
            logger.error(f"Ollama extraction failed: {e}")
            return AIProcessingResult(
                success=False,
                error=f"AI extraction failed: {str(e)}",
                provider=self.provider_name,
            )

    @retry(
        retry=retry_if_exception_type((httpx.HTTPError, httpx.TimeoutException)),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _call_ollama_with_retry(self, prompt: str, images: list[str]) -> str:
        """Call Ollama API with retry logic for transient errors.

        Args:
            prompt: Extraction prompt for the LLM
            images: Base64-encoded page images

        Returns:
            Raw response text from Ollama

        Raises:
            httpx.HTTPError: After all retry attempts exhausted
        """
        payload = {
            "model": self._model,
            "system": SYSTEM_PROMPT,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": 0,  # Deterministic output
                "num_predict": 1024,
            },
        }
        if images:
            payload["images"] = images

        response = self._client.post(f"{self._base_url}/api/generate", json=payload)
        response.raise_for_status()
        result: str = response.json().get("response", "")
        return result

    def _document_images(self, document: DocumentInput) -> list[str]:
        """Base64 images for the vision model; empty for text documents."""
        if document.kind == DocumentKind.IMAGE:
            return [base64.b64encode(document.file_data).decode("ascii")]
        if document.kind != DocumentKind.PDF:
            return []

        images = []
        with pdfplumber.open(io.BytesIO(document.file_data)) as pdf:
            for page in pdf.pages[:MAX_PDF_PAGES]:
                buffer = io.BytesIO()
                page.to_image(resolution=PDF_RENDER_RESOLUTION).original.save(buffer, format="PNG")
                images.append(base64.b64encode(buffer.getvalue()).decode("ascii"))
        return images
