"""OpenAI-based AI document service for VAT extraction.

Sends images and PDFs to a vision-capable model (spreadsheets and text are
inlined in the prompt) and reads the answer through function calling.

Includes retry logic with exponential backoff for transient API errors.
"""

import base64
import json
import os
from typing import Any

from openai import APIConnectionError, APITimeoutError, OpenAI, RateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.extraction.base import AIDocumentService
from services.extraction.prompts import (
    SYSTEM_PROMPT,
    VAT_DATA_SCHEMA,
    build_vat_prompt,
    document_text,
)
from services.extraction.schema import (
    AIProcessingResult,
    DocumentInput,
    DocumentKind,
    EnhancedVATData,
)
from services.shared.config import Settings


class OpenAIDocumentService(AIDocumentService):
    """OpenAI-based document service using a GPT-4o family vision model.

    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI document service.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def process_document(
        self, file_data: bytes, mime_type: str, file_name: str, category: str
    ) -> AIProcessingResult:
        """Extract VAT data from a document using OpenAI.

        Returns:
            AIProcessingResult with EnhancedVATData or error, provider='openai'
        """
        if not self.is_available():
            return AIProcessingResult(
                success=False,
                error="OPENAI_API_KEY environment variable not set",
                provider=self.provider_name,
            )

        if not file_data:
            return AIProcessingResult(
                success=False, error="Empty document provided", provider=self.provider_name
            )

        try:
            api_key = os.getenv("OPENAI_API_KEY")
            if self._client is None or self._client.api_key != api_key:
                # Retries are handled by tenacity below
                self._client = OpenAI(
                    api_key=api_key,
                    timeout=self.settings.method_timeout_seconds,
                    max_retries=0,
                )

            document = DocumentInput(
                file_data=file_data, mime_type=mime_type, file_name=file_name, category=category
            )
            messages = self._build_messages(document)

            response = self._call_openai_with_retry(messages)

            message = response.choices[0].message
            if message.function_call is None:
                return AIProcessingResult(
                    success=False,
                    error="No function call in API response",
                    provider=self.provider_name,
                )

            vat_dict = json.loads(message.function_call.arguments)
            extracted = EnhancedVATData(**vat_dict)

            return AIProcessingResult(
                success=True, extracted_data=extracted, provider=self.provider_name
            )

        except Exception as e:
            return AIProcessingResult(
                success=False,
                error=f"AI extraction failed: {str(e)}",
                provider=self.provider_name,
            )

    @retry(
        retry=retry_if_exception_type((RateLimitError, APIConnectionError, APITimeoutError)),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _call_openai_with_retry(self, messages: list[dict[str, Any]]) -> Any:
        """Call OpenAI API with retry logic for transient errors.

        Rate limits, connection failures and timeouts are retried up to 3 times
        with exponential backoff and jitter; other API errors fail immediately.

        Args:
            messages: Chat messages including the document content

        Returns:
            OpenAI API response

        Raises:
            Exception: After all retry attempts are exhausted
        """
        if self._client is None:
            raise RuntimeError("OpenAI client not initialized")

        return self._client.chat.completions.create(  # type: ignore[call-overload]
            model=self.settings.openai_model,
            messages=messages,
            functions=[VAT_DATA_SCHEMA],
            function_call={"name": VAT_DATA_SCHEMA["name"]},
            temperature=0,  # Deterministic output
        )

    def _build_messages(self, document: DocumentInput) -> list[dict[str, Any]]:
        """Build chat messages, attaching images and PDFs as content parts."""
        text = document_text(document)
        prompt = build_vat_prompt(document.file_name, document.category, text)
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]

        encoded = base64.b64encode(document.file_data).decode("ascii")
        if document.kind == DocumentKind.IMAGE:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{document.mime_type};base64,{encoded}"},
                }
            )
        elif document.kind == DocumentKind.PDF:
            content.append(
                {
                    "type": "file",
                    "file": {
                        "filename": document.file_name,
                        "file_data": f"data:application/pdf;base64,{encoded}",
                    },
                }
            )

        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]
