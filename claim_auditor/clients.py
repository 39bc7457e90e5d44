"""
External capabilities (OCR, text completion) and the service context.

The core treats both vendors as black boxes:
  - OCR:        pdf bytes → per-page text
  - Completion: prompt → text (valid JSON or noise)

Every call is a blocking request/response. There is NO built-in retry;
resilience is the caller's job. Clients are built once per process into a
ServiceContext and passed by reference into pipeline stages.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import pdfplumber
from openai import OpenAI, OpenAIError

from .config import RuleConfig, Settings, get_settings
from .exceptions import PreprocessingError, UpstreamCallError
from .models import OcrPage

logger = logging.getLogger(__name__)


# ─── Capability Protocols ────────────────────────────────────────────


@dataclass(frozen=True)
class Completion:
    """Model output plus token usage for cost tracking."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class TextCompletion(Protocol):
    def complete(self, prompt: str, *, json_mode: bool = True) -> Completion: ...


class OcrCapability(Protocol):
    def ocr(
        self, pdf_bytes: bytes, pages: Optional[Sequence[int]] = None
    ) -> list[OcrPage]: ...


# ─── OpenAI Text Completion ──────────────────────────────────────────


class OpenAICompletion:
    """Text completion over the OpenAI chat API in JSON mode."""

    def __init__(self, api_key: str, model: str, timeout: float = 120.0):
        self.model = model
        # max_retries=0: a failed call is fatal to that call
        self._client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def complete(self, prompt: str, *, json_mode: bool = True) -> Completion:
        kwargs: dict = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0,
                **kwargs,
            )
        except OpenAIError as e:
            logger.error("Text completion failed (%s): %s", self.model, e)
            raise UpstreamCallError(
                f"Text completion failed: {e}", {"model": self.model}
            ) from e

        content = response.choices[0].message.content or ""
        usage = response.usage
        return Completion(
            text=content,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


class UnconfiguredCompletion:
    """Stand-in used when no API key is set. Every call fails upstream, so
    documents degrade exactly as they would on a real outage."""

    def complete(self, prompt: str, *, json_mode: bool = True) -> Completion:
        raise UpstreamCallError(
            "No OPENAI_API_KEY configured — text completion unavailable"
        )


# ─── PDF Text-Layer OCR ──────────────────────────────────────────────


class PdfTextOcr:
    """Reads the PDF text layer with pdfplumber.

    Estimates and measurement reports are generated documents with a real
    text layer, so this is the default capability. Scanned PDFs need a true
    OCR capability plugged into the ServiceContext instead.
    """

    def ocr(
        self, pdf_bytes: bytes, pages: Optional[Sequence[int]] = None
    ) -> list[OcrPage]:
        try:
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                selected = pdf.pages
                if pages is not None:
                    wanted = set(pages)
                    selected = [p for p in pdf.pages if p.page_number in wanted]
                return [
                    OcrPage(
                        page_number=page.page_number,
                        text=(page.extract_text() or "").strip(),
                        confidence=1.0,
                    )
                    for page in selected
                ]
        except Exception as e:
            raise PreprocessingError(
                f"Could not read PDF: {e}", {"byte_count": len(pdf_bytes)}
            ) from e


# ─── Service Context ─────────────────────────────────────────────────


@dataclass
class ServiceContext:
    """Per-process bundle of settings and capability clients."""

    settings: Settings
    completion: TextCompletion
    ocr: OcrCapability

    @property
    def rules(self) -> RuleConfig:
        return self.settings.rules

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ServiceContext:
        settings = settings or get_settings()
        completion: TextCompletion
        if settings.openai_api_key:
            completion = OpenAICompletion(
                api_key=settings.openai_api_key,
                model=settings.extraction_model,
                timeout=settings.request_timeout_s,
            )
        else:
            logger.info("No OPENAI_API_KEY set — LLM extraction will be unavailable")
            completion = UnconfiguredCompletion()
        return cls(settings=settings, completion=completion, ocr=PdfTextOcr())
