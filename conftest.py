"""Pytest configuration — ensures the project root is importable and that no
test ever reaches a real OCR or LLM backend."""

import json
import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from claim_auditor.clients import Completion, ServiceContext  # noqa: E402
from claim_auditor.config import RuleConfig, Settings, get_settings  # noqa: E402
from claim_auditor.models import OcrPage  # noqa: E402


class FakeCompletion:
    """Scripted text completion.

    Routes are checked in registration order: the first route whose markers
    all appear in the prompt answers. Unrouted prompts get `default`.
    A response may be a str, a dict (sent as JSON), a Completion, or an
    exception instance to raise.
    """

    def __init__(self, default: object = "{}"):
        self.default = default
        self.routes: list[tuple[tuple[str, ...], object]] = []
        self.prompts: list[str] = []
        self._lock = threading.Lock()

    def when(self, *markers: str, respond: object) -> "FakeCompletion":
        self.routes.append((markers, respond))
        return self

    def complete(self, prompt: str, *, json_mode: bool = True) -> Completion:
        with self._lock:
            self.prompts.append(prompt)
        for markers, response in self.routes:
            if all(m in prompt for m in markers):
                return self._emit(response)
        return self._emit(self.default)

    @staticmethod
    def _emit(response: object) -> Completion:
        if isinstance(response, Exception):
            raise response
        if isinstance(response, Completion):
            return response
        text = response if isinstance(response, str) else json.dumps(response)
        return Completion(text=text, input_tokens=1_000, output_tokens=200)


class FakeOcr:
    """Maps PDF bytes to canned page texts. Unknown bytes yield no pages."""

    def __init__(self, documents: dict[bytes, list[str]] | None = None):
        self.documents = dict(documents or {})
        self.calls: list[tuple[bytes, object]] = []

    def add(self, pdf_bytes: bytes, pages: list[str]) -> "FakeOcr":
        self.documents[pdf_bytes] = pages
        return self

    def ocr(self, pdf_bytes, pages=None):
        self.calls.append((pdf_bytes, pages))
        texts = self.documents.get(pdf_bytes, [])
        wanted = set(pages) if pages is not None else None
        return [
            OcrPage(page_number=i, text=text)
            for i, text in enumerate(texts, 1)
            if wanted is None or i in wanted
        ]


@pytest.fixture(autouse=True)
def _no_llm_calls(monkeypatch):
    """Keep the suite offline: no API key, no cached settings from the host."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def fake_ocr() -> FakeOcr:
    return FakeOcr()


@pytest.fixture
def make_context(fake_completion, fake_ocr):
    """Factory for a ServiceContext wired to the fakes."""

    def _make(completion=None, ocr=None, rules: RuleConfig | None = None, **overrides):
        settings = Settings(
            _env_file=None,
            openai_api_key=None,
            rules=rules or RuleConfig(),
            **overrides,
        )
        return ServiceContext(
            settings=settings,
            completion=completion or fake_completion,
            ocr=ocr or fake_ocr,
        )

    return _make
