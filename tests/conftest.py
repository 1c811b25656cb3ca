"""
Shared fixtures: a controllable clock, a scripted provider and PDF builders.
"""

import fitz  # PyMuPDF
import pytest

import utils_logging
from content_cache import ContentCache
from llm_analyzer import LLMAnalyzer
from providers import LLMProvider
from rate_gate import RateGate

GOOD_RESPONSE = '{"loadCapacity": "1000 kg", "liftingSpeed": "4 m/min", "confidence": 0.9}'


class FakeClock:
    """Callable clock whose sleep() just moves time forward."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float):
        self.now += seconds


class FakeProvider(LLMProvider):
    """Returns scripted responses; an Exception in the script is raised instead."""

    name = "fake"
    api_errors = (ConnectionError,)

    def __init__(self, responses=None, supports_pdf_vision=False):
        super().__init__(model="fake-model")
        self.responses = list(responses or [GOOD_RESPONSE])
        self.supports_pdf_vision = supports_pdf_vision
        self.calls = []

    def _call(self, prompt, media):
        self.calls.append((prompt, media))
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        self._record_usage(len(prompt) // 4, len(response) // 4)
        return response


@pytest.fixture(autouse=True)
def token_ledger(tmp_path, monkeypatch):
    """Keep the CSV cost ledger out of the repository."""
    ledger = tmp_path / "token_usage_log.csv"
    monkeypatch.setattr(utils_logging, "CSV_LOG_FILE", ledger)
    return ledger


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def make_analyzer(tmp_path, fake_clock):
    """Build an analyzer around a provider with an isolated cache and a fake-clock rate gate."""

    def _make(provider, requests_per_minute=60, requests_per_day=10000):
        return LLMAnalyzer(
            provider=provider,
            cache=ContentCache(tmp_path / "llm_cache", clock=fake_clock),
            rate_gate=RateGate(requests_per_minute, requests_per_day, clock=fake_clock, sleep=fake_clock.sleep),
            batch_delay=0,
        )

    return _make


@pytest.fixture
def make_pdf(tmp_path):
    """Write a one-page PDF whose text layer holds the given lines."""

    def _make(name: str, lines):
        doc = fitz.open()
        page = doc.new_page()
        y = 72
        for line in lines:
            page.insert_text((72, y), line, fontsize=10)
            y += 14
        path = tmp_path / name
        doc.save(str(path))
        doc.close()
        return path

    return _make


@pytest.fixture
def image_file(tmp_path):
    path = tmp_path / "hoist.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + b"chainhoist-pixels" * 8)
    return path
