"""
Tests for LLMAnalyzer: caching, rate gating, PDF routing and batch handling.
"""

import pytest

import config
from conftest import GOOD_RESPONSE, FakeProvider
from llm_analyzer import NO_TEXT_ERROR, LLMAnalyzer, get_mime_type
from providers import ProviderError
from rate_gate import QuotaExceeded, RateGate

DATASHEET_LINES = [
    "Model CH-1000 electric chainhoist datasheet",
    "Load capacity: 1000 kg (2200 lbs)",
    "Lifting speed: 4 m/min",
    "Motor power: 1.5 kW",
    "Duty cycle: 40% ED, FEM 2m",
    "Protection class IP55, CE certified",
]

DESCRIPTION = "Compact electric chainhoist with 500 kg capacity and dual brake."


class TestImageAnalysis:

    def test_missing_image_raises(self, make_analyzer, fake_provider, tmp_path):
        analyzer = make_analyzer(fake_provider)

        with pytest.raises(FileNotFoundError, match="Image not found"):
            analyzer.analyze_image(tmp_path / "nope.png")
        assert fake_provider.calls == []

    def test_image_sent_with_mime_type(self, make_analyzer, fake_provider, image_file):
        result = make_analyzer(fake_provider).analyze_image(image_file)

        assert result["loadCapacity"] == "1000 kg"
        assert result["parseStrategy"] == "direct"
        _, media = fake_provider.calls[0]
        assert media.mime_type == "image/png"
        assert media.data == image_file.read_bytes()

    def test_same_image_served_from_cache(self, make_analyzer, fake_provider, image_file):
        analyzer = make_analyzer(fake_provider)

        first = analyzer.analyze_image(image_file)
        second = analyzer.analyze_image(image_file)

        assert first == second
        assert len(fake_provider.calls) == 1

    def test_unparseable_response_is_cached(self, make_analyzer, image_file):
        provider = FakeProvider(["I cannot help with that.", GOOD_RESPONSE])
        analyzer = make_analyzer(provider)

        first = analyzer.analyze_image(image_file)
        second = analyzer.analyze_image(image_file)

        assert first["parseStrategy"] == "none"
        assert first["confidence"] == 0.0
        assert second == first
        assert len(provider.calls) == 1

    def test_pdf_passed_as_image_returns_error(self, make_analyzer, fake_provider, make_pdf):
        pdf = make_pdf("datasheet.pdf", DATASHEET_LINES)
        analyzer = make_analyzer(fake_provider)

        result = analyzer.analyze_image(pdf)
        batch = analyzer.analyze_multiple([{"type": "image", "path": pdf}])

        assert result == {"error": "fake does not support PDF vision input", "confidence": 0.0}
        assert batch[0]["success"] is True
        assert batch[0]["data"] == result
        assert fake_provider.calls == []

    def test_ledger_rows_name_the_operation(self, make_analyzer, fake_provider, image_file,
                                            make_pdf, token_ledger):
        analyzer = make_analyzer(fake_provider)

        analyzer.analyze_image(image_file)
        analyzer.analyze_pdf(make_pdf("datasheet.pdf", DATASHEET_LINES))
        analyzer.analyze_text(DESCRIPTION)

        rows = token_ledger.read_text().splitlines()[1:]
        assert [row.split(",")[1] for row in rows] == ["image", "pdf_text", "text"]

    def test_provider_failure_propagates(self, make_analyzer, image_file):
        analyzer = make_analyzer(FakeProvider([ConnectionError("connection reset")]))

        with pytest.raises(ProviderError, match="connection reset"):
            analyzer.analyze_image(image_file)

    def test_unknown_suffix_mime_type(self):
        assert get_mime_type("photo.JPG") == "image/jpeg"
        assert get_mime_type("notes.bin") == "application/octet-stream"


class TestPdfAnalysis:

    def test_text_layer_goes_into_prompt(self, make_analyzer, fake_provider, make_pdf):
        pdf = make_pdf("datasheet.pdf", DATASHEET_LINES)

        result = make_analyzer(fake_provider).analyze_pdf(pdf)

        prompt, media = fake_provider.calls[0]
        assert media is None
        assert "Load capacity: 1000 kg" in prompt
        assert result["extractionMethod"] == "text"

    def test_long_text_is_truncated(self, make_analyzer, fake_provider, make_pdf, monkeypatch):
        monkeypatch.setattr(config, "PDF_MAX_TEXT_CHARS", 120)
        pdf = make_pdf("datasheet.pdf", DATASHEET_LINES)

        make_analyzer(fake_provider).analyze_pdf(pdf)

        prompt, _ = fake_provider.calls[0]
        assert "...[truncated]" in prompt
        assert "IP55" not in prompt

    def test_pdf_served_from_cache(self, make_analyzer, fake_provider, make_pdf):
        pdf = make_pdf("datasheet.pdf", DATASHEET_LINES)
        analyzer = make_analyzer(fake_provider)

        analyzer.analyze_pdf(pdf)
        again = analyzer.analyze_pdf(pdf)

        assert again["extractionMethod"] == "text"
        assert len(fake_provider.calls) == 1

    def test_scanned_pdf_without_vision(self, make_analyzer, fake_provider, make_pdf):
        pdf = make_pdf("scan.pdf", ["CH-500 hoist, 500 kg"])

        result = make_analyzer(fake_provider).analyze_pdf(pdf)

        assert result == {"error": NO_TEXT_ERROR, "confidence": 0.0}
        assert fake_provider.calls == []

    def test_scanned_pdf_falls_back_to_vision(self, make_analyzer, make_pdf):
        provider = FakeProvider(supports_pdf_vision=True)
        pdf = make_pdf("scan.pdf", ["CH-500 hoist, 500 kg"])
        analyzer = make_analyzer(provider)

        result = analyzer.analyze_pdf(pdf)
        analyzer.analyze_pdf(pdf)

        assert result["extractionMethod"] == "fake-vision"
        assert result["loadCapacity"] == "1000 kg"
        _, media = provider.calls[0]
        assert media.is_pdf
        assert len(provider.calls) == 1

    def test_missing_pdf_raises(self, make_analyzer, fake_provider, tmp_path):
        with pytest.raises(FileNotFoundError, match="PDF not found"):
            make_analyzer(fake_provider).analyze_pdf(tmp_path / "gone.pdf")


class TestScannedPdf:

    def test_unsupported_provider_reports_error(self, make_analyzer, fake_provider, make_pdf):
        pdf = make_pdf("scan.pdf", DATASHEET_LINES)

        result = make_analyzer(fake_provider).analyze_scanned_pdf(pdf)

        assert result["error"] == "fake does not support scanned PDF analysis"
        assert result["confidence"] == 0.0
        assert fake_provider.calls == []

    def test_vision_provider_reads_whole_pdf(self, make_analyzer, make_pdf):
        provider = FakeProvider(supports_pdf_vision=True)
        pdf = make_pdf("scan.pdf", DATASHEET_LINES)

        result = make_analyzer(provider).analyze_scanned_pdf(pdf)

        assert result["extractionMethod"] == "fake-vision"
        _, media = provider.calls[0]
        assert media.data == pdf.read_bytes()


class TestTextAnalysis:

    def test_short_text_returns_context_untouched(self, make_analyzer, fake_provider):
        context = {"model": "CH-250"}

        assert make_analyzer(fake_provider).analyze_text("too short", context) is context
        assert fake_provider.calls == []

    def test_result_overlays_existing_context(self, make_analyzer, fake_provider):
        context = {"model": "CH-1000", "loadCapacity": "500 kg"}

        result = make_analyzer(fake_provider).analyze_text(DESCRIPTION, context)

        assert result["model"] == "CH-1000"
        assert result["loadCapacity"] == "1000 kg"
        prompt, _ = fake_provider.calls[0]
        assert '"model": "CH-1000"' in prompt
        assert DESCRIPTION in prompt

    def test_cache_key_includes_context(self, make_analyzer, fake_provider):
        analyzer = make_analyzer(fake_provider)

        analyzer.analyze_text(DESCRIPTION, {"model": "A"})
        analyzer.analyze_text(DESCRIPTION, {"model": "A"})
        analyzer.analyze_text(DESCRIPTION, {"model": "B"})

        assert len(fake_provider.calls) == 2

    def test_quota_exhaustion_raises(self, make_analyzer, fake_provider):
        analyzer = make_analyzer(fake_provider, requests_per_day=1)
        analyzer.analyze_text(DESCRIPTION)

        with pytest.raises(QuotaExceeded):
            analyzer.analyze_text(DESCRIPTION + " Now with radio remote.")
        assert len(fake_provider.calls) == 1


class TestBatch:

    def test_mixed_items_recorded_individually(self, make_analyzer, fake_provider, image_file, tmp_path):
        items = [
            {"type": "image", "path": image_file},
            {"type": "text", "content": DESCRIPTION, "existingData": {"model": "CH-500"}},
            {"type": "image", "path": tmp_path / "missing.png"},
            {"type": "video", "path": tmp_path / "clip.mp4"},
        ]

        results = make_analyzer(fake_provider).analyze_multiple(items)

        assert [r["success"] for r in results] == [True, True, False, True]
        assert results[1]["data"]["model"] == "CH-500"
        assert "not found" in results[2]["error"]
        assert results[3]["data"] == {"error": "Unknown item type: video"}
        assert all(r["item"] is item for r, item in zip(results, items))

    def test_quota_stops_batch(self, make_analyzer, fake_provider):
        items = [
            {"type": "text", "content": DESCRIPTION},
            {"type": "text", "content": DESCRIPTION + " Second unit."},
            {"type": "text", "content": DESCRIPTION + " Third unit."},
        ]

        with pytest.raises(QuotaExceeded):
            make_analyzer(fake_provider, requests_per_day=1).analyze_multiple(items)
        assert len(fake_provider.calls) == 1


class TestHousekeeping:

    def test_merge_tags_provider(self, make_analyzer, fake_provider):
        merged = make_analyzer(fake_provider).merge_product_data(
            {"model": "CH-1000"}, {"loadCapacity": "1000 kg", "confidence": 0.6}
        )

        assert merged["llmProvider"] == "fake"
        assert merged["loadCapacity"] == "1000 kg"

    def test_rate_status_counts_calls(self, make_analyzer, fake_provider, image_file):
        analyzer = make_analyzer(fake_provider)
        analyzer.analyze_image(image_file)

        assert analyzer.get_rate_limit_status() == {"minuteRemaining": 59, "dayRemaining": 9999}

    def test_cache_hits_do_not_consume_quota(self, make_analyzer, fake_provider, image_file):
        analyzer = make_analyzer(fake_provider)
        analyzer.analyze_image(image_file)
        analyzer.analyze_image(image_file)

        assert analyzer.get_rate_limit_status()["dayRemaining"] == 9999

    def test_clear_cache(self, make_analyzer, fake_provider, image_file):
        analyzer = make_analyzer(fake_provider)
        analyzer.analyze_image(image_file)

        assert analyzer.clear_cache() == 1
        analyzer.analyze_image(image_file)
        assert len(fake_provider.calls) == 2

    def test_cache_disabled(self, fake_provider, fake_clock, image_file):
        analyzer = LLMAnalyzer(
            provider=fake_provider,
            cache_enabled=False,
            rate_gate=RateGate(60, 100, clock=fake_clock, sleep=fake_clock.sleep),
            batch_delay=0,
        )

        analyzer.analyze_image(image_file)
        analyzer.analyze_image(image_file)

        assert analyzer.cache is None
        assert analyzer.clear_cache() == 0
        assert len(fake_provider.calls) == 2

    def test_instances_keep_separate_quotas(self, make_analyzer):
        first_provider, second_provider = FakeProvider(), FakeProvider()
        first = make_analyzer(first_provider, requests_per_day=1)
        second = make_analyzer(second_provider, requests_per_day=1)

        first.analyze_text(DESCRIPTION)
        second.analyze_text(DESCRIPTION + " Other instance.")

        assert first.get_rate_limit_status()["dayRemaining"] == 0
        assert second.get_rate_limit_status()["dayRemaining"] == 0
        assert len(second_provider.calls) == 1
