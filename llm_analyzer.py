"""
llm_analyzer.py - Extracts chainhoist specifications from images, PDFs and text

Pipeline per request:
1. Cache check (content hash of the exact input)
2. Rate gate (per-minute wait, per-day hard stop)
3. Provider call (Claude / OpenAI / Gemini, fixed at construction)
4. Response recovery (JSON chain with regex fallback)
5. Cache store

Quota, network and missing-file failures raise. Unsupported inputs and
unparseable responses come back as ordinary result dicts so batch jobs keep
going.
"""

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import config
from content_cache import ContentCache, content_hash
from merge_engine import merge_product_data
from pdf_text import extract_pdf_text
from providers import LLMProvider, MediaPart, ProviderUnsupported, create_provider
from rate_gate import QuotaExceeded, RateGate
from response_recoverer import recover
from utils_logging import log_event

MIME_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.pdf': 'application/pdf'
}

NO_TEXT_ERROR = "no extractable text"

IMAGE_PROMPT = """Analyze this electric chainhoist product image and extract all visible specifications.

Return a JSON object with these fields (only include fields where data is visible):
{
  "model": "model name if visible",
  "manufacturer": "manufacturer name if visible",
  "loadCapacity": "capacity in kg if visible",
  "liftingSpeed": "speed if visible",
  "motorPower": "power rating if visible",
  "weight": "weight if visible",
  "dimensions": "dimensions if visible",
  "features": ["list of visible features"],
  "safetyFeatures": ["visible safety features"],
  "certificationLogos": ["any certification logos visible"],
  "confidence": 0.0 to 1.0
}

Return ONLY valid JSON, no markdown, no explanation."""

SCANNED_PDF_PROMPT = """This is a scanned PDF document for electric chainhoist or lifting equipment.
Analyze all visible content including tables, specifications, and text.

Return a JSON object with these fields (only include fields where data is found):
{
  "model": "model name",
  "manufacturer": "manufacturer name",
  "series": "product series",
  "loadCapacity": "capacity with unit",
  "liftingSpeed": "speed with unit",
  "motorPower": "power with unit",
  "dutyCycle": "duty cycle",
  "voltageOptions": ["available voltages"],
  "weight": "weight with unit",
  "dimensions": "dimensions",
  "classification": ["certifications"],
  "safetyFeatures": {},
  "certifications": ["CE", "UL", etc.],
  "applications": ["typical applications"],
  "protectionClass": "IP rating",
  "confidence": 0.0 to 1.0
}

Return ONLY valid JSON, no markdown, no explanation."""

PDF_TEXT_PROMPT = """Analyze this electric chainhoist product datasheet/manual and extract all specifications.

Document text:
{document_text}

Return a JSON object with these fields (only include fields with actual data):
{{
  "model": "model name",
  "manufacturer": "manufacturer name",
  "series": "product series",
  "loadCapacity": "capacity with unit (e.g., '1000 kg (2200 lbs)')",
  "liftingSpeed": "speed with unit (e.g., '4 m/min')",
  "motorPower": "power with unit (e.g., '1.5 kW')",
  "dutyCycle": "duty cycle (e.g., '40%', 'M4')",
  "voltageOptions": ["available voltages"],
  "weight": "weight with unit",
  "dimensions": "dimensions",
  "chainFall": "number of chain falls",
  "classification": ["certifications like 'd8', 'd8+', 'bgv-c1'"],
  "safetyFeatures": {{
    "overloadProtection": true/false,
    "upperLimitSwitch": true/false,
    "lowerLimitSwitch": true/false,
    "emergencyStop": true/false,
    "slipClutch": true/false
  }},
  "certifications": ["CE", "UL", "CSA", etc.],
  "applications": ["typical applications"],
  "operatingTemperature": "temperature range",
  "protectionClass": "IP rating",
  "noiseLevel": "noise level in dB",
  "warranty": "warranty period",
  "confidence": 0.0 to 1.0
}}

Return ONLY valid JSON, no markdown, no explanation."""

TEXT_PROMPT = """Extract electric chainhoist specifications from this product description.

Existing data (enhance but don't override unless more accurate):
{existing_data}

Product description:
{text}

Return a JSON object with extracted/enhanced specifications:
{{
  "loadCapacity": "capacity with unit",
  "liftingSpeed": "speed with unit",
  "motorPower": "power with unit",
  "dutyCycle": "duty cycle",
  "classification": ["certifications"],
  "features": ["key features"],
  "applications": ["typical uses"],
  "confidence": 0.0 to 1.0
}}

Return ONLY valid JSON, no markdown, no explanation."""


def get_mime_type(file_path: Union[str, Path]) -> str:
    return MIME_TYPES.get(Path(file_path).suffix.lower(), 'application/octet-stream')


def _read_input(file_path: Union[str, Path], kind: str) -> bytes:
    path = Path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"{kind} not found: {path}")
    return path.read_bytes()


class LLMAnalyzer:
    """
    Owns one provider, one rate gate and one cache. Everything is passed in
    (or defaulted from config), so separate instances never share quota state.
    """

    def __init__(
        self,
        provider: Union[LLMProvider, str, None] = None,
        model: Optional[str] = None,
        rate_gate: Optional[RateGate] = None,
        cache: Optional[ContentCache] = None,
        cache_enabled: bool = config.LLM_CACHE_ENABLED,
        cache_dir: Union[str, Path] = config.LLM_CACHE_DIR,
        cache_ttl_days: float = config.CACHE_TTL_DAYS,
        requests_per_minute: int = config.REQUESTS_PER_MINUTE,
        requests_per_day: int = config.REQUESTS_PER_DAY,
        batch_delay: float = config.BATCH_ITEM_DELAY_SECONDS,
    ):
        if isinstance(provider, LLMProvider):
            self.provider = provider
        else:
            self.provider = create_provider(provider, model=model)

        self.rate_gate = rate_gate or RateGate(requests_per_minute, requests_per_day)

        if cache is not None:
            self.cache = cache
        elif cache_enabled:
            self.cache = ContentCache(cache_dir, cache_ttl_days)
        else:
            self.cache = None

        self.batch_delay = batch_delay

        log_event(f"LLM Analyzer initialized with provider: {self.provider.name}, model: {self.provider.model}")

    @property
    def provider_name(self) -> str:
        return self.provider.name

    # --- Pipeline steps ---------------------------------------------------

    def _cached(self, key: str) -> Optional[Dict[str, Any]]:
        log_event(f"   [{key[:8]}] cache check", "debug")
        if self.cache is None:
            return None
        hit = self.cache.get(key)
        if hit is not None:
            log_event(f"   ✓ Served from cache ({key[:8]}...)")
        return hit

    def _store(self, key: str, result: Dict[str, Any]):
        # Capability errors are not cached; degraded parses are, so a repeat input is not paid for twice
        if self.cache is None or result.get("error"):
            return
        self.cache.set(key, result)

    def _generate(self, prompt: str, media: Optional[MediaPart] = None, task: str = "extraction") -> Dict[str, Any]:
        """Rate gate -> provider call -> recovery. Raises QuotaExceeded / ProviderError."""
        self.rate_gate.acquire()
        log_event(f"   ⚡ Calling {self.provider.name} ({self.provider.model})...", "debug")
        raw = self.provider.generate(prompt, media, task=task)
        result = recover(raw)
        log_event(f"   ✅ Parsed response (strategy: {result.get('parseStrategy')}, "
                  f"confidence: {result.get('confidence', 0):.2f})")
        return result

    def _unsupported(self, message: str) -> Dict[str, Any]:
        log_event(f"   ⚠️  {message}", "warning")
        return {"error": message, "confidence": 0.0}

    # --- Public operations ------------------------------------------------

    def analyze_image(self, image_path: Union[str, Path]) -> Dict[str, Any]:
        """Analyze a product image to extract specifications."""
        log_event(f"🖼️  Analyzing image: {Path(image_path).name}")

        image_bytes = _read_input(image_path, "Image")
        key = content_hash(image_bytes)

        cached = self._cached(key)
        if cached is not None:
            return cached

        media = MediaPart(get_mime_type(image_path), image_bytes)
        try:
            result = self._generate(IMAGE_PROMPT, media, task="image")
        except ProviderUnsupported as e:
            return self._unsupported(str(e))
        except Exception as e:
            log_event(f"❌ Image analysis failed: {e}", "error")
            raise

        self._store(key, result)
        return result

    def analyze_scanned_pdf(self, pdf_path: Union[str, Path]) -> Dict[str, Any]:
        """Send the whole PDF to the provider's vision model (Gemini only)."""
        log_event(f"🔎 Analyzing scanned PDF with {self.provider.name} vision: {Path(pdf_path).name}")

        pdf_bytes = _read_input(pdf_path, "PDF")

        if not self.provider.supports_pdf_vision:
            return self._unsupported(f"{self.provider.name} does not support scanned PDF analysis")

        return self._vision_pdf(pdf_bytes)

    def _vision_pdf(self, pdf_bytes: bytes) -> Dict[str, Any]:
        try:
            result = self._generate(SCANNED_PDF_PROMPT, MediaPart("application/pdf", pdf_bytes), task="pdf_vision")
        except ProviderUnsupported as e:
            return self._unsupported(str(e))
        except Exception as e:
            log_event(f"❌ Vision PDF analysis failed: {e}", "error")
            raise

        result.setdefault("extractionMethod", f"{self.provider.name}-vision")
        return result

    def analyze_pdf(self, pdf_path: Union[str, Path]) -> Dict[str, Any]:
        """
        Analyze a PDF datasheet/manual.

        The text layer is used first. A PDF with less than PDF_MIN_TEXT_CHARS
        of text is treated as scanned: it goes to vision when the provider
        reads PDFs, otherwise {"error": "no extractable text", "confidence": 0}.
        """
        log_event(f"📑 Analyzing PDF: {Path(pdf_path).name}")

        pdf_bytes = _read_input(pdf_path, "PDF")
        key = content_hash(pdf_bytes)

        cached = self._cached(key)
        if cached is not None:
            return cached

        pdf_text = extract_pdf_text(pdf_bytes)

        if len(pdf_text.strip()) < config.PDF_MIN_TEXT_CHARS:
            log_event("   ℹ️  PDF contains little or no text, trying vision analysis...")
            if not self.provider.supports_pdf_vision:
                log_event(f"   ⚠️  {self.provider.name} cannot read PDFs directly; no vision fallback", "warning")
                return {"error": NO_TEXT_ERROR, "confidence": 0.0}
            result = self._vision_pdf(pdf_bytes)
            self._store(key, result)
            return result

        if len(pdf_text) > config.PDF_MAX_TEXT_CHARS:
            pdf_text = pdf_text[:config.PDF_MAX_TEXT_CHARS] + '\n...[truncated]'

        try:
            result = self._generate(PDF_TEXT_PROMPT.format(document_text=pdf_text), task="pdf_text")
        except Exception as e:
            log_event(f"❌ PDF analysis failed: {e}", "error")
            raise

        result.setdefault("extractionMethod", "text")
        self._store(key, result)
        return result

    def analyze_text(self, text: str, existing_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Analyze a product description, enhancing the fields already known.

        Text shorter than TEXT_MIN_CHARS is not worth a call; existing_context
        is returned as-is.
        """
        if existing_context is None:
            existing_context = {}

        if not text or len(text.strip()) < config.TEXT_MIN_CHARS:
            return existing_context

        existing_json = json.dumps(existing_context, indent=2, ensure_ascii=False, sort_keys=True)
        key = content_hash(text + existing_json)

        cached = self._cached(key)
        if cached is not None:
            return cached

        prompt = TEXT_PROMPT.format(existing_data=existing_json, text=text)
        try:
            parsed = self._generate(prompt, task="text")
        except Exception as e:
            log_event(f"❌ Text analysis failed: {e}", "error")
            raise

        merged = {**existing_context, **parsed}
        self._store(key, merged)
        return merged

    def analyze_multiple(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Analyze a batch of {"type": "image"|"pdf"|"text", ...} items one after another.

        Per-item failures are recorded and the batch continues; QuotaExceeded
        stops the batch.
        """
        results = []

        for i, item in enumerate(items):
            item_type = item.get('type')
            log_event(f"Processing item {i + 1}/{len(items)}: {item_type}")

            try:
                if item_type == 'image':
                    result = self.analyze_image(item['path'])
                elif item_type == 'pdf':
                    result = self.analyze_pdf(item['path'])
                elif item_type == 'text':
                    result = self.analyze_text(item.get('content', ''), item.get('existingData'))
                else:
                    result = {"error": f"Unknown item type: {item_type}"}
                results.append({"success": True, "data": result, "item": item})
            except QuotaExceeded:
                log_event(f"⛔ Daily quota exhausted after {i} item(s); stopping batch", "error")
                raise
            except Exception as e:
                results.append({"success": False, "error": str(e), "item": item})

            if i < len(items) - 1 and self.batch_delay > 0:
                time.sleep(self.batch_delay)

        return results

    def merge_product_data(self, existing_product: Dict[str, Any], llm_data: Dict[str, Any]) -> Dict[str, Any]:
        return merge_product_data(existing_product, llm_data, provider=self.provider.name)

    def get_rate_limit_status(self) -> Dict[str, int]:
        return self.rate_gate.status()

    def clear_cache(self) -> int:
        if self.cache is None:
            return 0
        return self.cache.clear()
