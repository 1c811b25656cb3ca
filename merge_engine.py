"""
merge_engine.py - Folds an extraction result into an existing product record
"""

from datetime import datetime
from typing import Any, Dict, Optional

from config import HIGH_CONFIDENCE
from response_recoverer import coerce_confidence

MERGEABLE_FIELDS = [
    'loadCapacity', 'liftingSpeed', 'motorPower', 'dutyCycle',
    'weight', 'dimensions', 'voltageOptions', 'classification',
    'safetyFeatures', 'certifications', 'warranty', 'noiseLevel',
    'protectionClass', 'applications', 'features'
]


def is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, dict)) and len(value) == 0)


def merge_product_data(existing: Dict[str, Any], extracted: Dict[str, Any],
                       provider: Optional[str] = None) -> Dict[str, Any]:
    """
    Merge LLM-extracted data into a product record and return the new record.

    A field is overwritten only when the record has nothing there yet, or when
    the extraction is high-confidence (> 0.8) and the record is not (< 0.8).
    A well-populated record is never downgraded by a weaker extraction.
    The input dicts are left untouched.
    """
    merged = dict(existing)

    existing_conf = coerce_confidence(existing.get('confidence'))
    extracted_conf = coerce_confidence(extracted.get('confidence'))
    upgrade = extracted_conf > HIGH_CONFIDENCE and existing_conf < HIGH_CONFIDENCE

    for field in MERGEABLE_FIELDS:
        new_value = extracted.get(field)
        if new_value is None:
            continue
        if is_empty(existing.get(field)) or upgrade:
            merged[field] = new_value

    merged['confidence'] = max(existing_conf, extracted_conf)
    merged['llmEnriched'] = True
    merged['llmEnrichedAt'] = datetime.now().isoformat()
    if provider:
        merged['llmProvider'] = provider

    return merged
