"""
response_recoverer.py - Turns raw model output into a structured record

Models are asked for bare JSON but often wrap it in prose, code fences or
slightly broken syntax. The strategies below are tried in order and the
first one that yields a JSON object wins; each later stage trusts its
result a little less. recover() never raises.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import FALLBACK_CONFIDENCE
from utils_logging import log_event

FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def coerce_confidence(value: Any) -> float:
    """Float in [0, 1]; missing or non-numeric values count as 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return min(1.0, max(0.0, number))


# --- Strategy 1-3: plain parses -------------------------------------------

def parse_direct(text: str) -> Optional[Dict[str, Any]]:
    return _loads_object(text.strip())


def parse_fenced(text: str) -> Optional[Dict[str, Any]]:
    match = FENCED_BLOCK.search(text)
    if not match:
        return None
    return _loads_object(match.group(1).strip())


def parse_brace_span(text: str) -> Optional[Dict[str, Any]]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return _loads_object(text[start:end + 1])


# --- Strategy 4: heuristic repair -----------------------------------------

SMART_QUOTES = str.maketrans({
    "“": '"', "”": '"', "„": '"', "«": '"', "»": '"',
    "‘": "'", "’": "'",
})
TRAILING_SEPARATOR = re.compile(r",\s*([}\]])")
PYTHON_LITERAL = re.compile(r"([:\[,]\s*)(True|False|None)\b")
BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)(\s*:)")
# A complete double- or single-quoted string, whichever quote opens first
STRING_TOKEN = re.compile(r'"(?:[^"\\\n]|\\.)*"|\'(?:[^\'\\\n]|\\.)*\'')
PY_TO_JSON = {"True": "true", "False": "false", "None": "null"}


def _structural_span(text: str) -> Optional[str]:
    """Cut away everything before the first '{' and after the last '}'; close a truncated object."""
    match = FENCED_BLOCK.search(text)
    if match:
        text = match.group(1)

    start = text.find("{")
    if start == -1:
        return None

    end = text.rfind("}")
    if end > start:
        return text[start:end + 1]

    # Response cut off mid-object
    body = text[start:].rstrip().rstrip(",")
    missing = body.count("{") - body.count("}")
    return body + "}" * max(1, missing)


def _outside_strings(fix: Callable[[str], str]) -> Callable[[str], str]:
    """Apply a textual repair only between string literals, never inside a value."""
    def repair(s: str) -> str:
        pieces = []
        pos = 0
        for match in STRING_TOKEN.finditer(s):
            pieces.append(fix(s[pos:match.start()]))
            pieces.append(match.group(0))
            pos = match.end()
        pieces.append(fix(s[pos:]))
        return "".join(pieces)
    return repair


def _double_quote(match: re.Match) -> str:
    token = match.group(0)
    if token.startswith('"'):
        return token
    inner = token[1:-1].replace("\\'", "'").replace('"', '\\"')
    return f'"{inner}"'


REPAIRS: List[Callable[[str], str]] = [
    _outside_strings(lambda s: TRAILING_SEPARATOR.sub(r"\1", s)),
    lambda s: s.translate(SMART_QUOTES),
    _outside_strings(lambda s: PYTHON_LITERAL.sub(lambda m: m.group(1) + PY_TO_JSON[m.group(2)], s)),
    _outside_strings(lambda s: BARE_KEY.sub(r'\1"\2"\3', s)),
    lambda s: STRING_TOKEN.sub(_double_quote, s),
]


def parse_repaired(text: str) -> Optional[Dict[str, Any]]:
    candidate = _structural_span(text)
    if candidate is None:
        return None

    # Apply repairs cumulatively, least invasive first
    for repair in REPAIRS:
        candidate = repair(candidate)
        parsed = _loads_object(candidate)
        if parsed is not None:
            return parsed
    return None


# --- Strategy 5: regex field extraction -----------------------------------

def _keyed(names: str) -> re.Pattern:
    return re.compile(
        r"(?<![A-Za-z])[\"']?(?:" + names + r")[\"']?\s*[:=]\s*"
        r"(?:\"([^\"\n]*)\"|'([^'\n]*)'|([^,\n}\]]+))",
        re.IGNORECASE,
    )


FIELD_PATTERNS: Dict[str, List[re.Pattern]] = {
    "loadCapacity": [
        _keyed(r"load[ _-]?capacity|rated[ _-]?capacity|capacity|WLL"),
        re.compile(r"\b(\d+(?:[.,]\d+)?\s*(?:kg|t|tons?|lbs?))(?![A-Za-z])", re.IGNORECASE),
    ],
    "liftingSpeed": [
        _keyed(r"lift(?:ing)?[ _-]?speed|hoist(?:ing)?[ _-]?speed"),
        re.compile(r"\b(\d+(?:[.,]\d+)?(?:\s*/\s*\d+(?:[.,]\d+)?)?\s*m/min)", re.IGNORECASE),
    ],
    "motorPower": [
        _keyed(r"motor[ _-]?power|rated[ _-]?power"),
        re.compile(r"\b(\d+(?:[.,]\d+)?\s*(?:kW|HP))(?![A-Za-z])", re.IGNORECASE),
    ],
    "dutyCycle": [
        _keyed(r"duty[ _-]?cycle|duty[ _-]?rating"),
        re.compile(r"\b(\d{1,3}\s*%\s*ED)\b", re.IGNORECASE),
        re.compile(r"\b(FEM\s*\d[A-Za-z]m|ISO\s*M\d)\b"),
    ],
    "model": [
        _keyed(r"model(?:[ _-]?(?:number|no\.?))?"),
    ],
    "manufacturer": [
        _keyed(r"manufacturer|brand"),
    ],
}


def extract_fields(text: str) -> Optional[Dict[str, Any]]:
    """Pull the critical hoist fields straight out of free text. Needs at least one hit."""
    record: Dict[str, Any] = {}

    for field, patterns in FIELD_PATTERNS.items():
        for pattern in patterns:
            match = pattern.search(text)
            if not match:
                continue
            value = next((g for g in match.groups() if g is not None), "").strip().rstrip(".;").strip()
            if value:
                record[field] = value
                break

    if not record:
        return None

    record["confidence"] = FALLBACK_CONFIDENCE
    record["extractionMethod"] = "fallback"
    record["raw"] = text
    return record


# --- Chain ----------------------------------------------------------------

# (name, strategy, confidence factor)
STRATEGIES: List[Tuple[str, Callable[[str], Optional[Dict[str, Any]]], float]] = [
    ("direct", parse_direct, 1.0),
    ("fenced", parse_fenced, 1.0),
    ("brace_span", parse_brace_span, 0.9),
    ("repaired", parse_repaired, 0.75),
]


def recover(raw_text: Any) -> Dict[str, Any]:
    """
    Convert a model response into a dict.

    Returns the first successful parse with its confidence scaled by how far
    down the chain it was found. If no JSON object can be recovered, falls
    back to regex extraction (confidence 0.3, extractionMethod "fallback"),
    and finally to {"confidence": 0.0, "raw": text}.
    """
    text = raw_text if isinstance(raw_text, str) else ("" if raw_text is None else str(raw_text))

    for name, strategy, factor in STRATEGIES:
        try:
            parsed = strategy(text)
        except Exception as e:
            log_event(f"Parse strategy '{name}' crashed: {e}", "warning")
            continue
        if parsed is None:
            continue

        result = dict(parsed)
        result["confidence"] = round(coerce_confidence(parsed.get("confidence")) * factor, 4)
        result["parseStrategy"] = name
        if name != "direct":
            log_event(f"   🩹 Response recovered via '{name}' strategy", "debug")
        return result

    try:
        fallback = extract_fields(text)
    except Exception as e:
        log_event(f"Fallback field extraction crashed: {e}", "warning")
        fallback = None

    if fallback is not None:
        fallback["parseStrategy"] = "fallback"
        log_event(f"   ⚠️  Response was not JSON; regex fallback found {len(fallback) - 4} field(s)", "warning")
        return fallback

    log_event(f"   ⚠️  Could not recover any structure from response: {text[:200]!r}", "warning")
    return {"confidence": 0.0, "raw": text, "parseStrategy": "none"}
