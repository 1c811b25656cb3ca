import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# --- Paths ---
BASE_DIR = Path(__file__).resolve().parent
INBOX_DIR = BASE_DIR / "Hoist_Inbox"

QUEUE_DIR = INBOX_DIR / "Analysis_Queue"
ARCHIVE_DIR = INBOX_DIR / "Processed_Archive"
ERROR_DIR = INBOX_DIR / "Errors"
OUTPUT_DIR = INBOX_DIR / "Output"

LOG_FILE = BASE_DIR / "llm_analyzer.log"
CSV_LOG_FILE = BASE_DIR / "token_usage_log.csv"

# --- API Keys ---
# Not required at import; the provider that needs one raises when it is built.
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLEAISTUDIO_API_KEY")

# --- Provider & Models ---
# claude | openai | gemini; empty means "pick from whichever key is present"
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "").strip().lower() or None

DEFAULT_MODELS = {
    "claude": os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
    "openai": os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
    "gemini": os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
}

LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "4096"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

# --- Cache ---
LLM_CACHE_ENABLED = os.getenv("LLM_CACHE_ENABLED", "true").lower() not in ("0", "false", "no")
LLM_CACHE_DIR = Path(os.getenv("LLM_CACHE_DIR", str(BASE_DIR / "chainhoist_data" / "llm_cache")))
CACHE_TTL_DAYS = 7

# --- Rate Limits ---
REQUESTS_PER_MINUTE = int(os.getenv("LLM_REQUESTS_PER_MINUTE", "60"))
REQUESTS_PER_DAY = int(os.getenv("LLM_REQUESTS_PER_DAY", "10000"))

# --- Extraction Thresholds ---
PDF_MIN_TEXT_CHARS = 100        # below this a PDF is treated as scanned
PDF_MAX_TEXT_CHARS = 30000      # prompt truncation point
TEXT_MIN_CHARS = 20             # shorter descriptions are not worth a call
FALLBACK_CONFIDENCE = 0.3       # regex-recovered records
HIGH_CONFIDENCE = 0.8           # merge overwrite threshold

BATCH_ITEM_DELAY_SECONDS = 0.5

PRICING = {
    # Anthropic pricing (per 1M tokens)
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-3-5-haiku-latest": {"input": 0.80, "output": 4.00},

    # OpenAI pricing (per 1M tokens)
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},

    # Google Gemini pricing (per 1M tokens)
    # Source: https://ai.google.dev/pricing
    "gemini-1.5-flash": {"input": 0.075, "output": 0.30},
    "gemini-1.5-pro": {"input": 1.25, "output": 5.00},
    "gemini-2.0-flash": {"input": 0.075, "output": 0.30},
    "gemini-2.5-flash": {"input": 0.075, "output": 0.30},
    "gemini-2.5-pro": {"input": 1.25, "output": 5.00},
}

# --- System Settings ---
FILE_STABILIZATION_CHECKS = 3
