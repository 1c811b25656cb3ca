import json
import hashlib
import time
from pathlib import Path
from typing import Optional, Dict, Any, Callable, Union
from config import LLM_CACHE_DIR, CACHE_TTL_DAYS
from utils_logging import log_event


def content_hash(payload: Union[bytes, str]) -> str:
    """SHA-256 hex digest of the exact payload bytes (text is UTF-8 encoded first)."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


class ContentCache:
    """Content-addressed store of extraction results so identical inputs are only paid for once."""

    def __init__(
        self,
        cache_dir: Union[str, Path] = LLM_CACHE_DIR,
        ttl_days: float = CACHE_TTL_DAYS,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = Path(cache_dir)
        self.ttl_seconds = ttl_days * 24 * 60 * 60
        self._clock = clock

    def _entry_path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Return the cached result for this key.

        Returns None if:
        - No cache entry exists
        - The entry is older than the TTL
        - The entry cannot be read
        """
        entry_path = self._entry_path(key)
        if not entry_path.exists():
            return None

        try:
            with open(entry_path, 'r', encoding='utf-8') as f:
                entry = json.load(f)
            age = self._clock() - float(entry["timestamp"])
            data = entry["data"]
        except (OSError, ValueError, KeyError, TypeError) as e:
            log_event(f"Cache read error for {key[:8]}: {e}", "warning")
            return None

        if age >= self.ttl_seconds:
            log_event(f"⚠ Cache entry {key[:8]}... expired ({age / 86400:.1f} days old)", "debug")
            return None

        log_event(f"✓ Cache HIT for {key[:8]}...", "debug")
        return data

    def set(self, key: str, data: Dict[str, Any]):
        """Write a result to disk. Failures are logged and ignored."""
        entry = {"timestamp": self._clock(), "data": data}
        try:
            # Ensure cache directory exists
            self.cache_dir.mkdir(parents=True, exist_ok=True)

            with open(self._entry_path(key), 'w', encoding='utf-8') as f:
                json.dump(entry, f, indent=2, ensure_ascii=False)
            log_event(f"💾 Cached result for {key[:8]}...", "debug")
        except (OSError, TypeError, ValueError) as e:
            log_event(f"Cache write error for {key[:8]}: {e}", "warning")

    def clear(self) -> int:
        """Delete every cached entry. Returns how many were removed."""
        if not self.cache_dir.exists():
            return 0

        removed = 0
        for entry_path in self.cache_dir.glob("*.json"):
            entry_path.unlink()
            removed += 1

        log_event(f"Cleared {removed} cached entries")
        return removed

    def stats(self) -> dict:
        """Get cache statistics for reporting."""
        entries = len(list(self.cache_dir.glob("*.json"))) if self.cache_dir.exists() else 0
        return {
            "entries": entries,
            "directory": str(self.cache_dir)
        }
