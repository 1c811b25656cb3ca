"""
main_runner.py - Inbox runner for the chainhoist LLM analyzer

Drop product images, PDF datasheets or .txt descriptions into the queue
directory. Each file is:
1. Waited on until the copy finishes
2. Analyzed (cache -> rate gate -> provider -> recovery)
3. Written to Output/<name>.json
4. Moved to Processed_Archive (or Errors)

Run with --batch DIR to process a directory once instead of watching.
"""

import argparse
import json
import time
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Optional

from tqdm import tqdm
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

import config
from llm_analyzer import LLMAnalyzer
from rate_gate import QuotaExceeded
from utils_logging import log_event

SUPPORTED_SUFFIXES = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.pdf', '.txt'}


def is_supported(file_path: Path) -> bool:
    # Skip macOS metadata files
    return file_path.suffix.lower() in SUPPORTED_SUFFIXES and not file_path.name.startswith('._')


def analyze_file(analyzer: LLMAnalyzer, file_path: Path) -> dict:
    suffix = file_path.suffix.lower()
    if suffix == '.pdf':
        return analyzer.analyze_pdf(file_path)
    if suffix == '.txt':
        try:
            text = file_path.read_text(encoding='utf-8')
        except UnicodeDecodeError:
            log_event(f"   ⚠️  UTF-8 decode failed, trying latin-1...", "warning")
            text = file_path.read_text(encoding='latin-1')
        return analyzer.analyze_text(text)
    return analyzer.analyze_image(file_path)


def write_result(file_path: Path, result: dict, provider: str) -> Path:
    config.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    output_path = config.OUTPUT_DIR / f"{file_path.stem}.json"
    payload = {
        "source": file_path.name,
        "analyzedAt": datetime.now().isoformat(),
        "provider": provider,
        "result": result
    }
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
    return output_path


def _move(file_path: Path, target_dir: Path):
    target_dir.mkdir(parents=True, exist_ok=True)
    file_path.rename(target_dir / file_path.name)


def process_file_safely(file_path: Path, analyzer: LLMAnalyzer) -> str:
    """
    Process one queued file with comprehensive error handling.

    Returns "success", "error", "quota" or "skipped". On "quota" the file is
    left in the queue; the next start of the watcher picks it up again.
    """
    if not file_path.exists():
        log_event(f"⚠️  File does not exist: {file_path}", "warning")
        return "skipped"

    log_event("=" * 80)
    log_event(f"🚀 Processing: {file_path.name}")
    log_event(f"   File size: {file_path.stat().st_size / 1024:.1f} KB")
    log_event("=" * 80)

    try:
        result = analyze_file(analyzer, file_path)
        output_path = write_result(file_path, result, analyzer.provider_name)
        log_event(f"   📊 Result written: {output_path.name}")

        if result.get("error"):
            _move(file_path, config.ERROR_DIR)
            log_event(f"⚠️  NO DATA - {result['error']}: {file_path.name}", "warning")
            return "error"

        _move(file_path, config.ARCHIVE_DIR)
        log_event(f"✅ SUCCESS - Archived: {file_path.name} (confidence {result.get('confidence', 0):.2f})")
        return "success"

    except QuotaExceeded as e:
        log_event(f"⛔ {e} - leaving {file_path.name} in the queue", "error")
        return "quota"

    except Exception as e:
        log_event(f"\n❌ CRITICAL ERROR: {e}", "error")

        import traceback
        traceback_str = traceback.format_exc()
        log_event(f"Traceback:\n{traceback_str}", "error")

        try:
            if file_path.exists():
                _move(file_path, config.ERROR_DIR)
                log_event(f"Moved to error directory: {config.ERROR_DIR / file_path.name}", "error")
        except OSError as move_error:
            log_event(f"Failed to move file: {move_error}", "error")
        return "error"


def wait_for_stable_file(file_path: Path, max_wait: int = 30, poll: float = 1.0) -> bool:
    """Wait for a file copied over the network to stop growing. False if it vanished or never settled."""
    last_size = -1
    stable_count = 0

    for _ in range(max_wait):
        if not file_path.exists():
            return False

        current_size = file_path.stat().st_size
        if current_size == last_size and current_size > 0:
            stable_count += 1
            if stable_count >= config.FILE_STABILIZATION_CHECKS:
                log_event(f"   ✅ Transfer complete: {current_size / 1024:.1f} KB")
                return True
        else:
            stable_count = 0
            last_size = current_size

        time.sleep(poll)

    return False


class AnalysisFileHandler(FileSystemEventHandler):
    """Watches for new files in the queue directory."""

    def __init__(self, analyzer: LLMAnalyzer):
        self.analyzer = analyzer
        self.processing = set()

    def on_created(self, event):
        if event.is_directory:
            return

        file_path = Path(event.src_path)
        if not is_supported(file_path) or file_path in self.processing:
            return

        log_event(f"\n📥 New file detected: {file_path.name}")
        log_event(f"   ⏳ Waiting for file transfer to complete...")
        if not wait_for_stable_file(file_path):
            log_event(f"   ⚠️  File vanished or never settled: {file_path.name}", "warning")
            return

        self.processing.add(file_path)
        try:
            process_file_safely(file_path, self.analyzer)
        finally:
            self.processing.discard(file_path)


def run_batch(directory: Path, analyzer: LLMAnalyzer) -> Counter:
    """Process every supported file in a directory once. Stops at the daily quota."""
    files = sorted(p for p in Path(directory).iterdir() if p.is_file() and is_supported(p))
    outcomes = Counter()

    for file_path in tqdm(files, desc="Analyzing", unit="file"):
        status = process_file_safely(file_path, analyzer)
        outcomes[status] += 1
        if status == "quota":
            break

    log_event(f"Batch finished: {dict(outcomes)} | rate status: {analyzer.get_rate_limit_status()}")
    return outcomes


def main(argv: Optional[list] = None):
    """
    Main entry point - start file watcher (or run a one-shot batch).
    """
    parser = argparse.ArgumentParser(description="Chainhoist LLM extraction inbox")
    parser.add_argument("--batch", type=Path, help="process this directory once and exit")
    parser.add_argument("--provider", choices=["claude", "openai", "gemini"], help="override LLM_PROVIDER")
    args = parser.parse_args(argv)

    for directory in (config.QUEUE_DIR, config.ARCHIVE_DIR, config.ERROR_DIR, config.OUTPUT_DIR):
        directory.mkdir(parents=True, exist_ok=True)

    analyzer = LLMAnalyzer(provider=args.provider)

    if args.batch:
        run_batch(args.batch, analyzer)
        return

    log_event("\n" + "=" * 80)
    log_event("🚀 CHAINHOIST EXTRACTION INBOX - STARTED")
    log_event("=" * 80)
    log_event(f"📂 Monitoring: {config.QUEUE_DIR}")
    log_event(f"🔧 Provider: {analyzer.provider.name} ({analyzer.provider.model})")
    log_event(f"   Limits: {config.REQUESTS_PER_MINUTE}/min, {config.REQUESTS_PER_DAY}/day")

    # Files left behind by a quota stop or a previous shutdown
    pending = [p for p in config.QUEUE_DIR.iterdir() if p.is_file() and is_supported(p)]
    if pending:
        log_event(f"📥 {len(pending)} file(s) already queued, processing them first")
        run_batch(config.QUEUE_DIR, analyzer)

    log_event(f"\n⏳ Waiting for files...")
    log_event("=" * 80)

    # Setup watchdog
    event_handler = AnalysisFileHandler(analyzer)
    observer = Observer()
    observer.schedule(event_handler, str(config.QUEUE_DIR), recursive=False)
    observer.start()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        log_event("\n🛑 Shutting down gracefully...")
        observer.stop()

    observer.join()
    log_event("👋 Inbox stopped.")


if __name__ == "__main__":
    main()
