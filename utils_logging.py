import csv
import logging
from datetime import datetime
from config import LOG_FILE, CSV_LOG_FILE, PRICING

# Setup standard logging
logging.basicConfig(
    filename=LOG_FILE,
    level=logging.DEBUG,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

def log_event(msg: str, level: str = "info"):
    """Logs to the main text log file and prints to console (debug stays in the file)."""
    if level == "debug":
        logging.debug(msg)
        return

    print(f"[{level.upper()}] {msg}")  # Print to console

    if level == "info":
        logging.info(msg)
    elif level == "error":
        logging.error(msg)
    elif level == "warning":
        logging.warning(msg)

def estimate_cost(model: str, in_tok: int, out_tok: int) -> float:
    price_in = PRICING.get(model, {}).get("input", 0)
    price_out = PRICING.get(model, {}).get("output", 0)
    return ((in_tok / 1_000_000) * price_in) + ((out_tok / 1_000_000) * price_out)

def log_token_usage(task: str, model: str, in_tok: int, out_tok: int):
    """Calculates cost and logs to CSV for cost tracking."""
    cost = estimate_cost(model, in_tok, out_tok)

    # Check if header needs writing
    file_exists = CSV_LOG_FILE.exists()

    try:
        with open(CSV_LOG_FILE, mode='a', newline='') as f:
            writer = csv.writer(f)
            if not file_exists:
                writer.writerow(["Timestamp", "Task", "Model", "Input_Tokens", "Output_Tokens", "Cost_USD"])

            writer.writerow([
                datetime.now().isoformat(),
                task,
                model,
                in_tok,
                out_tok,
                f"${cost:.6f}"
            ])
    except OSError as e:
        log_event(f"Could not write token ledger {CSV_LOG_FILE}: {e}", "warning")

    log_event(f"   💰 Cost: ${cost:.4f} ({in_tok:,} in, {out_tok:,} out)")
