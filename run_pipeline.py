"""Stock event pipeline entry point.

Usage:
    python run_pipeline.py [SYMBOL ...]

Loads config.yaml, builds the providers, runs ``compute_events`` for the
given symbols (or ``symbols`` from config), writes
``<output_dir>/events_<SYMBOL>.json`` and reports a one-line summary per
symbol to stdout and the pipeline log.
"""

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()  # must precede stock_events imports so env vars are available at module load

from stock_events.core.config import DEFAULT_CONFIG_PATH, load_config  # noqa: E402
from stock_events.core.errors import StockEventsError, ValidationError  # noqa: E402
from stock_events.core.logger import logger  # noqa: E402
from stock_events.pipeline.engine import EventsPipeline  # noqa: E402


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Detect and explain abnormal stock moves.")
    parser.add_argument("symbols", nargs="*", help="Tickers to process (default: symbols from config)")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to config.yaml")
    parser.add_argument("--timeout", type=float, default=None, help="Per-symbol time budget in seconds")
    return parser.parse_args(argv)


def write_result(output_dir: str, symbol: str, payload: dict) -> str:
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, f"events_{symbol}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    return path


def main(argv: Optional[List[str]] = None) -> int:
    """Run the pipeline. Returns 0 on success, 1 on failure."""
    args = parse_args(argv)
    try:
        config = load_config(args.config)
        pipeline = EventsPipeline.from_config(config)
    except (FileNotFoundError, StockEventsError) as exc:
        logger.error(f"run_pipeline: failed to set up pipeline: {exc}")
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    output_dir = config.get("output_dir", "output")
    symbols = args.symbols or config.get("symbols", [])
    if not symbols:
        print("ERROR: no symbols given and none configured", file=sys.stderr)
        return 1

    exit_code = 0
    for symbol in symbols:
        try:
            result = pipeline.compute_events(symbol, timeout_seconds=args.timeout)
        except ValidationError as exc:
            logger.error(f"run_pipeline: {exc}")
            print(f"ERROR: {exc}", file=sys.stderr)
            exit_code = 1
            continue

        symbol = symbol.strip().upper()
        payload = {
            "symbol": symbol,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            **result.to_dict(),
        }
        path = write_result(output_dir, symbol, payload)
        status = "STALE" if result.stale else "OK"
        note = f" ({result.error})" if result.error else ""
        print(f"{status}: {symbol} {len(result.events)} events from {result.source} → {path}{note}")
        logger.info(f"run_pipeline: {symbol} → {path} [{result.source}, {len(result.events)} events]")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
