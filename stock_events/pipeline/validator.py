"""Output validator: sanity checks on an ``events_<SYMBOL>.json`` file.

Checks:
  1. Top-level shape (events, stale, error, source) and every event parses
  2. Event ids are unique
  3. At most 5 news articles per event
  4. impact_score and z_score are finite numbers
  5. Ordering: impact score descending, or newest first for news-only output

Usage:
    python -m stock_events.pipeline.validator output/events_AAPL.json
"""

import json
import math
import sys
from typing import Any, Dict, List, Optional, Tuple

from stock_events.events.correlator import MAX_ARTICLES
from stock_events.models.datatypes import StockEvent

_REQUIRED_KEYS = ["events", "stale", "error", "source"]


def validate_payload(payload: Any) -> Tuple[bool, List[str]]:
    """Run all checks against a decoded events document.

    Returns:
        Tuple of ``(passed: bool, messages: list[str])``.
        ``messages`` contains PASS/FAIL lines for each check.
    """
    if not isinstance(payload, dict):
        return False, ["FAIL  top level is not a JSON object"]
    missing = [k for k in _REQUIRED_KEYS if k not in payload]
    if missing:
        return False, [f"FAIL  missing keys: {missing}"]
    if not isinstance(payload["events"], list):
        return False, ["FAIL  'events' is not a list"]

    messages: List[str] = []
    passed = True

    # ── check 1: every event parses ───────────────────────────────────────────
    events: List[StockEvent] = []
    bad_events = []
    for i, raw in enumerate(payload["events"]):
        try:
            events.append(StockEvent.from_dict(raw))
        except (KeyError, TypeError, ValueError) as exc:
            bad_events.append((i, str(exc)))
    if not bad_events:
        messages.append(f"PASS  {len(events)} events well-formed")
    else:
        messages.append(f"FAIL  {len(bad_events)} malformed events: {bad_events[:3]}")
        return False, messages

    # ── check 2: unique ids ───────────────────────────────────────────────────
    ids = [e.id for e in events]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if not duplicates:
        messages.append("PASS  event ids are unique")
    else:
        messages.append(f"FAIL  duplicate event ids: {duplicates}")
        passed = False

    # ── check 3: article cap ─────────────────────────────────────────────────
    crowded = [e.id for e in events if len(e.news_articles) > MAX_ARTICLES]
    if not crowded:
        messages.append(f"PASS  ≤{MAX_ARTICLES} articles per event")
    else:
        messages.append(f"FAIL  more than {MAX_ARTICLES} articles on: {crowded}")
        passed = False

    # ── check 4: finite scores ───────────────────────────────────────────────
    not_finite = [e.id for e in events if not (math.isfinite(e.impact_score) and math.isfinite(e.z_score))]
    if not not_finite:
        messages.append("PASS  impact_score and z_score finite")
    else:
        messages.append(f"FAIL  non-finite scores on: {not_finite}")
        passed = False

    # ── check 5: ordering ────────────────────────────────────────────────────
    if payload["source"] == "news_only":
        keys = [e.date for e in events]
        label = "dates newest first"
    else:
        keys = [e.impact_score for e in events]
        label = "impact_score descending"
    if all(a >= b for a, b in zip(keys, keys[1:])):
        messages.append(f"PASS  {label}")
    else:
        messages.append(f"FAIL  events are not ordered by {label}")
        passed = False

    return passed, messages


def validate(json_path: str) -> Tuple[bool, List[str]]:
    """Load ``json_path`` and run :func:`validate_payload` on it."""
    try:
        with open(json_path, encoding="utf-8") as f:
            payload: Dict[str, Any] = json.load(f)
    except FileNotFoundError:
        return False, [f"FAIL  file not found: {json_path}"]
    except (OSError, json.JSONDecodeError) as exc:
        return False, [f"FAIL  could not read JSON: {exc}"]
    return validate_payload(payload)


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("Usage: python -m stock_events.pipeline.validator <events.json> [...]")
        return 1
    all_passed = True
    for path in argv:
        print(path)
        passed, messages = validate(path)
        for msg in messages:
            print(f"  {msg}")
        all_passed = all_passed and passed
    if all_passed:
        print("\nVALIDATION PASSED ✓")
        return 0
    print("\nVALIDATION FAILED ✗")
    return 1


if __name__ == "__main__":
    sys.exit(main())
