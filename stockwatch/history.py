"""Transition journal: append-only JSON log.

Records brand stock transitions (alerts) to history.json. Routine checks
with no transition are not recorded.

Schema (list of events, newest last):
    [
        {
            "timestamp": "2026-02-18T15:30:00+00:00",
            "brand": "Acme",
            "state": "OUT_OF_STOCK",
            "total_products": 3,
            "in_stock_products": 0,
            "out_of_stock_products": 3,
            "notified": true
        }
    ]
"""

import logging
from datetime import datetime, timezone

from . import config
from .file_lock import locked_json, read_json

log = logging.getLogger(__name__)


def record_transition(brand: str, state: str, notified: bool, **extra) -> None:
    """Append one transition event to history.json, trimming to the cap."""
    event = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "brand": brand,
        "state": state,
        "notified": notified,
        **{k: v for k, v in extra.items() if v is not None},
    }
    with locked_json(config.HISTORY_FILE, default_factory=list) as history:
        history.append(event)
        if len(history) > config.MAX_HISTORY_ENTRIES:
            del history[:-config.MAX_HISTORY_ENTRIES]
    log.info(f"Recorded history: {brand} -> {state}" + ("" if notified else " (alert not delivered)"))


def load_history(brand: str | None = None, limit: int = 200) -> list[dict]:
    """Load transition events, newest first.

    Args:
        brand: Filter to a specific brand (or None for all).
        limit: Max events to return.
    """
    history = read_json(config.HISTORY_FILE, default_factory=list)

    if brand:
        history = [e for e in history if e.get("brand") == brand]

    return list(reversed(history[-limit:]))
