"""Command-line entry point.

Usage::

    python -m usage_anomaly.cli detect
    python -m usage_anomaly.cli ingest events.json
    python -m usage_anomaly.cli incidents --limit 20
"""

import argparse
import json
from datetime import date, datetime
from pathlib import Path

from usage_anomaly.config.settings import get_settings
from usage_anomaly.engine.incidents import IncidentManager
from usage_anomaly.engine.runner import run_scheduled_detection
from usage_anomaly.logging_config import get_logger, setup_logging
from usage_anomaly.models.usage import CycleSpend, UsageEvent
from usage_anomaly.store.sql_store import SqlUsageStore

logger = get_logger(__name__)


def _load_usage(path: Path) -> tuple[list[UsageEvent], list[CycleSpend]]:
    """Read ``{"events": [...], "spend": [...]}`` from a JSON file."""
    data = json.loads(path.read_text())
    events = [
        UsageEvent(
            user_email=row["user_email"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            model=row["model"],
            total_tokens=int(row.get("total_tokens", 0)),
            kind=row.get("kind", "usage_based"),
            cost_cents=float(row.get("cost_cents", 0.0)),
        )
        for row in data.get("events", [])
    ]
    spend = [
        CycleSpend(
            email=row["email"],
            cycle_start=date.fromisoformat(row["cycle_start"]),
            spend_cents=int(row["spend_cents"]),
        )
        for row in data.get("spend", [])
    ]
    return events, spend


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="usage-anomaly")
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("detect", help="Run one detection pass and send alerts")

    ingest = sub.add_parser("ingest", help="Load usage events and spend from a JSON file")
    ingest.add_argument("path", type=Path)

    list_incidents = sub.add_parser("incidents", help="Print recent incidents and metrics")
    list_incidents.add_argument("--limit", type=int, default=20)

    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)
    store = SqlUsageStore.from_url(args.database_url or settings.database_url)

    try:
        if args.command == "detect":
            result = run_scheduled_detection(store, settings=settings)
            print(json.dumps(result, indent=2))
            return 1 if "error" in result["detection"] else 0

        if args.command == "ingest":
            events, spend = _load_usage(args.path)
            added = store.add_usage_events(events)
            upserted = store.upsert_cycle_spend(spend)
            logger.info("usage_ingested", events=added, spend_rows=upserted)
            return 0

        manager = IncidentManager(store)
        payload = {
            "incidents": [i.to_dict() for i in store.list_incidents(limit=args.limit)],
            "metrics": manager.summarize_metrics(),
        }
        print(json.dumps(payload, indent=2))
        return 0
    finally:
        store.dispose()


if __name__ == "__main__":
    raise SystemExit(main())
