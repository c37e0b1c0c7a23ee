#!/usr/bin/env python3
"""Stitchery webhook reconciliation report.

Lists Square webhook deliveries that need a human: failed ones (outcome
"error") and, optionally, stale or untracked ones.

Usage:
  python scripts/webhook_report.py errors              # Failed deliveries
  python scripts/webhook_report.py all                 # error + stale + untracked
  python scripts/webhook_report.py export [path]       # Same as all, as JSON
"""
import asyncio
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

NEEDS_ATTENTION = ("error", "stale", "untracked")


async def fetch_events(outcomes, limit=200):
    from sqlalchemy import select

    from src.db.engine import async_session
    from src.db.subscription_tables import WebhookEventRow

    async with async_session() as session:
        result = await session.execute(
            select(WebhookEventRow)
            .where(WebhookEventRow.outcome.in_(outcomes))
            .order_by(WebhookEventRow.processed_at.desc())
            .limit(limit)
        )
        return [
            {
                "event_id": row.event_id,
                "event_type": row.event_type,
                "outcome": row.outcome,
                "subscription_id": row.subscription_id,
                "error": row.error,
                "processed_at": row.processed_at.isoformat() if row.processed_at else None,
                "data": row.data,
            }
            for row in result.scalars().all()
        ]


def print_events(events):
    print("=" * 72)
    print("  Square Webhook Reconciliation")
    print("=" * 72)
    if not events:
        print("  ✅ Nothing to reconcile")
    for e in events:
        print(f"  [{e['outcome']:<9}] {e['processed_at'] or '-':<32} {e['event_type']}")
        print(f"              event={e['event_id']} subscription={e['subscription_id'] or '-'}")
        if e["error"]:
            print(f"              error: {e['error']}")
    print("=" * 72)
    print(f"  {len(events)} deliveries")


async def cmd_errors():
    print_events(await fetch_events(("error",)))


async def cmd_all():
    print_events(await fetch_events(NEEDS_ATTENTION))


async def cmd_export():
    events = await fetch_events(NEEDS_ATTENTION)
    out = sys.argv[2] if len(sys.argv) > 2 else "webhook_events.json"
    with open(out, "w") as f:
        json.dump(events, f, indent=2, default=str)
    print(f"✅ Exported {len(events)} deliveries to {out}")


COMMANDS = {
    "errors": cmd_errors,
    "all": cmd_all,
    "export": cmd_export,
}


def main():
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        print(__doc__)
        sys.exit(1)
    asyncio.run(COMMANDS[sys.argv[1]]())


if __name__ == "__main__":
    main()
