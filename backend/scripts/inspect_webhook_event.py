#!/usr/bin/env python3
"""
Inspect webhook processing logs and dedup records.

Usage:
    # Show every processing attempt of one event
    python inspect_webhook_event.py --event-id evt_123

    # List attempts stuck in 'started' (process crashed mid-event)
    python inspect_webhook_event.py --stuck --older-than 10

    # Free a stuck claim so the next redelivery reprocesses the event
    python inspect_webhook_event.py --event-id evt_123 --release
"""

import argparse
import json
import os
import sys
from datetime import datetime, timedelta, timezone

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from payhook.db.session import SessionLocal
from payhook.models import ProcessedWebhookEvent, WebhookLog
from payhook.models.processed_event import OUTCOME_FAILED, OUTCOME_PROCESSED

STATUS_ICONS = {"started": "⏳", "success": "✅", "failure": "❌", "expired": "⌛"}


def show_event(event_id: str):
    """Print the dedup record and every log row for an event"""
    db = SessionLocal()
    try:
        record = db.get(ProcessedWebhookEvent, event_id)
        logs = (
            db.query(WebhookLog)
            .filter(WebhookLog.provider_event_id == event_id)
            .order_by(WebhookLog.id.asc())
            .all()
        )
        if record is None and not logs:
            print(f"❌ No records for event: {event_id}")
            return False

        if record is not None:
            print(f"Event {event_id} ({record.event_type})")
            print(f"   Outcome:  {record.outcome} after {record.attempts} delivery attempt(s)")
            print(f"   Seen:     {record.seen_at}")
            print(f"   Done:     {record.processed_at or '-'}")
            if record.last_error:
                print(f"   Error:    {record.last_error}")
        else:
            print(f"Event {event_id} (no dedup record)")

        for log in logs:
            icon = STATUS_ICONS.get(log.status, "•")
            print(f"\n{icon} log {log.id} attempt {log.attempt}: {log.status} at {log.created_at}")
            if log.error:
                print(f"   error: {log.error}")
            print("   " + json.dumps(log.detail or {}, indent=2, default=str).replace("\n", "\n   "))
        return True
    finally:
        db.close()


def list_stuck(older_than_minutes: int):
    """List log rows that never reached a terminal status"""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    db = SessionLocal()
    try:
        rows = (
            db.query(WebhookLog)
            .filter(WebhookLog.status == "started", WebhookLog.created_at < cutoff)
            .order_by(WebhookLog.created_at.asc())
            .all()
        )
        if not rows:
            print(f"✅ No attempts stuck in 'started' for more than {older_than_minutes} minutes")
            return True
        print(f"⚠️  {len(rows)} attempt(s) stuck in 'started':")
        for log in rows:
            print(f"   {log.provider_event_id}  {log.event_type}  log {log.id}  since {log.created_at}")
        return True
    finally:
        db.close()


def release_claim(event_id: str):
    """Mark an unfinished claim as failed so a redelivery takes it over"""
    db = SessionLocal()
    try:
        record = db.get(ProcessedWebhookEvent, event_id)
        if record is None:
            print(f"❌ No dedup record for event: {event_id}")
            return False
        if record.outcome == OUTCOME_PROCESSED:
            print(f"❌ Event {event_id} is already processed; nothing to release")
            return False

        record.outcome = OUTCOME_FAILED
        record.lease_expires_at = None
        record.last_error = "released manually"
        db.commit()
        print(f"✅ Released claim on {event_id}; the next delivery will reprocess it")
        return True
    except Exception as e:
        print(f"❌ Error: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(
        description='Inspect webhook processing logs',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python inspect_webhook_event.py --event-id evt_123
  python inspect_webhook_event.py --stuck --older-than 10
  python inspect_webhook_event.py --event-id evt_123 --release
        """
    )
    parser.add_argument('--event-id', help='Provider event ID')
    parser.add_argument('--stuck', action='store_true', help="List attempts stuck in 'started'")
    parser.add_argument('--older-than', type=int, default=5, help='Minutes before a started attempt counts as stuck')
    parser.add_argument('--release', action='store_true', help='Release an unfinished claim (requires --event-id)')

    args = parser.parse_args()

    if args.stuck:
        success = list_stuck(args.older_than)
    elif args.event_id and args.release:
        success = release_claim(args.event_id)
    elif args.event_id:
        success = show_event(args.event_id)
    else:
        parser.print_help()
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
