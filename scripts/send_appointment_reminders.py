#!/usr/bin/env python3
"""
Send reminders for upcoming confirmed appointments and report stale bookings.

Meant to be run by an external scheduler (cron, Cloud Scheduler). It only
reads appointments; unpaid pending bookings are reported, never expired.

Usage:
    python scripts/send_appointment_reminders.py
    python scripts/send_appointment_reminders.py --days-ahead 2 --stale-after-hours 12
    python scripts/send_appointment_reminders.py --dry-run
"""

import argparse
import asyncio
import sys
from datetime import timedelta

import dotenv

dotenv.load_dotenv()

import structlog  # noqa: E402

from app.config import settings  # noqa: E402
from app.core.clock import utc_now  # noqa: E402
from app.core.firebase import initialize_firebase  # noqa: E402
from app.database import AsyncSessionLocal, engine  # noqa: E402
from app.middleware.logging import configure_logging  # noqa: E402
from app.services.appointment_service import AppointmentService  # noqa: E402
from app.services.notification_service import NotificationService  # noqa: E402

logger = structlog.get_logger("send_appointment_reminders")


async def run(days_ahead: int, stale_after_hours: int, dry_run: bool) -> tuple[int, int]:
    """
    Send reminders and report stale pending appointments.

    Args:
        days_ahead: Remind about confirmed appointments dated today through today + days_ahead
        stale_after_hours: Age after which an unpaid pending booking is reported
        dry_run: Log what would be sent without sending

    Returns:
        Tuple of (reminders_sent, stale_pending_count)
    """
    notifier = NotificationService(enabled=not dry_run and settings.notifications_enabled)
    today = utc_now().date()
    sent = 0

    async with AsyncSessionLocal() as db:
        service = AppointmentService(db, notifier=notifier)

        upcoming = await service.list_upcoming_confirmed(today, today + timedelta(days=days_ahead))
        for appointment in upcoming:
            logger.info(
                "appointment_reminder",
                appointment_id=str(appointment["id"]),
                date=appointment["appointment_date"].isoformat(),
                slot_start=appointment["slot_start"].strftime("%H:%M"),
                dry_run=dry_run,
            )
            if not dry_run:
                await service.notify("appointment_reminder", appointment)
                sent += 1

        stale = await service.list_stale_pending(timedelta(hours=stale_after_hours))
        for appointment in stale:
            logger.warning(
                "stale_pending_appointment",
                appointment_id=str(appointment["id"]),
                patient_id=str(appointment["patient_id"]),
                practitioner_id=str(appointment["practitioner_id"]),
                created_at=appointment["created_at"].isoformat(),
            )

    await engine.dispose()
    return sent, len(stale)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Send appointment reminders and report stale pending bookings",
    )
    parser.add_argument(
        "--days-ahead",
        type=int,
        default=1,
        help="Remind about confirmed appointments up to this many days ahead (default: 1)",
    )
    parser.add_argument(
        "--stale-after-hours",
        type=int,
        default=24,
        help="Report pending bookings without advance payment older than this (default: 24)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log reminders without sending them",
    )
    args = parser.parse_args()

    if args.days_ahead < 0 or args.stale_after_hours < 0:
        parser.error("--days-ahead and --stale-after-hours must not be negative")

    configure_logging(log_format="console")

    if not args.dry_run and settings.notifications_enabled:
        try:
            initialize_firebase(settings.firebase_credentials_path, settings.firebase_config_json)
        except (ValueError, OSError) as e:
            print(f"Error: could not initialize Firebase: {e}", file=sys.stderr)
            sys.exit(1)

    sent, stale = asyncio.run(run(args.days_ahead, args.stale_after_hours, args.dry_run))
    print(f"✓ Sent {sent} reminder(s); {stale} stale pending appointment(s) reported")


if __name__ == "__main__":
    main()
