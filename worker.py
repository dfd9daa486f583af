#!/usr/bin/env python3
"""
Worker process for running the APScheduler reminder jobs.
This keeps the scheduler running separately from the web process.
"""

from dotenv import load_dotenv
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

# Load environment variables
load_dotenv()

# Import after loading env vars
from app import app, send_open_session_reminder, send_unconfirmed_reminders


def run_unconfirmed_reminders():
    with app.app_context():
        count = send_unconfirmed_reminders()
        app.logger.info(f"Unconfirmed-session reminders sent: {count}")


def run_open_session_reminder():
    with app.app_context():
        count = send_open_session_reminder()
        app.logger.info(f"Open-session reminder sent to {count} volunteers")


def build_scheduler(scheduler=None):
    scheduler = scheduler or BlockingScheduler(timezone=app.config.get("APP_TIMEZONE"))

    # Ask assignees to confirm every morning at 8 AM
    scheduler.add_job(
        run_unconfirmed_reminders,
        CronTrigger(hour=8),
        id='daily-unconfirmed-reminders',
        replace_existing=True
    )

    # List open sessions every Sunday at 10 AM
    scheduler.add_job(
        run_open_session_reminder,
        CronTrigger(day_of_week='sun', hour=10),
        id='weekly-open-sessions',
        replace_existing=True
    )
    return scheduler


def run_scheduler():
    """Run the background scheduler for email reminders."""
    scheduler = build_scheduler()

    print("Starting Lawn Mowing Roster scheduler...")
    print("Confirmation reminders scheduled daily at 8 AM")
    print("Open-session reminders scheduled for Sundays at 10 AM")

    try:
        scheduler.start()
    except KeyboardInterrupt:
        scheduler.shutdown()


if __name__ == '__main__':
    run_scheduler()
