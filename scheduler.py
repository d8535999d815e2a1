from apscheduler.schedulers.background import BackgroundScheduler
from flask import current_app

from extensions import db
from utils.fees import refresh_fee_statuses
from utils.reminders import create_reminders, send_pending_reminders


def daily_job(app):
    """Refresh fee statuses, create reminders of every configured type, then send."""
    with app.app_context():
        refreshed = refresh_fee_statuses()
        db.session.commit()
        created = 0
        for reminder_type in current_app.config.get("REMINDER_TYPES_DAILY", ()):
            created += create_reminders(reminder_type)["count"]
        results = send_pending_reminders()
        current_app.logger.info(
            "Daily reminder job: %d statuses refreshed, %d reminders created, %d sent, %d failed",
            refreshed, created, results["sent"], results["failed"],
        )
        return {"refreshed": refreshed, "created": created, "sent": results["sent"], "failed": results["failed"]}


def start_scheduler(app):
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        daily_job,
        "cron",
        hour=app.config.get("REMINDER_JOB_HOUR", 7),
        args=[app],
        id="daily_fee_reminders",
        replace_existing=True,
    )
    scheduler.start()
    app.logger.info("Reminder scheduler started (daily at %02d:00)", app.config.get("REMINDER_JOB_HOUR", 7))
    return scheduler
