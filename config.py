import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _truthy(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on", "y"}


def _csv(val: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in val.split(",") if part.strip())


class Config:
    # --------------------------
    # Flask
    # --------------------------
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    PROPAGATE_EXCEPTIONS = False

    # --------------------------
    # Record store (SQLAlchemy)
    # --------------------------
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "SQLALCHEMY_DATABASE_URI",
        f"sqlite:///{Path.cwd() / 'school.db'}",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --------------------------
    # Logging
    # --------------------------
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_DIR = os.environ.get("LOG_DIR", "logs")

    # --------------------------
    # Email (Flask-Mail SMTP)
    # --------------------------
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "")
    try:
        MAIL_PORT = int(os.environ.get("MAIL_PORT", "587"))
    except ValueError:
        MAIL_PORT = 587
    MAIL_USE_TLS = _truthy(os.environ.get("MAIL_USE_TLS"), default=True)
    MAIL_USE_SSL = _truthy(os.environ.get("MAIL_USE_SSL"))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME", "")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD", "")
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", "") or "noreply@school.edu"

    # --------------------------
    # Fee reminders
    # --------------------------
    REMINDER_DAYS_BEFORE = int(os.environ.get("REMINDER_DAYS_BEFORE", "7"))
    REMINDER_SEND_BATCH = int(os.environ.get("REMINDER_SEND_BATCH", "50"))
    REMINDER_FINAL_NOTICE_DAYS = int(os.environ.get("REMINDER_FINAL_NOTICE_DAYS", "30"))
    REMINDER_TYPES_DAILY = _csv(
        os.environ.get("REMINDER_TYPES_DAILY", "before_due,on_due,after_due,final_notice")
    )
    CURRENCY = os.environ.get("CURRENCY", "KES")
    SCHOOL_NAME = os.environ.get("SCHOOL_NAME", "School Administration")

    # --------------------------
    # Promotion defaults
    # --------------------------
    PROMOTION_MIN_ATTENDANCE = float(os.environ.get("PROMOTION_MIN_ATTENDANCE", "75"))
    PROMOTION_MIN_GRADE = float(os.environ.get("PROMOTION_MIN_GRADE", "65"))
    PROMOTION_REQUIRED_EXAMS = _csv(os.environ.get("PROMOTION_REQUIRED_EXAMS", "midterm,final"))

    # --------------------------
    # Attendance
    # --------------------------
    # absent | present | partial
    ATTENDANCE_LATE_POLICY = os.environ.get("ATTENDANCE_LATE_POLICY", "absent")
    ATTENDANCE_LATE_WEIGHT = float(os.environ.get("ATTENDANCE_LATE_WEIGHT", "0.5"))
    ATTENDANCE_DAILY_MAX_DAYS = int(os.environ.get("ATTENDANCE_DAILY_MAX_DAYS", "30"))

    # --------------------------
    # Finance / calendar
    # --------------------------
    FINANCE_REVENUE_MONTHS = int(os.environ.get("FINANCE_REVENUE_MONTHS", "6"))
    ACADEMIC_YEAR_START_MONTH = int(os.environ.get("ACADEMIC_YEAR_START_MONTH", "9"))
    DEFAULT_ACADEMIC_YEAR = os.environ.get("DEFAULT_ACADEMIC_YEAR", "2024-25")
    DEFAULT_TERM = os.environ.get("DEFAULT_TERM", "Third Term")

    # --------------------------
    # Scheduler / rate limiting
    # --------------------------
    ENABLE_SCHEDULER = _truthy(os.environ.get("ENABLE_SCHEDULER"))
    REMINDER_JOB_HOUR = int(os.environ.get("REMINDER_JOB_HOUR", "7"))
    RATELIMIT_ENABLED = not _truthy(os.environ.get("DISABLE_RATE_LIMITING"))
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "memory://")


class DevConfig(Config):
    DEBUG = True


class ProdConfig(Config):
    DEBUG = False
    TESTING = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    MAIL_SUPPRESS_SEND = True
    RATELIMIT_ENABLED = False
    ENABLE_SCHEDULER = False
    LOG_LEVEL = "WARNING"
