"""Fee reminder generation, delivery and acknowledgement."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable

from flask import current_app
from markupsafe import escape
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import ACTIVE_REMINDER_STATUSES, FEE_TYPES, REMINDER_TYPES, UNPAID_FEE_STATUSES, Fee, FeeReminder
from utils import Identity
from utils.access import student_for_identity
from utils.db_helpers import aggregation_guard, get_or_404
from utils.errors import (
    DeliveryError,
    DuplicateReminderError,
    ForbiddenError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from utils.mailer import send_email

ACTIVE_STATUSES = ACTIVE_REMINDER_STATUSES
SENDABLE_STATUSES = ("pending", "failed")
STATS_PERIODS = {"week": 7, "month": 30, "year": 365}

Sender = Callable[[str, str, str], dict]

REMINDER_TEMPLATES = {
    "before_due": (
        "Dear {name},\n\n"
        "This is a friendly reminder that your {fee_type} fee of {currency} {amount} is due on {due_date}. "
        "Please ensure payment is made before the due date to avoid late fees.\n\n"
        "Thank you for your attention to this matter.\n\n"
        "Best regards,\n{institution}"
    ),
    "on_due": (
        "Dear {name},\n\n"
        "Your {fee_type} fee of {currency} {amount} is due today ({due_date}). "
        "Please make your payment as soon as possible to avoid late fees.\n\n"
        "If you have already made the payment, please disregard this message.\n\n"
        "Best regards,\n{institution}"
    ),
    "after_due": (
        "Dear {name},\n\n"
        "Your {fee_type} fee of {currency} {amount} was due on {due_date} and is now {days} day(s) overdue. "
        "Please make your payment immediately to avoid additional late fees.\n\n"
        "If you have already made the payment, please contact the finance office.\n\n"
        "Best regards,\n{institution}"
    ),
    "final_notice": (
        "FINAL NOTICE\n\n"
        "Dear {name},\n\n"
        "This is a final notice regarding your overdue {fee_type} fee of {currency} {amount}, "
        "which was due on {due_date} ({days} days ago).\n\n"
        "Immediate payment is required to avoid further action. Please contact the finance office immediately.\n\n"
        "Best regards,\n{institution}"
    ),
}

REMINDER_SUBJECTS = {
    "before_due": "Upcoming {fee_type} fee due {due_date}",
    "on_due": "{fee_type} fee due today",
    "after_due": "Overdue {fee_type} fee",
    "final_notice": "FINAL NOTICE: overdue {fee_type} fee",
}


class _SafeDict(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def _check_type(reminder_type: str) -> None:
    if reminder_type not in REMINDER_TYPES:
        raise ValidationError(f"reminderType must be one of {', '.join(REMINDER_TYPES)}", field="reminderType")


def _fee_type_list(fee_types: Iterable[str] | None) -> list[str] | None:
    if fee_types is None:
        return None
    if isinstance(fee_types, (str, bytes)) or not isinstance(fee_types, (list, tuple, set, frozenset)):
        raise ValidationError("feeTypes must be a list of fee types", field="feeTypes")
    unknown = [t for t in fee_types if t not in FEE_TYPES]
    if unknown:
        raise ValidationError(
            f"feeTypes must be drawn from {', '.join(FEE_TYPES)}", field="feeTypes", details={"unknown": unknown}
        )
    return list(fee_types)


def reminder_window(
    reminder_type: str,
    days_before: int = 7,
    today: date | None = None,
    final_notice_days: int = 30,
) -> tuple[date | None, date]:
    """Inclusive ``(earliest, latest)`` due dates matched by ``reminder_type``.

    ``earliest`` is ``None`` for the open-ended final notice window.
    """
    _check_type(reminder_type)
    today = today or date.today()
    try:
        days = int(days_before)
    except (TypeError, ValueError):
        raise ValidationError("daysBefore must be an integer", field="daysBefore")
    if days < 0:
        raise ValidationError("daysBefore must not be negative", field="daysBefore")

    if reminder_type == "before_due":
        target = today + timedelta(days=days)
        return target, target
    if reminder_type == "on_due":
        return today, today
    if reminder_type == "after_due":
        target = today - timedelta(days=days)
        return target, target
    return None, today - timedelta(days=final_notice_days)


def _days_offset(due: date, today: date) -> int:
    """Days from ``today`` until ``due``; negative once overdue."""
    return (due - today).days


def build_reminder_message(
    reminder_type: str,
    student_name: str,
    fee_type: str,
    amount: float,
    due_date: date,
    days_before: int = 0,
) -> str:
    _check_type(reminder_type)
    cfg = current_app.config
    data = _SafeDict(
        name=student_name,
        fee_type=(fee_type or "").capitalize(),
        amount=f"{float(amount or 0):,.2f}",
        currency=cfg.get("CURRENCY", "KES"),
        due_date=due_date.strftime("%d %b %Y"),
        days=abs(int(days_before)),
        institution=cfg.get("SCHOOL_NAME", "School Administration"),
    )
    return REMINDER_TEMPLATES[reminder_type].format_map(data)


def _subject(reminder: FeeReminder) -> str:
    return REMINDER_SUBJECTS.get(reminder.reminder_type, "Fee reminder").format_map(
        _SafeDict(fee_type=(reminder.fee_type or "").capitalize(), due_date=reminder.due_date.strftime("%d %b %Y"))
    )


def _html(message: str) -> str:
    paragraphs = [p for p in message.split("\n\n") if p.strip()]
    return "".join(f"<p>{escape(p)}</p>".replace("\n", "<br>") for p in paragraphs)


def _new_reminder(fee: Fee, reminder_type: str, today: date, now: datetime) -> FeeReminder:
    active = FeeReminder.query.filter(
        FeeReminder.fee_id == fee.id,
        FeeReminder.reminder_type == reminder_type,
        FeeReminder.status.in_(ACTIVE_STATUSES),
    ).first()
    if active is not None:
        raise DuplicateReminderError(f"Active {reminder_type} reminder {active.id} exists for fee {fee.id}")

    student = fee.student
    if student is None:
        raise NotFoundError("Student not found")
    amount = max(0.0, float(fee.amount or 0) - float(fee.paid_amount or 0))
    days_before = _days_offset(fee.due_date, today)
    reminder = FeeReminder(
        student_id=student.id,
        student_name=student.name,
        student_email=student.email,
        fee_id=fee.id,
        fee_type=fee.type,
        amount=amount,
        due_date=fee.due_date,
        reminder_type=reminder_type,
        reminder_date=now,
        days_before=days_before,
        message=build_reminder_message(reminder_type, student.name, fee.type, amount, fee.due_date, days_before),
        status="pending",
        parent_name=student.guardian_name,
        parent_email=student.guardian_email,
        parent_phone=student.guardian_phone,
    )
    db.session.add(reminder)
    try:
        db.session.flush()
    except IntegrityError:
        # A concurrent run inserted the active reminder after our lookup.
        raise DuplicateReminderError(f"Active {reminder_type} reminder exists for fee {fee.id}")
    return reminder


def create_reminders(
    reminder_type: str,
    days_before: int | None = None,
    student_ids: Iterable[int] | None = None,
    fee_types: Iterable[str] | None = None,
    today: date | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Create pending reminders for unpaid fees in the type's due-date window.

    Fees that already hold an active reminder of the same type are skipped
    and left out of ``count``.
    """
    cfg = current_app.config
    today = today or date.today()
    now = now or datetime.utcnow()
    if days_before is None:
        days_before = cfg.get("REMINDER_DAYS_BEFORE", 7)
    fee_types = _fee_type_list(fee_types)
    earliest, latest = reminder_window(
        reminder_type, days_before, today, cfg.get("REMINDER_FINAL_NOTICE_DAYS", 30)
    )

    query = Fee.query.filter(Fee.status.in_(UNPAID_FEE_STATUSES), Fee.due_date <= latest)
    if earliest is not None:
        query = query.filter(Fee.due_date >= earliest)
    if student_ids:
        query = query.filter(Fee.student_id.in_([int(s) for s in student_ids]))
    if fee_types:
        query = query.filter(Fee.type.in_(fee_types))
    candidates = [(f.id, f.student_id) for f in query.order_by(Fee.due_date, Fee.id).all()]

    created: list[FeeReminder] = []
    skipped = 0
    errors: list[dict[str, Any]] = []
    for fee_id, student_id in candidates:
        try:
            created.append(_new_reminder(db.session.get(Fee, fee_id), reminder_type, today, now))
            db.session.commit()
        except DuplicateReminderError:
            db.session.rollback()
            skipped += 1
        except (ServiceError, SQLAlchemyError) as exc:
            db.session.rollback()
            reason = getattr(exc, "message", None) or str(exc)
            current_app.logger.warning("Could not create %s reminder for fee %s: %s", reminder_type, fee_id, reason)
            errors.append({"feeId": fee_id, "studentId": student_id, "reason": reason})

    current_app.logger.info(
        "Created %d %s reminders (%d already active, %d failed)", len(created), reminder_type, skipped, len(errors)
    )
    return {
        "count": len(created),
        "reminders": [r.to_dict() for r in created],
        "skipped": skipped,
        "errors": errors,
    }


def send_reminder(reminder: FeeReminder, sender: Sender | None = None, now: datetime | None = None) -> bool:
    """Deliver one reminder; ``pending`` and ``failed`` reminders may be sent.

    Delivery failures are written onto the reminder, never raised.
    """
    if reminder.status not in SENDABLE_STATUSES:
        raise ValidationError(
            f"Reminder is already {reminder.status}", details={"currentStatus": reminder.status}
        )
    sender = sender or send_email
    now = now or datetime.utcnow()
    try:
        result = sender(reminder.student_email, _subject(reminder), _html(reminder.message)) or {}
        if not result.get("success"):
            raise DeliveryError(result.get("error") or "Delivery failed")
    except DeliveryError as exc:
        reminder.status = "failed"
        reminder.error_message = exc.message
        current_app.logger.warning("Reminder %s delivery failed: %s", reminder.id, exc.message)
    else:
        reminder.status = "sent"
        reminder.sent_date = now
        reminder.error_message = None
    reminder.attempts = (reminder.attempts or 0) + 1
    reminder.last_attempt = now
    db.session.commit()
    return reminder.status == "sent"


def send_pending_reminders(
    reminder_ids: Iterable[int] | None = None,
    limit: int | None = None,
    sender: Sender | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Send a batch of reminders.

    Without ids the oldest pending reminders go out, ``limit`` at a time.
    Explicit ids may include failed reminders for a retry; ids that are
    missing or in any other state count as skipped.
    """
    limit = limit or current_app.config.get("REMINDER_SEND_BATCH", 50)
    results: dict[str, Any] = {"sent": 0, "failed": 0, "skipped": 0, "errors": []}
    if reminder_ids:
        wanted = [int(r) for r in reminder_ids]
        batch = FeeReminder.query.filter(
            FeeReminder.id.in_(wanted), FeeReminder.status.in_(SENDABLE_STATUSES)
        ).order_by(FeeReminder.id).all()
        results["skipped"] = len(set(wanted)) - len(batch)
    else:
        batch = (
            FeeReminder.query.filter(FeeReminder.status == "pending")
            .order_by(FeeReminder.reminder_date, FeeReminder.id)
            .limit(limit)
            .all()
        )
    selected = [(r.id, r.student_name) for r in batch]

    for reminder_id, student_name in selected:
        try:
            reminder = db.session.get(FeeReminder, reminder_id)
            if send_reminder(reminder, sender, now):
                results["sent"] += 1
            else:
                results["failed"] += 1
                results["errors"].append(
                    {"reminderId": reminder_id, "studentName": student_name, "error": reminder.error_message}
                )
        except (ServiceError, SQLAlchemyError) as exc:
            db.session.rollback()
            results["failed"] += 1
            results["errors"].append(
                {"reminderId": reminder_id, "studentName": student_name, "error": getattr(exc, "message", str(exc))}
            )
    current_app.logger.info(
        "Reminder send batch: %d sent, %d failed, %d skipped", results["sent"], results["failed"], results["skipped"]
    )
    return results


def acknowledge_reminder(reminder_id, identity: Identity, now: datetime | None = None) -> FeeReminder:
    """``sent`` -> ``acknowledged``; staff or the reminded student only."""
    reminder = get_or_404(FeeReminder, reminder_id, "Fee reminder")
    if not identity.is_staff:
        own = student_for_identity(identity) if identity.role == "student" else None
        if own is None or own.id != reminder.student_id:
            raise ForbiddenError("Access denied")
    if reminder.status != "sent":
        raise ValidationError(
            "Only sent reminders can be acknowledged", details={"currentStatus": reminder.status}
        )
    reminder.status = "acknowledged"
    reminder.acknowledged_date = now or datetime.utcnow()
    db.session.commit()
    return reminder


def reminder_stats(period: str = "month", now: datetime | None = None) -> dict[str, Any]:
    if period not in STATS_PERIODS:
        raise ValidationError(f"period must be one of {', '.join(STATS_PERIODS)}", field="period")
    now = now or datetime.utcnow()
    since = now - timedelta(days=STATS_PERIODS[period])
    with aggregation_guard("reminder statistics"):
        scope = FeeReminder.created_at >= since
        by_status = (
            db.session.query(FeeReminder.status, func.count(FeeReminder.id), func.sum(FeeReminder.amount))
            .filter(scope)
            .group_by(FeeReminder.status)
            .all()
        )
        by_type = (
            db.session.query(FeeReminder.reminder_type, func.count(FeeReminder.id))
            .filter(scope)
            .group_by(FeeReminder.reminder_type)
            .all()
        )
    total = sum(int(count) for _, count, _ in by_status)
    counts = {status: int(count) for status, count, _ in by_status}
    return {
        "period": period,
        "statusStats": [
            {"status": status, "count": int(count), "totalAmount": round(float(amount or 0), 2)}
            for status, count, amount in by_status
        ],
        "typeStats": {rtype: int(count) for rtype, count in by_type},
        "overall": {
            "totalReminders": total,
            "sent": counts.get("sent", 0) + counts.get("acknowledged", 0),
            "pending": counts.get("pending", 0),
            "failed": counts.get("failed", 0),
            "acknowledged": counts.get("acknowledged", 0),
            "totalAmount": round(sum(float(a or 0) for _, _, a in by_status), 2),
        },
    }
