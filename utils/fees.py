from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from models import FEE_TYPES, PAYMENT_METHODS, UNPAID_FEE_STATUSES, Fee, FeePayment
from utils.errors import ValidationError, require_fields

# Payments below this are treated as rounding noise when comparing balances.
_EPSILON = 0.005


def total_due(amount: float, discount: float = 0, late_fee: float = 0) -> float:
    return max(0.0, float(amount or 0) + float(late_fee or 0) - float(discount or 0))


def outstanding(fee: Fee) -> float:
    return max(0.0, total_due(fee.amount, fee.discount, fee.late_fee) - float(fee.paid_amount or 0))


def derive_fee_status(
    amount: float,
    paid_amount: float,
    due_date: date,
    now: datetime | None = None,
    discount: float = 0,
    late_fee: float = 0,
) -> str:
    """Fee status as a pure function of the money and the clock.

    paid >= total due -> paid; some paid -> partial; nothing paid and the due
    day has passed -> overdue; otherwise pending. Without ``now`` the local
    clock is read, the same one that places reminder windows.
    """
    now = now or datetime.now()
    due = total_due(amount, discount, late_fee)
    paid = float(paid_amount or 0)
    if paid + _EPSILON >= due:
        return "paid"
    if paid > 0:
        return "partial"
    if now.date() > due_date:
        return "overdue"
    return "pending"


def apply_fee_status(fee: Fee, now: datetime | None = None) -> Fee:
    fee.status = derive_fee_status(fee.amount, fee.paid_amount, fee.due_date, now, fee.discount, fee.late_fee)
    return fee


def generate_invoice_number(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"INV-{now:%Y%m}-{uuid.uuid4().hex[:8].upper()}"


def _money(payload: dict[str, Any], key: str, default: float = 0.0) -> float:
    raw = payload.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number", field=key)
    if value < 0:
        raise ValidationError(f"{key} must not be negative", field=key)
    return value


def _date(payload: dict[str, Any], key: str) -> date:
    raw = payload.get(key)
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw)[:10])
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an ISO date (YYYY-MM-DD)", field=key)


def apply_fee_fields(fee: Fee, payload: dict[str, Any], now: datetime | None = None) -> Fee:
    if "type" in payload:
        if payload["type"] not in FEE_TYPES:
            raise ValidationError(f"type must be one of {', '.join(FEE_TYPES)}", field="type")
        fee.type = payload["type"]
    for key, attr in (("amount", "amount"), ("discount", "discount"), ("lateFee", "late_fee")):
        if key in payload:
            setattr(fee, attr, _money(payload, key))
    if "dueDate" in payload:
        fee.due_date = _date(payload, "dueDate")
    for key, attr in (("term", "term"), ("academicYear", "academic_year"), ("description", "description")):
        if key in payload:
            setattr(fee, attr, payload[key])
    return apply_fee_status(fee, now)


def build_fee(payload: dict[str, Any], default_year: str, now: datetime | None = None) -> Fee:
    require_fields(payload, "studentId", "type", "amount", "dueDate", "term")
    try:
        student_id = int(payload["studentId"])
    except (TypeError, ValueError):
        raise ValidationError("studentId must be an integer", field="studentId")
    fee = Fee(
        student_id=student_id,
        paid_amount=0.0,
        discount=0.0,
        late_fee=0.0,
        academic_year=payload.get("academicYear") or default_year,
        invoice_number=generate_invoice_number(now),
    )
    return apply_fee_fields(fee, payload, now)


def record_payment(
    fee: Fee,
    amount: Any,
    method: str,
    transaction_id: str | None = None,
    received_by: str | None = None,
    now: datetime | None = None,
) -> FeePayment:
    """Append a payment to the fee's history and re-derive its status.

    Payments only ever increase ``paid_amount``; refunds and negative
    adjustments are rejected.
    """
    now = now or datetime.now()
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("amount must be a number", field="amount")
    if value <= 0:
        raise ValidationError("amount must be greater than zero", field="amount")
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"paymentMethod must be one of {', '.join(PAYMENT_METHODS)}", field="paymentMethod")
    remaining = outstanding(fee)
    if value > remaining + _EPSILON:
        raise ValidationError("Payment amount exceeds remaining balance", field="amount")

    payment = FeePayment(
        amount=value,
        date=now,
        method=method,
        transaction_id=transaction_id,
        received_by=received_by,
    )
    fee.payments.append(payment)
    fee.paid_amount = round(float(fee.paid_amount or 0) + value, 2)
    fee.payment_method = method
    fee.transaction_id = transaction_id
    if fee.paid_date is None or fee.paid_amount + _EPSILON >= total_due(fee.amount, fee.discount, fee.late_fee):
        fee.paid_date = now
    apply_fee_status(fee, now)
    return payment


def refresh_fee_statuses(now: datetime | None = None) -> int:
    """Re-derive the status of every unpaid fee; the caller commits.

    Moves pending fees to overdue once their due day has passed.
    """
    changed = 0
    for fee in Fee.query.filter(Fee.status.in_(UNPAID_FEE_STATUSES)).all():
        before = fee.status
        if apply_fee_status(fee, now).status != before:
            changed += 1
    return changed
