from datetime import date, datetime, timedelta

import pytest

from extensions import db
from models import Fee
from utils.errors import ValidationError
from utils.fees import build_fee, derive_fee_status, record_payment, refresh_fee_statuses, total_due

NOW = datetime(2024, 10, 15, 9, 30)
TODAY = NOW.date()


def test_fee_status_examples():
    due = TODAY + timedelta(days=5)
    assert derive_fee_status(100, 100, due, NOW) == "paid"
    assert derive_fee_status(100, 50, due, NOW) == "partial"
    assert derive_fee_status(100, 0, due, NOW) == "pending"
    assert derive_fee_status(100, 0, TODAY - timedelta(days=1), NOW) == "overdue"


def test_fee_is_not_overdue_on_its_due_day():
    assert derive_fee_status(100, 0, TODAY, NOW) == "pending"


def test_fee_status_is_idempotent():
    args = (250, 0, TODAY - timedelta(days=3), NOW)
    assert derive_fee_status(*args) == derive_fee_status(*args) == "overdue"


def test_discount_and_late_fee_shape_the_total_due():
    assert total_due(100, discount=20, late_fee=5) == 85
    assert derive_fee_status(100, 85, TODAY, NOW, discount=20, late_fee=5) == "paid"
    assert derive_fee_status(100, 85, TODAY, NOW, late_fee=5) == "partial"


def test_payments_accumulate_to_paid(app, make_student):
    student = make_student()
    fee = build_fee(
        {"studentId": student.id, "type": "tuition", "amount": 300, "dueDate": "2024-10-30", "term": "First Term"},
        "2024-25",
        NOW,
    )
    db.session.add(fee)
    record_payment(fee, 100, "cash", now=NOW)
    assert fee.status == "partial"
    record_payment(fee, 120, "card", now=NOW)
    record_payment(fee, 80, "bank_transfer", now=NOW + timedelta(days=1))
    db.session.commit()

    assert fee.status == "paid"
    assert fee.paid_amount == 300
    assert len(fee.payments) == 3
    assert fee.paid_date == NOW + timedelta(days=1)


@pytest.mark.parametrize("amount", [0, -50, "abc"])
def test_payment_amount_must_be_positive(app, make_student, make_fee, amount):
    fee = make_fee(make_student(), amount=100)
    with pytest.raises(ValidationError):
        record_payment(fee, amount, "cash")
    assert fee.paid_amount == 0


def test_payment_cannot_exceed_remaining_balance(app, make_student, make_fee):
    fee = make_fee(make_student(), amount=100, paid_amount=60)
    with pytest.raises(ValidationError):
        record_payment(fee, 50, "cash")


def test_payment_method_is_validated(app, make_student, make_fee):
    fee = make_fee(make_student(), amount=100)
    with pytest.raises(ValidationError) as excinfo:
        record_payment(fee, 10, "bitcoin")
    assert excinfo.value.field == "paymentMethod"


def test_refresh_moves_past_due_fees_to_overdue(app, make_student, make_fee):
    student = make_student()
    late = make_fee(student, due_date=date.today() + timedelta(days=2))
    make_fee(student, due_date=date.today() + timedelta(days=10))
    assert late.status == "pending"

    changed = refresh_fee_statuses(datetime.now() + timedelta(days=3))
    db.session.commit()

    assert changed == 1
    assert db.session.get(Fee, late.id).status == "overdue"
