from datetime import date, datetime

from extensions import db

STUDENT_STATUSES = ("active", "inactive", "graduated", "transferred")
ROLES = ("admin", "teacher", "student", "accountant", "parent")
EXAM_TYPES = ("quiz", "assignment", "midterm", "final", "project")
TERMS = ("First Term", "Second Term", "Third Term")
ATTENDANCE_STATUSES = ("present", "absent", "late")
FEE_TYPES = ("tuition", "transport", "library", "lab", "sports", "exam", "other")
FEE_STATUSES = ("pending", "partial", "paid", "overdue")
UNPAID_FEE_STATUSES = ("pending", "partial", "overdue")
PAYMENT_METHODS = ("cash", "card", "bank_transfer", "online", "check")
PROMOTION_STATUSES = ("pending", "eligible", "promoted", "held_back", "under_review")
REMINDER_TYPES = ("before_due", "on_due", "after_due", "final_notice")
REMINDER_STATUSES = ("pending", "sent", "failed", "acknowledged")
ACTIVE_REMINDER_STATUSES = ("pending", "sent")
ACCESS_LEVELS = ("public", "students", "teachers", "admin")


def _iso(value):
    return value.isoformat() if value else None


class_students = db.Table(
    "class_students",
    db.Column("class_id", db.Integer, db.ForeignKey("classes.id"), primary_key=True),
    db.Column("student_id", db.Integer, db.ForeignKey("students.id"), primary_key=True),
)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    role = db.Column(db.String(20), nullable=False, default="student")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"


class Student(db.Model):
    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    student_code = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    class_name = db.Column(db.String(50), nullable=False, index=True)
    section = db.Column(db.String(10), default="A")
    roll_number = db.Column(db.String(20))
    status = db.Column(db.String(20), nullable=False, default="active", index=True)
    academic_year = db.Column(db.String(9))
    admission_date = db.Column(db.Date, default=date.today)
    guardian_name = db.Column(db.String(120))
    guardian_email = db.Column(db.String(255))
    guardian_phone = db.Column(db.String(30))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    fees = db.relationship("Fee", backref="student", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Student {self.name} ({self.student_code})>"

    def to_dict(self):
        return {
            "id": self.id,
            "studentId": self.student_code,
            "name": self.name,
            "email": self.email,
            "class": self.class_name,
            "section": self.section,
            "rollNumber": self.roll_number,
            "status": self.status,
            "academicYear": self.academic_year,
            "admissionDate": _iso(self.admission_date),
            "parentInfo": {
                "guardianName": self.guardian_name,
                "guardianEmail": self.guardian_email,
                "guardianPhone": self.guardian_phone,
            },
        }


class Teacher(db.Model):
    __tablename__ = "teachers"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active")
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class SchoolClass(db.Model):
    __tablename__ = "classes"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, index=True)
    section = db.Column(db.String(10), nullable=False, default="A")
    grade = db.Column(db.String(20), nullable=False)
    room = db.Column(db.String(30))
    capacity = db.Column(db.Integer, nullable=False, default=30)
    academic_year = db.Column(db.String(9), nullable=False, default="2024-25")
    status = db.Column(db.String(20), nullable=False, default="active")
    teacher_id = db.Column(db.Integer, db.ForeignKey("teachers.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    students = db.relationship("Student", secondary=class_students, lazy="select", order_by="Student.id")

    @property
    def student_count(self) -> int:
        return len(self.students)

    def to_dict(self, with_students: bool = False):
        data = {
            "id": self.id,
            "name": self.name,
            "section": self.section,
            "grade": self.grade,
            "room": self.room,
            "capacity": self.capacity,
            "studentCount": self.student_count,
            "academicYear": self.academic_year,
            "status": self.status,
        }
        if with_students:
            data["students"] = [s.to_dict() for s in self.students]
        return data


class Grade(db.Model):
    __tablename__ = "grades"
    __table_args__ = (
        db.CheckConstraint("score >= 0", name="ck_grades_score_nonneg"),
        db.CheckConstraint("max_score >= 1", name="ck_grades_max_score_min"),
        db.Index("ix_grades_student_subject_term", "student_id", "subject_name", "term"),
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    class_id = db.Column(db.Integer, db.ForeignKey("classes.id"), nullable=True, index=True)
    class_name = db.Column(db.String(50))
    subject_name = db.Column(db.String(100), nullable=False)
    exam_type = db.Column(db.String(20), nullable=False)
    score = db.Column(db.Float, nullable=False)
    max_score = db.Column(db.Float, nullable=False)
    # Written through utils.grading.letter_grade at every write site.
    grade_level = db.Column(db.String(2))
    term = db.Column(db.String(20), nullable=False)
    academic_year = db.Column(db.String(9), nullable=False)
    date = db.Column(db.Date, nullable=False, default=date.today)
    weightage = db.Column(db.Integer, default=10)
    remarks = db.Column(db.Text)
    teacher_id = db.Column(db.Integer, db.ForeignKey("teachers.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = db.relationship("Student")

    def to_dict(self):
        return {
            "id": self.id,
            "studentId": self.student_id,
            "classId": self.class_id,
            "className": self.class_name,
            "subjectName": self.subject_name,
            "examType": self.exam_type,
            "score": self.score,
            "maxScore": self.max_score,
            "gradeLevel": self.grade_level,
            "term": self.term,
            "academicYear": self.academic_year,
            "date": _iso(self.date),
            "remarks": self.remarks,
        }


class Attendance(db.Model):
    __tablename__ = "attendance"
    __table_args__ = (
        db.UniqueConstraint("student_id", "date", name="uq_attendance_student_day"),
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    class_id = db.Column(db.Integer, db.ForeignKey("classes.id"), nullable=True, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(10), nullable=False)
    reason = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "studentId": self.student_id,
            "classId": self.class_id,
            "date": _iso(self.date),
            "status": self.status,
            "reason": self.reason,
        }


class Fee(db.Model):
    __tablename__ = "fees"
    __table_args__ = (
        db.Index("ix_fees_student_term", "student_id", "term"),
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    type = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False)
    paid_amount = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    late_fee = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    due_date = db.Column(db.Date, nullable=False, index=True)
    paid_date = db.Column(db.DateTime)
    # Written through utils.fees.apply_fee_status at every write site.
    status = db.Column(db.String(10), nullable=False, default="pending", index=True)
    term = db.Column(db.String(20), nullable=False)
    academic_year = db.Column(db.String(9), nullable=False)
    payment_method = db.Column(db.String(20))
    transaction_id = db.Column(db.String(100))
    invoice_number = db.Column(db.String(30), nullable=False, unique=True)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    payments = db.relationship(
        "FeePayment",
        backref="fee",
        cascade="all, delete-orphan",
        order_by="FeePayment.id",
    )

    def __repr__(self):
        return f"<Fee StudentID={self.student_id} {self.type} {self.amount} ({self.status})>"

    def to_dict(self, with_history: bool = False):
        data = {
            "id": self.id,
            "studentId": self.student_id,
            "studentName": self.student.name if self.student else None,
            "type": self.type,
            "amount": self.amount,
            "paidAmount": self.paid_amount,
            "discount": self.discount,
            "lateFee": self.late_fee,
            "dueDate": _iso(self.due_date),
            "paidDate": _iso(self.paid_date),
            "status": self.status,
            "term": self.term,
            "academicYear": self.academic_year,
            "paymentMethod": self.payment_method,
            "invoiceNumber": self.invoice_number,
        }
        if with_history:
            data["paymentHistory"] = [p.to_dict() for p in self.payments]
        return data


class FeePayment(db.Model):
    __tablename__ = "fee_payments"

    id = db.Column(db.Integer, primary_key=True)
    fee_id = db.Column(db.Integer, db.ForeignKey("fees.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False)
    date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    method = db.Column(db.String(20), nullable=False)
    transaction_id = db.Column(db.String(100))
    received_by = db.Column(db.String(120))

    def to_dict(self):
        return {
            "amount": self.amount,
            "date": _iso(self.date),
            "method": self.method,
            "transactionId": self.transaction_id,
            "receivedBy": self.received_by,
        }


class Promotion(db.Model):
    __tablename__ = "promotions"
    __table_args__ = (
        db.UniqueConstraint("student_id", "academic_year", "term", name="uq_promotions_student_year_term"),
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    student_name = db.Column(db.String(120), nullable=False)
    current_class = db.Column(db.String(50), nullable=False)
    current_grade = db.Column(db.String(20), nullable=False)
    next_class = db.Column(db.String(50), nullable=False)
    next_grade = db.Column(db.String(20), nullable=False)
    academic_year = db.Column(db.String(9), nullable=False)
    term = db.Column(db.String(20), nullable=False)

    midterm_completed = db.Column(db.Boolean, nullable=False, default=False)
    midterm_average = db.Column(db.Float, nullable=False, default=0)
    midterm_total_subjects = db.Column(db.Integer, nullable=False, default=0)
    midterm_passed_subjects = db.Column(db.Integer, nullable=False, default=0)
    midterm_completed_date = db.Column(db.DateTime)
    final_completed = db.Column(db.Boolean, nullable=False, default=False)
    final_average = db.Column(db.Float, nullable=False, default=0)
    final_total_subjects = db.Column(db.Integer, nullable=False, default=0)
    final_passed_subjects = db.Column(db.Integer, nullable=False, default=0)
    final_completed_date = db.Column(db.DateTime)

    overall_average = db.Column(db.Float, nullable=False, default=0)
    attendance_percentage = db.Column(db.Float, nullable=False, default=0)
    fee_status = db.Column(db.String(10), nullable=False, default="pending")
    promotion_status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    promotion_date = db.Column(db.DateTime)

    min_attendance = db.Column(db.Float, nullable=False, default=75)
    min_grade = db.Column(db.Float, nullable=False, default=65)
    required_exams = db.Column(db.String(50), nullable=False, default="midterm,final")

    remarks = db.Column(db.Text)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by_name = db.Column(db.String(120))
    approval_date = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = db.relationship("Student")

    def exam_result(self, exam: str) -> dict:
        return {
            "completed": bool(getattr(self, f"{exam}_completed")),
            "averageScore": getattr(self, f"{exam}_average") or 0.0,
            "totalSubjects": getattr(self, f"{exam}_total_subjects") or 0,
            "passedSubjects": getattr(self, f"{exam}_passed_subjects") or 0,
            "completedDate": _iso(getattr(self, f"{exam}_completed_date")),
        }

    def set_exam_result(self, exam: str, snapshot: dict, when: datetime) -> None:
        setattr(self, f"{exam}_completed", snapshot["completed"])
        setattr(self, f"{exam}_average", snapshot["averageScore"])
        setattr(self, f"{exam}_total_subjects", snapshot["totalSubjects"])
        setattr(self, f"{exam}_passed_subjects", snapshot["passedSubjects"])
        # Keep the first completion stamp across re-evaluations.
        completed_on = getattr(self, f"{exam}_completed_date") or when
        setattr(self, f"{exam}_completed_date", completed_on if snapshot["completed"] else None)

    @property
    def required_exam_list(self) -> list[str]:
        return [e for e in (self.required_exams or "").split(",") if e]

    def to_dict(self):
        return {
            "id": self.id,
            "studentId": self.student_id,
            "studentName": self.student_name,
            "currentClass": self.current_class,
            "currentGrade": self.current_grade,
            "nextClass": self.next_class,
            "nextGrade": self.next_grade,
            "academicYear": self.academic_year,
            "term": self.term,
            "examResults": {
                "midterm": self.exam_result("midterm"),
                "final": self.exam_result("final"),
            },
            "overallAverage": self.overall_average,
            "attendancePercentage": self.attendance_percentage,
            "feeStatus": self.fee_status,
            "promotionStatus": self.promotion_status,
            "promotionDate": _iso(self.promotion_date),
            "requirements": {
                "minimumAttendance": self.min_attendance,
                "minimumGrade": self.min_grade,
                "requiredExams": self.required_exam_list,
            },
            "remarks": self.remarks,
            "approvedByName": self.approved_by_name,
            "approvalDate": _iso(self.approval_date),
        }


class FeeReminder(db.Model):
    __tablename__ = "fee_reminders"
    __table_args__ = (
        db.Index("ix_fee_reminders_student_fee", "student_id", "fee_id"),
        db.Index("ix_fee_reminders_fee_type_status", "fee_id", "reminder_type", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    student_name = db.Column(db.String(120), nullable=False)
    student_email = db.Column(db.String(255), nullable=False)
    fee_id = db.Column(db.Integer, db.ForeignKey("fees.id"), nullable=False)
    fee_type = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False)
    due_date = db.Column(db.Date, nullable=False, index=True)
    reminder_type = db.Column(db.String(20), nullable=False, index=True)
    reminder_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    # Negative for overdue reminders.
    days_before = db.Column(db.Integer, nullable=False, default=0)
    message = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    sent_date = db.Column(db.DateTime)
    sent_by = db.Column(db.String(20), nullable=False, default="system")
    delivery_method = db.Column(db.String(20), nullable=False, default="email")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_attempt = db.Column(db.DateTime)
    error_message = db.Column(db.Text)
    acknowledged_date = db.Column(db.DateTime)
    parent_name = db.Column(db.String(120))
    parent_email = db.Column(db.String(255))
    parent_phone = db.Column(db.String(30))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    fee = db.relationship("Fee")

    def to_dict(self):
        return {
            "id": self.id,
            "studentId": self.student_id,
            "studentName": self.student_name,
            "studentEmail": self.student_email,
            "feeId": self.fee_id,
            "feeType": self.fee_type,
            "amount": self.amount,
            "dueDate": _iso(self.due_date),
            "reminderType": self.reminder_type,
            "reminderDate": _iso(self.reminder_date),
            "daysBefore": self.days_before,
            "message": self.message,
            "status": self.status,
            "sentDate": _iso(self.sent_date),
            "sentBy": self.sent_by,
            "deliveryMethod": self.delivery_method,
            "attempts": self.attempts,
            "lastAttempt": _iso(self.last_attempt),
            "errorMessage": self.error_message,
            "acknowledgedDate": _iso(self.acknowledged_date),
            "parentContact": {
                "name": self.parent_name,
                "email": self.parent_email,
                "phone": self.parent_phone,
            },
        }


# At most one active reminder per (fee, reminder type).
db.Index(
    "uq_fee_reminders_active",
    FeeReminder.fee_id,
    FeeReminder.reminder_type,
    unique=True,
    sqlite_where=FeeReminder.status.in_(ACTIVE_REMINDER_STATUSES),
    postgresql_where=FeeReminder.status.in_(ACTIVE_REMINDER_STATUSES),
)


class Announcement(db.Model):
    __tablename__ = "announcements"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)
    # Comma separated roles, or "all".
    target_audience = db.Column(db.String(100), nullable=False, default="all")
    priority = db.Column(db.String(10), nullable=False, default="medium")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def audience(self) -> list[str]:
        return [a.strip() for a in (self.target_audience or "").split(",") if a.strip()]

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "targetAudience": self.audience,
            "priority": self.priority,
            "createdAt": _iso(self.created_at),
        }


class Resource(db.Model):
    __tablename__ = "resources"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(30), nullable=False, default="document")
    subject = db.Column(db.String(100))
    grade = db.Column(db.String(20))
    access_level = db.Column(db.String(10), nullable=False, default="students", index=True)
    description = db.Column(db.Text)
    downloads = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "subject": self.subject,
            "grade": self.grade,
            "accessLevel": self.access_level,
            "description": self.description,
            "downloads": self.downloads,
        }
