"""
Database models for the Student Clearance Tracker.

All SQLAlchemy models are defined here with proper relationships and properties.
Times are stored as UTC in the database.
"""

from datetime import datetime, timezone
import enum

from clearance.extensions import db
from clearance.utils.helpers import format_utc_iso


def _utc_now():
    """Helper function for timezone-aware datetime defaults in SQLAlchemy models."""
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class LookupEnum(enum.Enum):
    """Enum base that can be built from its stored string value."""

    @classmethod
    def from_string(cls, value):
        """Convert string to enum, raising ValueError if invalid."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value == value:
                return member
        raise ValueError(f"Invalid {cls.__name__}: {value}")

    @classmethod
    def values(cls):
        return _enum_values(cls)


# -------------------- ENUMS --------------------

class Role(LookupEnum):
    STUDENT = 'student'
    ADMIN = 'admin'
    TEACHER = 'teacher'
    HALL_HEAD = 'hall_head'
    STATION_STAFF = 'station_staff'
    ADVISOR = 'advisor'
    YEAR_HEAD = 'year_head'


class ItemCategory(LookupEnum):
    SUBJECT_MATERIALS = 'subject_materials'
    OTHER_REQUIREMENTS = 'other_requirements'
    FINANCE = 'finance'
    ADMINISTRATIVE = 'administrative'


class ItemStatus(LookupEnum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    ACTION_REQUIRED = 'action_required'


class FinalClearanceStatus(LookupEnum):
    PENDING = 'pending'
    COMPLETED = 'completed'


class UnlockRequestStatus(LookupEnum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class RequirementStatus(LookupEnum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    OVERDUE = 'overdue'


class RequirementPriority(LookupEnum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class RegistrationStatus(LookupEnum):
    ASSIGNED = 'assigned'
    RETURNED = 'returned'
    MISSING = 'missing'
    DAMAGED = 'damaged'


class SignOutStatus(LookupEnum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


def _enum_column(enum_cls, **kwargs):
    return db.Column(
        db.Enum(enum_cls, values_callable=_enum_values, name=f'{enum_cls.__name__.lower()}_enum'),
        **kwargs,
    )


# -------------------- CATALOG --------------------

class ClearanceItem(db.Model):
    """
    One entry in the clearance catalog.

    The catalog is loaded once (see `flask seed-catalog`) and treated as
    read-only by the rest of the application.
    """
    __tablename__ = 'clearance_items'

    id = db.Column(db.String(40), primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    category = _enum_column(ItemCategory, nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_required = db.Column(db.Boolean, default=True, nullable=False)
    # True for physical items that must be handed in at a station
    requires_submission = db.Column(db.Boolean, default=False, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category.value,
            'description': self.description or '',
            'is_required': self.is_required,
            'requires_submission': self.requires_submission,
        }

    def __repr__(self):
        return f'<ClearanceItem {self.id} {self.name}>'


# -------------------- STUDENT AGGREGATE --------------------

class Student(db.Model):
    __tablename__ = 'students'

    id = db.Column(db.Integer, primary_key=True)
    student_number = db.Column(db.String(40), unique=True, nullable=False)  # e.g. "ALA2024-101"
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    grade = db.Column(db.String(40), nullable=False)
    section = db.Column(db.String(40), nullable=False, default='')
    hall = db.Column(db.String(80), nullable=True)
    room = db.Column(db.String(20), nullable=True)

    # Relationship links are stored as names, not foreign keys.
    # `teacher` may hold several names separated by commas.
    advisor = db.Column(db.String(120), nullable=True)
    teacher = db.Column(db.String(255), nullable=True)
    year_head = db.Column(db.String(120), nullable=True)

    outstanding_balance = db.Column(db.Float, default=0.0, nullable=False)

    final_clearance_status = _enum_column(
        FinalClearanceStatus, default=FinalClearanceStatus.PENDING, nullable=False
    )
    confirmation_code = db.Column(db.String(32), unique=True, nullable=True)
    final_approved_by = db.Column(db.String(120), nullable=True)
    final_approved_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=_utc_now, nullable=False)

    clearance_items = db.relationship(
        'ClearanceStatus',
        backref='student',
        cascade='all, delete-orphan',
        order_by='ClearanceStatus.id',
    )
    approval_status = db.relationship(
        'ApprovalStatus',
        backref='student',
        uselist=False,
        cascade='all, delete-orphan',
    )
    approval_events = db.relationship(
        'ApprovalEvent',
        backref='student',
        lazy='dynamic',
        cascade='all, delete-orphan',
        order_by='ApprovalEvent.id',
    )

    @property
    def teacher_names(self):
        """Teacher names parsed from the comma-separated `teacher` field."""
        if not self.teacher:
            return []
        return [name.strip() for name in self.teacher.split(',') if name.strip()]

    @property
    def is_cleared(self):
        return self.final_clearance_status == FinalClearanceStatus.COMPLETED

    def get_item_status(self, item_id):
        """Return the ledger entry for a catalog item, or None."""
        return next((entry for entry in self.clearance_items if entry.item_id == item_id), None)

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'student_id': self.student_number,
            'name': self.name,
            'email': self.email,
            'grade': self.grade,
            'section': self.section or '',
            'hall': self.hall,
            'room': self.room,
            'advisor': self.advisor,
            'teacher': self.teacher,
            'year_head': self.year_head,
            'outstanding_balance': self.outstanding_balance or 0.0,
            'final_clearance_status': self.final_clearance_status.value,
            'confirmation_code': self.confirmation_code,
            'final_approved_by': self.final_approved_by,
            'final_approved_at': format_utc_iso(self.final_approved_at),
            'approval_status': self.approval_status.to_dict() if self.approval_status else None,
        }
        if include_items:
            data['clearance_items'] = [entry.to_dict() for entry in self.clearance_items]
        return data

    def __repr__(self):
        return f'<Student {self.student_number} {self.name}>'


class ClearanceStatus(db.Model):
    """Ledger entry: one per student and catalog item."""
    __tablename__ = 'clearance_statuses'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete='CASCADE'), nullable=False)
    item_id = db.Column(db.String(40), db.ForeignKey('clearance_items.id'), nullable=False)
    status = _enum_column(ItemStatus, default=ItemStatus.PENDING, nullable=False)
    completed_by = db.Column(db.String(120), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    outstanding_amount = db.Column(db.Float, nullable=True)  # finance items only

    item = db.relationship('ClearanceItem')

    __table_args__ = (
        db.UniqueConstraint('student_id', 'item_id', name='uq_clearance_status_student_item'),
        db.Index('ix_clearance_statuses_status', 'status'),
    )

    def to_dict(self):
        return {
            'item_id': self.item_id,
            'student_id': self.student_id,
            'status': self.status.value,
            'completed_by': self.completed_by,
            'completed_at': format_utc_iso(self.completed_at),
            'notes': self.notes,
            'outstanding_amount': self.outstanding_amount,
        }

    def __repr__(self):
        return f'<ClearanceStatus {self.student_id}/{self.item_id} {self.status.value}>'


class ApprovalStatus(db.Model):
    """Per-student approval gates, one row per student."""
    __tablename__ = 'approval_statuses'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete='CASCADE'), unique=True, nullable=False)

    station_staff_approval = db.Column(db.Boolean, default=False, nullable=False)
    station_staff_approved_by = db.Column(db.String(120), nullable=True)
    station_staff_approved_at = db.Column(db.DateTime, nullable=True)

    teacher_approval = db.Column(db.Boolean, default=False, nullable=False)
    teacher_approved_by = db.Column(db.String(120), nullable=True)
    teacher_approved_at = db.Column(db.DateTime, nullable=True)

    hall_head_approval = db.Column(db.Boolean, default=False, nullable=False)
    hall_head_approved_by = db.Column(db.String(120), nullable=True)
    hall_head_approved_at = db.Column(db.DateTime, nullable=True)

    advisor_approval = db.Column(db.Boolean, default=False, nullable=False)
    advisor_approved_by = db.Column(db.String(120), nullable=True)
    advisor_approved_at = db.Column(db.DateTime, nullable=True)

    year_head_approval = db.Column(db.Boolean, default=False, nullable=False)
    year_head_approved_by = db.Column(db.String(120), nullable=True)
    year_head_approved_at = db.Column(db.DateTime, nullable=True)

    # A denial is kept until the year head approves on a later review
    year_head_denied = db.Column(db.Boolean, default=False, nullable=False)
    year_head_denied_by = db.Column(db.String(120), nullable=True)
    year_head_denied_at = db.Column(db.DateTime, nullable=True)
    year_head_denial_reason = db.Column(db.Text, nullable=True)

    GATES = ('station_staff', 'teacher', 'hall_head', 'advisor', 'year_head')

    def is_approved(self, gate):
        return bool(getattr(self, f'{gate}_approval'))

    def to_dict(self):
        data = {}
        for gate in self.GATES:
            data[f'{gate}_approval'] = self.is_approved(gate)
            data[f'{gate}_approved_by'] = getattr(self, f'{gate}_approved_by')
            data[f'{gate}_approved_at'] = format_utc_iso(getattr(self, f'{gate}_approved_at'))
        data.update({
            'year_head_denied': self.year_head_denied,
            'year_head_denied_by': self.year_head_denied_by,
            'year_head_denied_at': format_utc_iso(self.year_head_denied_at),
            'year_head_denial_reason': self.year_head_denial_reason,
        })
        return data


class ApprovalEvent(db.Model):
    """Append-only audit log of approval decisions."""
    __tablename__ = 'approval_events'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete='CASCADE'), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False)
    action = db.Column(db.Enum('approve', 'deny', 'final_clearance', name='approval_event_action_enum'), nullable=False)
    actor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    actor_name = db.Column(db.String(120), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=_utc_now, nullable=False)

    def to_dict(self):
        return {
            'role': self.role,
            'action': self.action,
            'actor_name': self.actor_name,
            'notes': self.notes,
            'created_at': format_utc_iso(self.created_at),
        }


# -------------------- ACCOUNTS & LOGIN GUARD --------------------

class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    # Always stored lower-cased; see utils.login_guard.normalize_email
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.Text, nullable=False)
    role = _enum_column(Role, nullable=False)

    # Student accounts read their clearance through this link
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete='SET NULL'), nullable=True)
    student = db.relationship('Student', backref=db.backref('user', uselist=False))

    # Role scopes
    teacher_classes = db.Column(db.JSON, nullable=True)
    managed_halls = db.Column(db.JSON, nullable=True)
    advisees = db.Column(db.JSON, nullable=True)  # Student.id values
    managed_grades = db.Column(db.JSON, nullable=True)

    # Login guard
    login_attempts = db.Column(db.Integer, default=0, nullable=False)
    is_locked = db.Column(db.Boolean, default=False, nullable=False)
    locked_at = db.Column(db.DateTime, nullable=True)
    locked_until = db.Column(db.DateTime, nullable=True)
    lock_reason = db.Column(db.String(255), nullable=True)
    last_login_attempt = db.Column(db.DateTime, nullable=True)
    last_login = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=_utc_now, nullable=False)

    def to_dict(self):
        data = {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role.value,
            'teacher_classes': self.teacher_classes or [],
            'managed_halls': self.managed_halls or [],
            'advisees': self.advisees or [],
            'managed_grades': self.managed_grades or [],
            'is_locked': self.is_locked,
            'locked_until': format_utc_iso(self.locked_until),
            'lock_reason': self.lock_reason,
            'login_attempts': self.login_attempts,
        }
        if self.role == Role.STUDENT and self.student is not None:
            data['student'] = self.student.to_dict()
        return data

    def __repr__(self):
        return f'<User {self.email} ({self.role.value})>'


class LoginAttempt(db.Model):
    """Sliding-window failed-login tracker keyed by normalized email."""
    __tablename__ = 'login_attempts'

    id = db.Column(db.Integer, primary_key=True)
    email_key = db.Column(db.String(255), unique=True, nullable=False)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    first_attempt_at = db.Column(db.DateTime, nullable=False)
    last_attempt_at = db.Column(db.DateTime, nullable=False)


class AdminUnlockRequest(db.Model):
    __tablename__ = 'admin_unlock_requests'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    user_email = db.Column(db.String(255), nullable=False)
    user_name = db.Column(db.String(120), nullable=False)
    locked_at = db.Column(db.DateTime, nullable=True)
    attempt_count = db.Column(db.Integer, default=0, nullable=False)
    requested_at = db.Column(db.DateTime, default=_utc_now, nullable=False)
    status = _enum_column(UnlockRequestStatus, default=UnlockRequestStatus.PENDING, nullable=False)
    approved_by = db.Column(db.String(120), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    user = db.relationship('User', backref=db.backref('unlock_requests', lazy='dynamic', passive_deletes=True))

    __table_args__ = (
        db.Index('ix_admin_unlock_requests_status', 'status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_email': self.user_email,
            'user_name': self.user_name,
            'locked_at': format_utc_iso(self.locked_at),
            'attempt_count': self.attempt_count,
            'requested_at': format_utc_iso(self.requested_at),
            'status': self.status.value,
            'approved_by': self.approved_by,
            'approved_at': format_utc_iso(self.approved_at),
            'notes': self.notes,
        }


# -------------------- TEACHER WORKFLOWS --------------------

class StudentRequirement(db.Model):
    """Ad-hoc task a teacher assigns to a student, outside the catalog."""
    __tablename__ = 'student_requirements'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete='CASCADE'), nullable=False, index=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    teacher_name = db.Column(db.String(120), nullable=False)
    requirement = db.Column(db.Text, nullable=False)
    due_date = db.Column(db.Date, nullable=True)
    priority = _enum_column(RequirementPriority, default=RequirementPriority.MEDIUM, nullable=False)
    status = _enum_column(RequirementStatus, default=RequirementStatus.PENDING, nullable=False)
    created_at = db.Column(db.DateTime, default=_utc_now, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    student = db.relationship('Student', backref=db.backref('requirements', lazy='dynamic', cascade='all, delete-orphan'))

    def to_dict(self):
        return {
            'id': self.id,
            'student_id': self.student_id,
            'teacher_id': self.teacher_id,
            'teacher_name': self.teacher_name,
            'requirement': self.requirement,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'priority': self.priority.value,
            'status': self.status.value,
            'created_at': format_utc_iso(self.created_at),
            'completed_at': format_utc_iso(self.completed_at),
            'notes': self.notes,
        }


class ItemRegistration(db.Model):
    """An item (calculator, textbook, ...) assigned to a student by a teacher."""
    __tablename__ = 'item_registrations'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete='CASCADE'), nullable=False, index=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    teacher_name = db.Column(db.String(120), nullable=False)
    subject = db.Column(db.String(80), nullable=True)
    serial_number = db.Column(db.String(80), nullable=False)
    item_type = db.Column(
        db.Enum('calculator', 'textbook', 'it_equipment', 'sports_equipment', name='registration_item_type_enum'),
        nullable=False,
    )
    item_description = db.Column(db.Text, nullable=False)
    registered_at = db.Column(db.DateTime, default=_utc_now, nullable=False)
    registered_by = db.Column(db.String(120), nullable=False)
    status = _enum_column(RegistrationStatus, default=RegistrationStatus.ASSIGNED, nullable=False)
    returned_at = db.Column(db.DateTime, nullable=True)
    condition = db.Column(db.Enum('good', 'fair', 'damaged', name='registration_condition_enum'), nullable=True)

    # Reported issue (missing / damaged), resolved by the teacher
    issue_type = db.Column(db.String(20), nullable=True)
    issue_description = db.Column(db.Text, nullable=True)
    issue_reported_at = db.Column(db.DateTime, nullable=True)
    issue_resolved = db.Column(db.Boolean, default=False, nullable=False)
    issue_resolved_at = db.Column(db.DateTime, nullable=True)
    issue_resolved_by = db.Column(db.String(120), nullable=True)
    issue_resolution_notes = db.Column(db.Text, nullable=True)

    student = db.relationship('Student', backref=db.backref('item_registrations', lazy='dynamic', cascade='all, delete-orphan'))

    @property
    def reported_issue(self):
        if not self.issue_type:
            return None
        return {
            'type': self.issue_type,
            'description': self.issue_description,
            'reported_at': format_utc_iso(self.issue_reported_at),
            'resolved': self.issue_resolved,
            'resolved_at': format_utc_iso(self.issue_resolved_at),
            'resolved_by': self.issue_resolved_by,
            'resolution_notes': self.issue_resolution_notes,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'student_id': self.student_id,
            'student_name': self.student.name if self.student else None,
            'teacher_id': self.teacher_id,
            'teacher_name': self.teacher_name,
            'subject': self.subject,
            'serial_number': self.serial_number,
            'item_type': self.item_type,
            'item_description': self.item_description,
            'registered_at': format_utc_iso(self.registered_at),
            'registered_by': self.registered_by,
            'status': self.status.value,
            'returned_at': format_utc_iso(self.returned_at),
            'condition': self.condition,
            'reported_issue': self.reported_issue,
        }


class SignOutRequest(db.Model):
    __tablename__ = 'sign_out_requests'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete='CASCADE'), nullable=False, index=True)
    reason = db.Column(db.Text, nullable=False)
    request_date = db.Column(db.DateTime, default=_utc_now, nullable=False)
    status = _enum_column(SignOutStatus, default=SignOutStatus.PENDING, nullable=False)
    reviewed_by = db.Column(db.String(120), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    review_notes = db.Column(db.Text, nullable=True)

    student = db.relationship('Student', backref=db.backref('sign_out_requests', lazy='dynamic', cascade='all, delete-orphan'))

    def to_dict(self):
        return {
            'id': self.id,
            'student': {
                'name': self.student.name,
                'student_id': self.student.student_number,
                'grade': self.student.grade,
                'section': self.student.section or '',
            },
            'reason': self.reason,
            'request_date': format_utc_iso(self.request_date),
            'status': self.status.value,
            'reviewed_by': self.reviewed_by,
            'reviewed_at': format_utc_iso(self.reviewed_at),
            'review_notes': self.review_notes,
        }
