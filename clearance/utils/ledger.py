"""
Clearance status ledger.

One ClearanceStatus row exists per student and catalog item. This module owns
every write to those rows, the catalog loader, student registration and the
issue reports students file against items assigned to them.
"""

from flask import current_app
from sqlalchemy import func

from clearance.extensions import db
from clearance.exceptions import NotFoundError, ScopeError, ValidationError, InvalidTransitionError
from clearance.models import (
    ApprovalStatus,
    ClearanceItem,
    ClearanceStatus,
    ItemCategory,
    ItemRegistration,
    ItemStatus,
    RegistrationStatus,
    Role,
    Student,
    User,
)
from clearance.utils.constants import DEFAULT_CATALOG
from clearance.utils.helpers import utc_now

ISSUE_TYPES = ('missing', 'damaged')


# -------------------- CATALOG --------------------

def load_catalog(entries=None):
    """
    Insert catalog items that are not present yet.

    Existing items are left untouched so the catalog stays immutable once
    students reference it.

    Returns:
        int: number of items created
    """
    created = 0
    for position, entry in enumerate(entries or DEFAULT_CATALOG):
        if db.session.get(ClearanceItem, entry['id']) is not None:
            continue
        db.session.add(ClearanceItem(
            id=entry['id'],
            name=entry['name'],
            category=ItemCategory.from_string(entry['category']),
            description=entry.get('description', ''),
            is_required=entry.get('is_required', True),
            requires_submission=entry.get('requires_submission', False),
            sort_order=position,
        ))
        created += 1
    return created


def get_catalog():
    return ClearanceItem.query.order_by(ClearanceItem.sort_order, ClearanceItem.id).all()


def required_item_ids(catalog, submission_only=False):
    """Return ids of required catalog items, optionally only physical ones."""
    return {
        item.id for item in catalog
        if item.is_required and (item.requires_submission or not submission_only)
    }


# -------------------- COMPLETION --------------------

def completed_required_count(student, catalog, submission_only=False):
    required = required_item_ids(catalog, submission_only=submission_only)
    return sum(
        1 for entry in student.clearance_items
        if entry.item_id in required and entry.status == ItemStatus.COMPLETED
    )


def completion_percentage(student, catalog=None):
    """
    Percentage of required items the student has completed.

    Rounded half-up to an integer. A catalog without required items yields 0.
    """
    catalog = catalog if catalog is not None else get_catalog()
    required = len(required_item_ids(catalog))
    if required == 0:
        return 0
    completed = completed_required_count(student, catalog)
    return (200 * completed + required) // (2 * required)


def all_required_completed(student, catalog=None, submission_only=False):
    catalog = catalog if catalog is not None else get_catalog()
    required = required_item_ids(catalog, submission_only=submission_only)
    if not required:
        return False
    return completed_required_count(student, catalog, submission_only=submission_only) == len(required)


# -------------------- REGISTRATION --------------------

def register_student(student_number, name, email, grade, password_hash, hall=None, room=None,
                     advisor=None, teacher=None, year_head=None, section='', outstanding_balance=0.0):
    """
    Create a student with its ledger, approval gates and student account.

    Raises:
        ValidationError: duplicate student number or email, negative balance
    """
    email = email.strip().lower()
    student_number = student_number.strip()
    outstanding_balance = float(outstanding_balance or 0)

    if outstanding_balance < 0:
        raise ValidationError("Outstanding balance must be 0 or greater.")
    if Student.query.filter_by(student_number=student_number).first():
        raise ValidationError("A student with this ID already exists.")
    if (User.query.filter(func.lower(User.email) == email).first()
            or Student.query.filter(func.lower(Student.email) == email).first()):
        raise ValidationError("A user with this email already exists.")

    student = Student(
        student_number=student_number,
        name=name.strip(),
        email=email,
        grade=grade,
        section=section or '',
        hall=hall,
        room=room,
        advisor=advisor,
        teacher=teacher,
        year_head=year_head,
        outstanding_balance=outstanding_balance,
    )
    student.approval_status = ApprovalStatus()

    for item in get_catalog():
        entry = ClearanceStatus(item_id=item.id, status=ItemStatus.PENDING)
        if item.category == ItemCategory.FINANCE and outstanding_balance > 0:
            entry.status = ItemStatus.ACTION_REQUIRED
            entry.outstanding_amount = outstanding_balance
        student.clearance_items.append(entry)

    db.session.add(student)
    db.session.add(User(
        name=student.name,
        email=email,
        password_hash=password_hash,
        role=Role.STUDENT,
        student=student,
    ))
    db.session.flush()
    current_app.logger.info(f"Registered student {student.student_number} ({student.name})")
    return student


# -------------------- ITEM STATUS --------------------

def set_item_status(student, item_id, status, completed_by=None, notes=None, outstanding_amount=None, now=None):
    """
    Overwrite the student's ledger entry for one catalog item.

    The (student, item) pair is unique: an existing entry is updated in place
    and a missing one is created, never duplicated.
    """
    try:
        status = ItemStatus.from_string(status)
    except ValueError:
        raise ValidationError(f"Unknown item status '{status}'.", allowed=ItemStatus.values())

    item = db.session.get(ClearanceItem, item_id)
    if item is None:
        raise NotFoundError(f"Clearance item '{item_id}' does not exist.")
    if outstanding_amount is not None and outstanding_amount < 0:
        raise ValidationError("Outstanding amount must be 0 or greater.")

    entry = ClearanceStatus.query.filter_by(student_id=student.id, item_id=item_id).first()
    if entry is None:
        entry = ClearanceStatus(item_id=item_id)
        student.clearance_items.append(entry)

    entry.status = status
    entry.completed_by = completed_by
    entry.completed_at = (now or utc_now()) if status == ItemStatus.COMPLETED else None
    entry.notes = notes
    # Without a new amount, an uncleared entry keeps what is still owed
    if status == ItemStatus.COMPLETED:
        entry.outstanding_amount = None
    elif outstanding_amount is not None:
        entry.outstanding_amount = outstanding_amount

    if item.category == ItemCategory.FINANCE and (
            status == ItemStatus.COMPLETED or outstanding_amount is not None):
        student.outstanding_balance = entry.outstanding_amount or 0.0

    return entry


# -------------------- ASSIGNED ITEM ISSUES --------------------

def report_issue(student, registration_id, issue_type, description, now=None):
    """
    Record a missing/damaged report against an item assigned to the student.

    The item status becomes the issue type; the issue starts unresolved.
    """
    if issue_type not in ISSUE_TYPES:
        raise ValidationError(f"Issue type must be one of: {', '.join(ISSUE_TYPES)}.")
    if not description or not description.strip():
        raise ValidationError("Please describe the issue.")

    registration = db.session.get(ItemRegistration, registration_id)
    if registration is None:
        raise NotFoundError("Assigned item not found.")
    if registration.student_id != student.id:
        raise ScopeError("This item is not assigned to you.")
    if registration.status == RegistrationStatus.RETURNED:
        raise InvalidTransitionError("Returned items cannot be reported.")

    registration.status = RegistrationStatus.from_string(issue_type)
    registration.issue_type = issue_type
    registration.issue_description = description.strip()
    registration.issue_reported_at = now or utc_now()
    registration.issue_resolved = False
    registration.issue_resolved_at = None
    registration.issue_resolved_by = None
    registration.issue_resolution_notes = None
    return registration


def resolve_issue(registration, resolver_name, notes=None, now=None):
    """Mark a reported issue resolved. The item status is left as reported."""
    if not registration.issue_type:
        raise InvalidTransitionError("No issue has been reported for this item.")
    if registration.issue_resolved:
        raise InvalidTransitionError("This issue is already resolved.")

    registration.issue_resolved = True
    registration.issue_resolved_at = now or utc_now()
    registration.issue_resolved_by = resolver_name
    registration.issue_resolution_notes = notes
    return registration
