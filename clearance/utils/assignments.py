"""
Teacher assignments: ad-hoc requirements and registered items.

Both are owned by the teacher who created them; only that teacher can
complete, return or resolve them.
"""

from flask import current_app

from clearance.extensions import db
from clearance.exceptions import InvalidTransitionError, ScopeError, ValidationError
from clearance.models import (
    ItemRegistration,
    RegistrationStatus,
    RequirementPriority,
    RequirementStatus,
    StudentRequirement,
)
from clearance.utils.approvals import can_view_student
from clearance.utils.helpers import utc_now
from clearance.utils.ledger import resolve_issue

ITEM_TYPES = ('calculator', 'textbook', 'it_equipment', 'sports_equipment')
RETURN_CONDITIONS = ('good', 'fair', 'damaged')


def _require_scope(teacher, student):
    if not can_view_student(teacher, student):
        raise ScopeError("This student is outside your scope.")


def _require_owner(record, teacher):
    if record.teacher_id != teacher.id:
        raise ScopeError("Only the teacher who created this record can change it.")


# -------------------- REQUIREMENTS --------------------

def add_requirement(student, teacher, requirement, priority=None, due_date=None, notes=None, now=None):
    _require_scope(teacher, student)
    if not requirement or not requirement.strip():
        raise ValidationError("Requirement text is required.")
    try:
        priority = RequirementPriority.from_string(priority or RequirementPriority.MEDIUM.value)
    except ValueError:
        raise ValidationError("Invalid priority.", allowed=RequirementPriority.values())

    record = StudentRequirement(
        student_id=student.id,
        teacher_id=teacher.id,
        teacher_name=teacher.name,
        requirement=requirement.strip(),
        priority=priority,
        due_date=due_date,
        notes=notes,
        status=RequirementStatus.PENDING,
        created_at=now or utc_now(),
    )
    db.session.add(record)
    current_app.logger.info(f"{teacher.name} added a requirement for {student.student_number}")
    return record


def complete_requirement(record, teacher, notes=None, now=None):
    _require_owner(record, teacher)
    if record.status == RequirementStatus.COMPLETED:
        raise InvalidTransitionError("This requirement is already completed.")
    record.status = RequirementStatus.COMPLETED
    record.completed_at = now or utc_now()
    if notes:
        record.notes = notes
    return record


def mark_overdue_requirements(today):
    """
    Flag pending requirements whose due date is before ``today``.

    Returns:
        int: number of requirements marked overdue
    """
    overdue = StudentRequirement.query.filter(
        StudentRequirement.status == RequirementStatus.PENDING,
        StudentRequirement.due_date.isnot(None),
        StudentRequirement.due_date < today,
    ).all()
    for record in overdue:
        record.status = RequirementStatus.OVERDUE
    return len(overdue)


# -------------------- ITEM REGISTRATIONS --------------------

def register_item(student, teacher, serial_number, item_type, item_description, subject=None, now=None):
    _require_scope(teacher, student)
    if item_type not in ITEM_TYPES:
        raise ValidationError("Invalid item type.", allowed=list(ITEM_TYPES))
    if not serial_number or not serial_number.strip():
        raise ValidationError("Serial number is required.")
    if not item_description or not item_description.strip():
        raise ValidationError("Item description is required.")

    registration = ItemRegistration(
        student_id=student.id,
        teacher_id=teacher.id,
        teacher_name=teacher.name,
        subject=subject or None,
        serial_number=serial_number.strip(),
        item_type=item_type,
        item_description=item_description.strip(),
        registered_at=now or utc_now(),
        registered_by=teacher.name,
        status=RegistrationStatus.ASSIGNED,
    )
    db.session.add(registration)
    current_app.logger.info(
        f"{teacher.name} registered {item_type} {registration.serial_number} to {student.student_number}"
    )
    return registration


def return_item(registration, teacher, condition, now=None):
    _require_owner(registration, teacher)
    if condition not in RETURN_CONDITIONS:
        raise ValidationError("Invalid condition.", allowed=list(RETURN_CONDITIONS))
    if registration.status == RegistrationStatus.RETURNED:
        raise InvalidTransitionError("This item has already been returned.")
    registration.status = RegistrationStatus.RETURNED
    registration.returned_at = now or utc_now()
    registration.condition = condition
    return registration


def resolve_registration_issue(registration, teacher, notes=None, now=None):
    _require_owner(registration, teacher)
    return resolve_issue(registration, teacher.name, notes=notes, now=now)
