"""
Approval state machine.

Each approver role owns one boolean gate on ApprovalStatus. Gates only move
from False to True. The capability table below maps every Role to the gate it
signs, the students it may see and the prerequisites a student must meet
before that gate can be set. Final clearance fires once the required gates
are all set and issues a confirmation code exactly once.
"""

import secrets
import string
from dataclasses import dataclass
from typing import Callable, List, Optional

from flask import current_app

from clearance.extensions import db
from clearance.exceptions import (
    AlreadyApprovedError,
    ApprovalPreconditionError,
    ClearanceError,
    InvalidTransitionError,
    NotFoundError,
    ScopeError,
    ValidationError,
)
from clearance.models import (
    ApprovalEvent,
    ApprovalStatus,
    FinalClearanceStatus,
    ItemStatus,
    Role,
    Student,
)
from clearance.utils.constants import CONFIRMATION_CODE_PREFIX, SYSTEM_ACTOR
from clearance.utils.helpers import utc_now
from clearance.utils.ledger import (
    all_required_completed,
    completion_percentage,
    get_catalog,
    set_item_status,
)

# Gates that must be set before the year head reviews a student
PRE_FINAL_GATES = ('station_staff', 'teacher', 'hall_head', 'advisor')


# -------------------- SCOPE PREDICATES --------------------

def _normalize_name(value):
    return (value or '').strip().lower()


def _scope_all(user, student):
    return True


def _scope_own_record(user, student):
    return user.student_id is not None and user.student_id == student.id


def _scope_teacher(user, student):
    caller = _normalize_name(user.name)
    return bool(caller) and caller in {_normalize_name(name) for name in student.teacher_names}


def _scope_hall_head(user, student):
    return bool(student.hall) and student.hall in (user.managed_halls or [])


def _scope_advisor(user, student):
    return str(student.id) in {str(advisee) for advisee in (user.advisees or [])}


def _scope_year_head(user, student):
    grades = user.managed_grades or []
    return not grades or student.grade in grades


# -------------------- PREREQUISITES --------------------
# Each returns a list of human-readable reasons the student is not ready.

def _station_prerequisites(student, catalog):
    if all_required_completed(student, catalog, submission_only=True):
        return []
    return ["All required items must be submitted at the station."]


def _reviewer_prerequisites(student, catalog):
    missing = []
    if not all_required_completed(student, catalog):
        missing.append("All required clearance items must be completed.")
    if not student.approval_status.station_staff_approval:
        missing.append("Station staff approval is required first.")
    return missing


def _year_head_prerequisites(student, catalog):
    status = student.approval_status
    missing = [
        f"{gate.replace('_', ' ').title()} approval is required first."
        for gate in PRE_FINAL_GATES if not status.is_approved(gate)
    ]
    if completion_percentage(student, catalog) != 100:
        missing.append("All required clearance items must be completed.")
    return missing


def _no_prerequisites(student, catalog):
    return []


@dataclass(frozen=True)
class Capability:
    """What a role may do in the approval workflow."""

    gate: Optional[str]
    in_scope: Callable
    prerequisites: Callable

    @property
    def can_approve(self):
        return self.gate is not None


ROLE_CAPABILITIES = {
    Role.STUDENT: Capability(None, _scope_own_record, _no_prerequisites),
    Role.ADMIN: Capability(None, _scope_all, _no_prerequisites),
    Role.STATION_STAFF: Capability('station_staff', _scope_all, _station_prerequisites),
    Role.TEACHER: Capability('teacher', _scope_teacher, _reviewer_prerequisites),
    Role.HALL_HEAD: Capability('hall_head', _scope_hall_head, _reviewer_prerequisites),
    Role.ADVISOR: Capability('advisor', _scope_advisor, _reviewer_prerequisites),
    Role.YEAR_HEAD: Capability('year_head', _scope_year_head, _year_head_prerequisites),
}

_missing_roles = set(Role) - set(ROLE_CAPABILITIES)
if _missing_roles:
    raise RuntimeError(
        f"Roles without approval capabilities: {', '.join(sorted(r.value for r in _missing_roles))}"
    )


def capability_for(role):
    return ROLE_CAPABILITIES[Role.from_string(role)]


# -------------------- SCOPE QUERIES --------------------

def can_view_student(user, student):
    return capability_for(user.role).in_scope(user, student)


def students_in_scope(user):
    """Students the user may see, ordered by name."""
    capability = capability_for(user.role)
    students = Student.query.order_by(Student.name, Student.id).all()
    return [student for student in students if capability.in_scope(user, student)]


def get_student_in_scope(user, student_id):
    """
    Load a student the user may act on.

    Raises:
        NotFoundError: no such student
        ScopeError: the student is outside the user's scope
    """
    student = db.session.get(Student, student_id)
    if student is None:
        raise NotFoundError("Student not found.")
    if not can_view_student(user, student):
        raise ScopeError("This student is outside your scope.")
    return student


def missing_prerequisites(student, role, catalog=None):
    capability = capability_for(role)
    if not capability.can_approve:
        return ["This role does not approve students."]
    catalog = catalog if catalog is not None else get_catalog()
    return capability.prerequisites(student, catalog)


# -------------------- CONFIRMATION CODES --------------------

def generate_confirmation_code(now=None, length=6):
    """
    Generate a confirmation code such as ``CLR2024-A7K2M9``.

    Uses uppercase letters and digits, excluding ambiguous characters (0, O, I, 1).
    """
    alphabet = string.ascii_uppercase.replace('O', '').replace('I', '')
    digits = string.digits.replace('0', '').replace('1', '')
    charset = alphabet + digits
    year = (now or utc_now()).year
    return f"{CONFIRMATION_CODE_PREFIX}{year}-" + ''.join(secrets.choice(charset) for _ in range(length))


def _unique_confirmation_code(now, attempts=10):
    for _ in range(attempts):
        code = generate_confirmation_code(now)
        if not Student.query.filter_by(confirmation_code=code).first():
            return code
    raise RuntimeError("Could not generate a unique confirmation code")


# -------------------- TRANSITIONS --------------------

def _record_event(student, role, action, actor, notes=None, now=None):
    event = ApprovalEvent(
        role=role,
        action=action,
        actor_id=getattr(actor, 'id', None),
        actor_name=getattr(actor, 'name', None) or SYSTEM_ACTOR,
        notes=notes,
        created_at=now or utc_now(),
    )
    student.approval_events.append(event)
    return event


def _ensure_approval_status(student):
    if student.approval_status is None:
        student.approval_status = ApprovalStatus()
    return student.approval_status


def check_can_approve(student, approver, catalog=None):
    """
    Raise if the approver cannot set their gate for this student right now.

    Returns:
        str: the gate the approver would set
    """
    capability = capability_for(approver.role)
    if not capability.can_approve:
        raise ScopeError("Your role cannot approve students.")
    if not capability.in_scope(approver, student):
        raise ScopeError("This student is outside your scope.")

    status = _ensure_approval_status(student)
    if status.is_approved(capability.gate):
        raise AlreadyApprovedError("This student has already been approved for your role.")

    catalog = catalog if catalog is not None else get_catalog()
    missing = capability.prerequisites(student, catalog)
    if missing:
        raise ApprovalPreconditionError("Student is not ready for approval.", missing=missing)
    return capability.gate


def final_clearance_due(student, require_year_head=True):
    status = student.approval_status
    if status is None:
        return False
    gates = PRE_FINAL_GATES + ('year_head',) if require_year_head else PRE_FINAL_GATES
    return all(status.is_approved(gate) for gate in gates)


def finalize_clearance(student, actor=None, now=None, require_year_head=True):
    """
    Issue final clearance once the required gates are all set.

    Idempotent: a student who is already cleared keeps their confirmation
    code and timestamp.

    Returns:
        bool: True if the student was cleared by this call
    """
    if student.final_clearance_status == FinalClearanceStatus.COMPLETED:
        return False
    if not final_clearance_due(student, require_year_head=require_year_head):
        return False

    now = now or utc_now()
    year_head_triggered = actor is not None and Role.from_string(actor.role) == Role.YEAR_HEAD
    student.final_clearance_status = FinalClearanceStatus.COMPLETED
    if not student.confirmation_code:
        student.confirmation_code = _unique_confirmation_code(now)
    student.final_approved_by = actor.name if year_head_triggered else SYSTEM_ACTOR
    student.final_approved_at = now
    _record_event(student, 'final', 'final_clearance', actor if year_head_triggered else None,
                  notes=student.confirmation_code, now=now)

    current_app.logger.info(
        f"Final clearance issued to {student.student_number} ({student.confirmation_code})"
    )
    return True


def _set_gate(student, gate, approver, now):
    status = _ensure_approval_status(student)
    setattr(status, f'{gate}_approval', True)
    setattr(status, f'{gate}_approved_by', approver.name)
    setattr(status, f'{gate}_approved_at', now)
    if gate == 'year_head':
        status.year_head_denied = False
    _record_event(student, gate, 'approve', approver, now=now)


def approve_student(student, approver, now=None, catalog=None, require_year_head=True):
    """
    Set the approver's gate for a student.

    Raises:
        ScopeError: role cannot approve or student not in scope
        AlreadyApprovedError: the gate is already set
        ApprovalPreconditionError: prerequisites missing (listed in ``missing``)

    Returns:
        bool: True if this approval also issued final clearance
    """
    now = now or utc_now()
    gate = check_can_approve(student, approver, catalog=catalog)
    _set_gate(student, gate, approver, now)
    current_app.logger.info(
        f"{approver.name} ({gate}) approved {student.student_number}"
    )
    return finalize_clearance(student, approver, now=now, require_year_head=require_year_head)


def deny_student(student, approver, reason, now=None):
    """
    Record a year-head denial.

    Gates stay untouched so the student remains in the year-head queue; a
    later approval clears the denial.
    """
    if Role.from_string(approver.role) != Role.YEAR_HEAD:
        raise ScopeError("Only a year head can deny final clearance.")
    if not capability_for(approver.role).in_scope(approver, student):
        raise ScopeError("This student is outside your scope.")
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to deny clearance.")

    status = _ensure_approval_status(student)
    if status.year_head_approval or student.is_cleared:
        raise InvalidTransitionError("This student has already been approved.")

    now = now or utc_now()
    status.year_head_denied = True
    status.year_head_denied_by = approver.name
    status.year_head_denied_at = now
    status.year_head_denial_reason = reason.strip()
    _record_event(student, 'year_head', 'deny', approver, notes=reason.strip(), now=now)

    current_app.logger.warning(f"{approver.name} denied clearance for {student.student_number}")
    return status


def bulk_approve(student_ids, approver, now=None, catalog=None, require_year_head=True) -> List[dict]:
    """
    Approve several students independently.

    Every precondition is checked before a student's gate is written, so a
    failing student leaves no partial state behind.

    Returns:
        list of per-student outcomes in request order
    """
    now = now or utc_now()
    catalog = catalog if catalog is not None else get_catalog()
    results = []
    seen = set()

    for student_id in student_ids:
        if student_id in seen:
            continue
        seen.add(student_id)

        student = db.session.get(Student, student_id)
        if student is None:
            results.append({
                'student_id': student_id,
                'status': 'failed',
                'code': NotFoundError.code,
                'message': "Student not found.",
            })
            continue

        try:
            cleared = approve_student(student, approver, now=now, catalog=catalog,
                                      require_year_head=require_year_head)
        except ClearanceError as exc:
            results.append({
                'student_id': student_id,
                'status': 'failed',
                'code': exc.code,
                'message': exc.message,
            })
            continue

        results.append({
            'student_id': student_id,
            'status': 'approved',
            'final_clearance': cleared,
            'confirmation_code': student.confirmation_code,
        })

    return results


# -------------------- STATION CHECKOUT --------------------

@dataclass
class CheckoutResult:
    student: Student
    completed_entries: list
    station_approved: bool = False
    final_clearance: bool = False


def checkout_items(student, staff, items, now=None, catalog=None, require_year_head=True):
    """
    Mark received items completed and auto-approve the station gate.

    Args:
        items: mapping of catalog item id to optional notes

    Raises:
        ValidationError: no items, or an unknown item id
    """
    if not items:
        raise ValidationError("Select at least one item to check out.")

    now = now or utc_now()
    catalog = catalog if catalog is not None else get_catalog()
    known = {item.id for item in catalog}
    unknown = sorted(item_id for item_id in items if item_id not in known)
    if unknown:
        raise ValidationError("Unknown clearance items.", items=unknown)

    # Items already completed keep their original receipt
    completed = []
    for item_id, notes in items.items():
        entry = student.get_item_status(item_id)
        if entry is not None and entry.status == ItemStatus.COMPLETED:
            continue
        completed.append(
            set_item_status(student, item_id, 'completed', completed_by=staff.name, notes=notes or None, now=now)
        )
    result = CheckoutResult(student=student, completed_entries=completed)

    status = _ensure_approval_status(student)
    if not status.station_staff_approval and all_required_completed(student, catalog, submission_only=True):
        _set_gate(student, 'station_staff', staff, now)
        result.station_approved = True
        result.final_clearance = finalize_clearance(student, staff, now=now, require_year_head=require_year_head)
        current_app.logger.info(f"Station checkout complete for {student.student_number}")

    return result
