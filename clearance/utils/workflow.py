"""
Workflow aggregation: readiness, status labels and dashboard counts.

Everything here is recomputed from the ledger and approval gates on each call.
"""

from clearance.models import FinalClearanceStatus, ItemStatus
from clearance.utils.approvals import capability_for, students_in_scope
from clearance.utils.ledger import all_required_completed, completion_percentage, get_catalog

STATUS_COMPLETED = 'completed'
STATUS_ACTION_REQUIRED = 'action_required'
STATUS_AWAITING_APPROVAL = 'awaiting_approval'
STATUS_IN_PROGRESS = 'in_progress'


def is_ready_for(student, role, catalog=None):
    """True if the role's gate is still open and the student meets its prerequisites."""
    capability = capability_for(role)
    if not capability.can_approve or student.approval_status is None:
        return False
    if student.approval_status.is_approved(capability.gate):
        return False
    catalog = catalog if catalog is not None else get_catalog()
    return not capability.prerequisites(student, catalog)


def status_label(student, catalog=None):
    if student.final_clearance_status == FinalClearanceStatus.COMPLETED:
        return STATUS_COMPLETED
    if any(entry.status == ItemStatus.ACTION_REQUIRED for entry in student.clearance_items):
        return STATUS_ACTION_REQUIRED
    catalog = catalog if catalog is not None else get_catalog()
    if all_required_completed(student, catalog):
        return STATUS_AWAITING_APPROVAL
    return STATUS_IN_PROGRESS


def ready_students(user, catalog=None):
    catalog = catalog if catalog is not None else get_catalog()
    return [student for student in students_in_scope(user) if is_ready_for(student, user.role, catalog)]


def student_summary(student, role=None, catalog=None):
    """Serialize a student with the derived workflow fields."""
    catalog = catalog if catalog is not None else get_catalog()
    data = student.to_dict()
    data['completion_percentage'] = completion_percentage(student, catalog)
    data['status_label'] = status_label(student, catalog)
    if role is not None:
        data['ready_for_approval'] = is_ready_for(student, role, catalog)
    return data


def dashboard_counts(user, catalog=None):
    """Aggregate counts over the students the user may see."""
    catalog = catalog if catalog is not None else get_catalog()
    students = students_in_scope(user)
    can_approve = capability_for(user.role).can_approve

    counts = {
        'total': len(students),
        'completed': 0,
        'pending': 0,
        'finance_outstanding': 0,
        'total_outstanding_amount': 0.0,
        'items_needing_attention': 0,
        'ready_for_approval': 0 if can_approve else None,
        'by_status': {
            STATUS_COMPLETED: 0,
            STATUS_ACTION_REQUIRED: 0,
            STATUS_AWAITING_APPROVAL: 0,
            STATUS_IN_PROGRESS: 0,
        },
    }

    for student in students:
        if student.final_clearance_status == FinalClearanceStatus.COMPLETED:
            counts['completed'] += 1
        else:
            counts['pending'] += 1
        balance = student.outstanding_balance or 0.0
        if balance > 0:
            counts['finance_outstanding'] += 1
            counts['total_outstanding_amount'] += balance
        counts['items_needing_attention'] += sum(
            1 for entry in student.clearance_items if entry.status == ItemStatus.ACTION_REQUIRED
        )
        counts['by_status'][status_label(student, catalog)] += 1
        if can_approve and is_ready_for(student, user.role, catalog):
            counts['ready_for_approval'] += 1

    counts['total_outstanding_amount'] = round(counts['total_outstanding_amount'], 2)
    return counts
