"""
API routes for the Student Clearance Tracker.

JSON endpoints for every role's workflow: viewing students in scope, updating
clearance items, station checkout, approvals, teacher requirements and
registered items, and student sign-out requests.
"""

from flask import Blueprint, current_app, request

from clearance.auth import (
    APPROVER_ROLES,
    STAFF_ROLES,
    get_current_user,
    login_required,
    role_required,
)
from clearance.exceptions import NotFoundError, ScopeError, ValidationError
from clearance.extensions import db
from clearance.models import (
    ItemRegistration,
    Role,
    SignOutRequest,
    StudentRequirement,
)
from clearance.routes import register_error_handlers, success, validate_form
from clearance.utils.approvals import (
    approve_student,
    bulk_approve,
    checkout_items,
    deny_student,
    get_student_in_scope,
    students_in_scope,
)
from clearance.utils.assignments import (
    add_requirement,
    complete_requirement,
    register_item,
    resolve_registration_issue,
    return_item,
)
from clearance.utils.ledger import get_catalog, report_issue, set_item_status
from clearance.utils.sign_out import file_sign_out_request
from clearance.utils.webhook import build_checkout_payload, send_checkout_webhook
from clearance.utils.workflow import dashboard_counts, ready_students, student_summary
from forms import (
    BulkApprovalForm,
    CheckoutForm,
    DenialForm,
    ItemRegistrationForm,
    ItemStatusForm,
    NotesForm,
    ReportIssueForm,
    RequirementForm,
    ReturnItemForm,
    SignOutRequestForm,
)

api_bp = Blueprint('api', __name__, url_prefix='/api')
register_error_handlers(api_bp)


# -------------------- HELPERS --------------------

def _get_or_404(model, record_id, message):
    record = db.session.get(model, record_id)
    if record is None:
        raise NotFoundError(message)
    return record


def _own_student(user):
    """The Student linked to a student account."""
    if user.student is None:
        raise ScopeError("This account is not linked to a student record.")
    return user.student


def _require_year_head():
    return current_app.config.get('REQUIRE_YEAR_HEAD_APPROVAL', True)


# -------------------- ACCOUNT & CATALOG --------------------

@api_bp.route('/me')
@login_required
def me():
    """Current account, with live clearance progress for students."""
    user = get_current_user()
    data = user.to_dict()
    if user.role == Role.STUDENT and user.student is not None:
        data['student'] = student_summary(user.student)
    return success(user=data)


@api_bp.route('/catalog')
@login_required
def catalog():
    return success(items=[item.to_dict() for item in get_catalog()])


# -------------------- STUDENTS --------------------

@api_bp.route('/students')
@role_required(*STAFF_ROLES)
def list_students():
    """
    Students in the caller's scope.

    Optional filters: ``status`` (status label) and ``q`` (name or student ID).
    """
    user = get_current_user()
    items = get_catalog()
    status_filter = request.args.get('status')
    query = (request.args.get('q') or '').strip().lower()

    students = []
    for student in students_in_scope(user):
        if query and query not in student.name.lower() and query not in student.student_number.lower():
            continue
        summary = student_summary(student, role=user.role, catalog=items)
        if status_filter and summary['status_label'] != status_filter:
            continue
        students.append(summary)
    return success(students=students, count=len(students))


@api_bp.route('/students/ready')
@role_required(*APPROVER_ROLES)
def list_ready_students():
    """Students waiting for the caller's approval."""
    user = get_current_user()
    items = get_catalog()
    students = [student_summary(student, role=user.role, catalog=items) for student in ready_students(user, items)]
    return success(students=students, count=len(students))


@api_bp.route('/students/<int:student_id>')
@login_required
def get_student(student_id):
    user = get_current_user()
    student = get_student_in_scope(user, student_id)
    data = student_summary(student, role=user.role if user.role != Role.STUDENT else None)
    data['approval_events'] = [event.to_dict() for event in student.approval_events]
    data['requirements'] = [req.to_dict() for req in student.requirements.order_by(StudentRequirement.id)]
    return success(student=data)


@api_bp.route('/students/<int:student_id>/items/<item_id>', methods=['POST'])
@role_required(Role.STATION_STAFF, Role.TEACHER, Role.ADMIN)
def update_item_status(student_id, item_id):
    """Set the status of one clearance item for a student."""
    user = get_current_user()
    student = get_student_in_scope(user, student_id)
    form = validate_form(ItemStatusForm())

    entry = set_item_status(
        student,
        item_id,
        form.status.data,
        completed_by=user.name,
        notes=form.notes.data or None,
        outstanding_amount=form.outstanding_amount.data,
    )
    db.session.commit()
    current_app.logger.info(
        f"{user.name} set {item_id} to {entry.status.value} for {student.student_number}"
    )
    return success(item=entry.to_dict(), student=student_summary(student, role=user.role))


@api_bp.route('/students/<int:student_id>/checkout', methods=['POST'])
@role_required(Role.STATION_STAFF)
def checkout_student(student_id):
    """
    Record items received at the station.

    Body: ``{"items": ["calculator", ...], "notes": {"calculator": "..."}}``.
    Sends the checkout webhook once the station approval is granted.
    """
    user = get_current_user()
    student = get_student_in_scope(user, student_id)
    form = validate_form(CheckoutForm())

    notes = (request.get_json(silent=True) or {}).get('notes') or {}
    if not isinstance(notes, dict):
        raise ValidationError("Notes must map item ids to text.")

    items = get_catalog()
    result = checkout_items(
        student,
        user,
        {item_id: notes.get(item_id) for item_id in form.items.data},
        catalog=items,
        require_year_head=_require_year_head(),
    )
    db.session.commit()

    response = {
        'student': student_summary(student, role=user.role, catalog=items),
        'completed_items': [entry.to_dict() for entry in result.completed_entries],
        'station_approved': result.station_approved,
        'final_clearance': result.final_clearance,
        'webhook_delivered': None,
    }
    if result.station_approved:
        payload = build_checkout_payload(student, result.completed_entries, items)
        delivered = send_checkout_webhook(payload)
        response['webhook_delivered'] = delivered
        if delivered is False:
            response['warning'] = "Checkout saved, but the notification webhook could not be delivered."
    return success(**response)


# -------------------- APPROVALS --------------------

@api_bp.route('/students/<int:student_id>/approve', methods=['POST'])
@role_required(*APPROVER_ROLES)
def approve(student_id):
    user = get_current_user()
    student = get_student_in_scope(user, student_id)
    cleared = approve_student(student, user, require_year_head=_require_year_head())
    db.session.commit()
    return success(student=student_summary(student, role=user.role), final_clearance=cleared)


@api_bp.route('/students/<int:student_id>/deny', methods=['POST'])
@role_required(Role.YEAR_HEAD)
def deny(student_id):
    user = get_current_user()
    student = get_student_in_scope(user, student_id)
    form = validate_form(DenialForm())
    deny_student(student, user, form.reason.data)
    db.session.commit()
    return success(student=student_summary(student, role=user.role))


@api_bp.route('/approvals/bulk', methods=['POST'])
@role_required(*APPROVER_ROLES)
def approve_bulk():
    """Approve several students; each succeeds or fails on its own."""
    user = get_current_user()
    form = validate_form(BulkApprovalForm())
    results = bulk_approve(form.student_ids.data, user, require_year_head=_require_year_head())
    db.session.commit()

    approved = sum(1 for result in results if result['status'] == 'approved')
    current_app.logger.info(f"{user.name} bulk-approved {approved} of {len(results)} students")
    return success(results=results, approved=approved, failed=len(results) - approved)


# -------------------- DASHBOARD --------------------

@api_bp.route('/dashboard')
@role_required(*STAFF_ROLES)
def dashboard():
    return success(counts=dashboard_counts(get_current_user()))


# -------------------- REQUIREMENTS --------------------

@api_bp.route('/requirements', methods=['GET'])
@role_required(Role.TEACHER, Role.STUDENT)
def list_requirements():
    user = get_current_user()
    if user.role == Role.STUDENT:
        query = StudentRequirement.query.filter_by(student_id=_own_student(user).id)
    else:
        query = StudentRequirement.query.filter_by(teacher_id=user.id)
    requirements = query.order_by(StudentRequirement.created_at.desc(), StudentRequirement.id.desc()).all()
    return success(requirements=[req.to_dict() for req in requirements])


@api_bp.route('/requirements', methods=['POST'])
@role_required(Role.TEACHER)
def create_requirement():
    user = get_current_user()
    form = validate_form(RequirementForm())
    student = get_student_in_scope(user, form.student_id.data)
    record = add_requirement(
        student,
        user,
        form.requirement.data,
        priority=form.priority.data,
        due_date=form.due_date.data,
        notes=form.notes.data or None,
    )
    db.session.commit()
    return success(201, requirement=record.to_dict())


@api_bp.route('/requirements/<int:requirement_id>/complete', methods=['POST'])
@role_required(Role.TEACHER)
def finish_requirement(requirement_id):
    user = get_current_user()
    record = _get_or_404(StudentRequirement, requirement_id, "Requirement not found.")
    form = validate_form(NotesForm())
    complete_requirement(record, user, notes=form.notes.data or None)
    db.session.commit()
    return success(requirement=record.to_dict())


# -------------------- ITEM REGISTRATIONS --------------------

@api_bp.route('/registrations', methods=['GET'])
@role_required(Role.TEACHER, Role.STUDENT)
def list_registrations():
    user = get_current_user()
    if user.role == Role.STUDENT:
        query = ItemRegistration.query.filter_by(student_id=_own_student(user).id)
    else:
        query = ItemRegistration.query.filter_by(teacher_id=user.id)
    registrations = query.order_by(ItemRegistration.registered_at.desc(), ItemRegistration.id.desc()).all()
    return success(registrations=[reg.to_dict() for reg in registrations])


@api_bp.route('/registrations', methods=['POST'])
@role_required(Role.TEACHER)
def create_registration():
    user = get_current_user()
    form = validate_form(ItemRegistrationForm())
    student = get_student_in_scope(user, form.student_id.data)
    registration = register_item(
        student,
        user,
        form.serial_number.data,
        form.item_type.data,
        form.item_description.data,
        subject=form.subject.data or None,
    )
    db.session.commit()
    return success(201, registration=registration.to_dict())


@api_bp.route('/registrations/<int:registration_id>/return', methods=['POST'])
@role_required(Role.TEACHER)
def mark_returned(registration_id):
    user = get_current_user()
    registration = _get_or_404(ItemRegistration, registration_id, "Assigned item not found.")
    form = validate_form(ReturnItemForm())
    return_item(registration, user, form.condition.data)
    db.session.commit()
    return success(registration=registration.to_dict())


@api_bp.route('/registrations/<int:registration_id>/report-issue', methods=['POST'])
@role_required(Role.STUDENT)
def report_registration_issue(registration_id):
    user = get_current_user()
    form = validate_form(ReportIssueForm())
    registration = report_issue(_own_student(user), registration_id, form.issue_type.data, form.description.data)
    db.session.commit()
    current_app.logger.info(
        f"{user.email} reported {registration.issue_type} for item {registration.serial_number}"
    )
    return success(registration=registration.to_dict())


@api_bp.route('/registrations/<int:registration_id>/resolve', methods=['POST'])
@role_required(Role.TEACHER)
def resolve_registration(registration_id):
    user = get_current_user()
    registration = _get_or_404(ItemRegistration, registration_id, "Assigned item not found.")
    form = validate_form(NotesForm())
    resolve_registration_issue(registration, user, notes=form.notes.data or None)
    db.session.commit()
    return success(registration=registration.to_dict())


# -------------------- SIGN-OUT REQUESTS --------------------

@api_bp.route('/sign-out-requests', methods=['GET'])
@role_required(Role.STUDENT)
def list_own_sign_out_requests():
    student = _own_student(get_current_user())
    requests_ = student.sign_out_requests.order_by(SignOutRequest.request_date.desc(), SignOutRequest.id.desc()).all()
    return success(requests=[req.to_dict() for req in requests_])


@api_bp.route('/sign-out-requests', methods=['POST'])
@role_required(Role.STUDENT)
def create_sign_out_request():
    student = _own_student(get_current_user())
    form = validate_form(SignOutRequestForm())
    sign_out = file_sign_out_request(student, form.reason.data)
    db.session.commit()
    return success(201, request=sign_out.to_dict())
