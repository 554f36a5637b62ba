"""
Admin routes for the Student Clearance Tracker.

Account creation, unlock-request and sign-out review, and CSV export.
All routes require an admin session.
"""

from flask import Blueprint, Response, current_app, request
from sqlalchemy import func
from werkzeug.security import generate_password_hash

from clearance.auth import admin_required, get_current_user
from clearance.exceptions import NotFoundError, ValidationError
from clearance.extensions import db
from clearance.models import (
    AdminUnlockRequest,
    ItemRegistration,
    Role,
    SignOutRequest,
    SignOutStatus,
    Student,
    UnlockRequestStatus,
    User,
)
from clearance.routes import register_error_handlers, success, validate_form
from clearance.utils.csv_export import SHEETS, build_sheet, rows_to_csv, sheet_filename
from clearance.utils.ledger import get_catalog, register_student
from clearance.utils.login_guard import approve_unlock_request, reject_unlock_request
from clearance.utils.sign_out import review_sign_out_request
from forms import NotesForm, SignOutReviewForm, StaffUserForm, StudentRegistrationForm

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')
register_error_handlers(admin_bp)


def _get_or_404(model, record_id, message):
    record = db.session.get(model, record_id)
    if record is None:
        raise NotFoundError(message)
    return record


def _password_hash(password):
    return generate_password_hash(password or current_app.config['DEMO_PASSWORD'])


# -------------------- ACCOUNTS --------------------

@admin_bp.route('/students', methods=['POST'])
@admin_required
def create_student():
    """Register a student with their clearance ledger and login."""
    form = validate_form(StudentRegistrationForm())
    student = register_student(
        student_number=form.student_number.data,
        name=form.name.data,
        email=form.email.data,
        grade=form.grade.data,
        password_hash=_password_hash(form.password.data),
        section=form.section.data,
        hall=form.hall.data or None,
        room=form.room.data or None,
        advisor=form.advisor.data or None,
        teacher=form.teacher.data or None,
        year_head=form.year_head.data or None,
        outstanding_balance=form.outstanding_balance.data or 0.0,
    )
    db.session.commit()
    return success(201, student=student.to_dict())


@admin_bp.route('/users', methods=['GET'])
@admin_required
def list_users():
    role = request.args.get('role')
    query = User.query
    if role:
        try:
            query = query.filter_by(role=Role.from_string(role))
        except ValueError:
            raise ValidationError("Unknown role.", allowed=Role.values())
    users = query.order_by(User.name, User.id).all()
    return success(users=[user.to_dict() for user in users])


@admin_bp.route('/users', methods=['POST'])
@admin_required
def create_user():
    """Create a staff account with its role scope."""
    form = validate_form(StaffUserForm())
    email = form.email.data
    if User.query.filter(func.lower(User.email) == email).first():
        raise ValidationError("A user with this email already exists.")

    user = User(
        name=form.name.data,
        email=email,
        password_hash=_password_hash(form.password.data),
        role=Role.from_string(form.role.data),
        teacher_classes=form.teacher_classes.data or [],
        managed_halls=form.managed_halls.data or [],
        advisees=form.advisees.data or [],
        managed_grades=form.managed_grades.data or [],
    )
    db.session.add(user)
    db.session.commit()
    current_app.logger.info(f"Admin {get_current_user().email} created {user.role.value} account {user.email}")
    return success(201, user=user.to_dict())


# -------------------- UNLOCK REQUESTS --------------------

@admin_bp.route('/unlock-requests')
@admin_required
def list_unlock_requests():
    status = request.args.get('status', UnlockRequestStatus.PENDING.value)
    query = AdminUnlockRequest.query
    if status != 'all':
        try:
            query = query.filter_by(status=UnlockRequestStatus.from_string(status))
        except ValueError:
            raise ValidationError("Unknown status.", allowed=UnlockRequestStatus.values() + ['all'])
    requests_ = query.order_by(AdminUnlockRequest.requested_at.desc(), AdminUnlockRequest.id.desc()).all()
    return success(requests=[req.to_dict() for req in requests_])


@admin_bp.route('/unlock-requests/<int:request_id>/approve', methods=['POST'])
@admin_required
def approve_unlock(request_id):
    unlock_request = _get_or_404(AdminUnlockRequest, request_id, "Unlock request not found.")
    form = validate_form(NotesForm())
    approve_unlock_request(unlock_request, get_current_user(), notes=form.notes.data or None)
    db.session.commit()
    return success(request=unlock_request.to_dict())


@admin_bp.route('/unlock-requests/<int:request_id>/reject', methods=['POST'])
@admin_required
def reject_unlock(request_id):
    unlock_request = _get_or_404(AdminUnlockRequest, request_id, "Unlock request not found.")
    form = validate_form(NotesForm())
    reject_unlock_request(unlock_request, get_current_user(), notes=form.notes.data or None)
    db.session.commit()
    return success(request=unlock_request.to_dict())


# -------------------- SIGN-OUT REQUESTS --------------------

@admin_bp.route('/sign-out-requests')
@admin_required
def list_sign_out_requests():
    status = request.args.get('status')
    query = SignOutRequest.query
    if status:
        try:
            query = query.filter_by(status=SignOutStatus.from_string(status))
        except ValueError:
            raise ValidationError("Unknown status.", allowed=SignOutStatus.values())
    requests_ = query.order_by(SignOutRequest.request_date.desc(), SignOutRequest.id.desc()).all()
    return success(requests=[req.to_dict() for req in requests_])


@admin_bp.route('/sign-out-requests/<int:request_id>/review', methods=['POST'])
@admin_required
def review_sign_out(request_id):
    sign_out = _get_or_404(SignOutRequest, request_id, "Sign-out request not found.")
    form = validate_form(SignOutReviewForm())
    review_sign_out_request(sign_out, get_current_user(), form.status.data, notes=form.notes.data or None)
    db.session.commit()
    return success(request=sign_out.to_dict())


# -------------------- EXPORT --------------------

@admin_bp.route('/export/<sheet>.csv')
@admin_required
def export_sheet(sheet):
    """Export one sheet as CSV."""
    if sheet not in SHEETS:
        raise NotFoundError("Unknown export sheet.", available=list(SHEETS))

    students = Student.query.order_by(Student.name, Student.id).all()
    registrations = ItemRegistration.query.order_by(ItemRegistration.id).all()
    rows = build_sheet(sheet, students, get_catalog(), registrations)

    current_app.logger.info(f"Admin {get_current_user().email} exported {SHEETS[sheet]}")
    return Response(
        rows_to_csv(rows),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={sheet_filename(sheet)}'}
    )
