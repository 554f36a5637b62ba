from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, Field
from wtforms.validators import DataRequired, ValidationError, Length, Regexp, NumberRange
from wtforms import TextAreaField, FloatField, SelectField, IntegerField, DateField
from wtforms.validators import Optional
from wtforms.widgets import TextInput

from clearance.models import ItemStatus, RequirementPriority, Role, SignOutStatus
from clearance.utils.helpers import parse_name_list, sanitize_text


EMAIL_PATTERN = r'^[^@\s<>]+@[^@\s<>]+\.[A-Za-z]{2,}$'


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _lower(value):
    return value.strip().lower() if isinstance(value, str) else value


class ApiForm(FlaskForm):
    """JSON or form-encoded input. CSRF is enforced app-wide by CSRFProtect."""

    class Meta:
        csrf = False


class NameListField(Field):
    """Accepts a JSON list or a comma-separated string."""
    widget = TextInput()

    def _value(self):
        return ', '.join(str(value) for value in self.data or [])

    def process_formdata(self, valuelist):
        self.data = []
        for value in valuelist:
            self.data.extend(parse_name_list(value))


class IntegerListField(NameListField):
    def process_formdata(self, valuelist):
        super().process_formdata(valuelist)
        try:
            self.data = [int(value) for value in self.data]
        except ValueError:
            self.data = []
            raise ValueError(self.gettext('Not a valid list of integers.'))


# -------------------- AUTH FORMS --------------------

class LoginForm(ApiForm):
    email = StringField('Email', filters=[_lower], validators=[DataRequired(), Regexp(EMAIL_PATTERN, message='Invalid email address.')])
    password = PasswordField('Password', validators=[DataRequired()])


class UnlockRequestForm(ApiForm):
    email = StringField('Email', filters=[_lower], validators=[DataRequired(), Regexp(EMAIL_PATTERN, message='Invalid email address.')])
    notes = TextAreaField('Message for the administrator', filters=[sanitize_text], validators=[Optional(), Length(max=1000)])


# -------------------- CLEARANCE FORMS --------------------

class ItemStatusForm(ApiForm):
    status = SelectField('Status', choices=[(value, value) for value in ItemStatus.values()], validators=[DataRequired()])
    notes = TextAreaField('Notes', filters=[sanitize_text], validators=[Optional(), Length(max=1000)])
    outstanding_amount = FloatField('Outstanding Amount', validators=[Optional(), NumberRange(min=0)])


class CheckoutForm(ApiForm):
    items = NameListField('Items Received', validators=[DataRequired()])


class DenialForm(ApiForm):
    reason = TextAreaField('Reason', filters=[sanitize_text], validators=[DataRequired(), Length(max=1000)])


class BulkApprovalForm(ApiForm):
    student_ids = IntegerListField('Students', validators=[DataRequired()])


class NotesForm(ApiForm):
    notes = TextAreaField('Notes', filters=[sanitize_text], validators=[Optional(), Length(max=1000)])


# -------------------- TEACHER FORMS --------------------

class RequirementForm(ApiForm):
    student_id = IntegerField('Student', validators=[DataRequired()])
    requirement = TextAreaField('Requirement', filters=[sanitize_text], validators=[DataRequired(), Length(max=1000)])
    priority = SelectField('Priority', choices=[(value, value) for value in RequirementPriority.values()],
                           default=RequirementPriority.MEDIUM.value, validators=[Optional()])
    due_date = DateField('Due Date', format='%Y-%m-%d', validators=[Optional()])
    notes = TextAreaField('Notes', filters=[sanitize_text], validators=[Optional(), Length(max=1000)])


class ItemRegistrationForm(ApiForm):
    student_id = IntegerField('Student', validators=[DataRequired()])
    serial_number = StringField('Serial Number', filters=[sanitize_text], validators=[DataRequired(), Length(max=80)])
    item_type = SelectField('Item Type', choices=[
        ('calculator', 'Calculator'),
        ('textbook', 'Textbook'),
        ('it_equipment', 'IT Equipment'),
        ('sports_equipment', 'Sports Equipment'),
    ], validators=[DataRequired()])
    item_description = TextAreaField('Description', filters=[sanitize_text], validators=[DataRequired(), Length(max=500)])
    subject = StringField('Subject', filters=[sanitize_text], validators=[Optional(), Length(max=80)])


class ReturnItemForm(ApiForm):
    condition = SelectField('Condition', choices=[
        ('good', 'Good'),
        ('fair', 'Fair'),
        ('damaged', 'Damaged'),
    ], validators=[DataRequired()])


class ReportIssueForm(ApiForm):
    issue_type = SelectField('Issue', choices=[
        ('missing', 'Missing'),
        ('damaged', 'Damaged'),
    ], validators=[DataRequired()])
    description = TextAreaField('Description', filters=[sanitize_text], validators=[DataRequired(), Length(max=1000)])


# -------------------- SIGN-OUT FORMS --------------------

class SignOutRequestForm(ApiForm):
    reason = TextAreaField('Reason', filters=[sanitize_text], validators=[DataRequired(), Length(max=1000)])


class SignOutReviewForm(ApiForm):
    status = SelectField('Status', choices=[
        (value, value) for value in SignOutStatus.values() if value != SignOutStatus.PENDING.value
    ], validators=[DataRequired()])
    notes = TextAreaField('Notes', filters=[sanitize_text], validators=[Optional(), Length(max=1000)])


# -------------------- ADMIN FORMS --------------------

class StudentRegistrationForm(ApiForm):
    student_number = StringField('Student ID', filters=[_strip], validators=[DataRequired(), Length(max=40)])
    name = StringField('Full Name', filters=[sanitize_text], validators=[DataRequired(), Length(max=120)])
    email = StringField('Email', filters=[_lower], validators=[DataRequired(), Regexp(EMAIL_PATTERN, message='Invalid email address.')])
    grade = StringField('Grade', filters=[_strip], validators=[DataRequired(), Length(max=40)])
    section = StringField('Section', filters=[_strip], validators=[Optional(), Length(max=40)])
    hall = StringField('Hall', filters=[sanitize_text], validators=[Optional(), Length(max=80)])
    room = StringField('Room', filters=[_strip], validators=[Optional(), Length(max=20)])
    advisor = StringField('Advisor', filters=[sanitize_text], validators=[Optional(), Length(max=120)])
    teacher = StringField('Teacher(s)', filters=[sanitize_text], validators=[Optional(), Length(max=255)])
    year_head = StringField('Year Head', filters=[sanitize_text], validators=[Optional(), Length(max=120)])
    outstanding_balance = FloatField('Outstanding Balance', default=0.0, validators=[Optional(), NumberRange(min=0)])
    password = PasswordField('Password (defaults to the demo password)', validators=[Optional(), Length(min=8, max=128)])


STAFF_ROLE_CHOICES = [(role.value, role.value.replace('_', ' ').title()) for role in Role if role != Role.STUDENT]


class StaffUserForm(ApiForm):
    name = StringField('Full Name', filters=[sanitize_text], validators=[DataRequired(), Length(max=120)])
    email = StringField('Email', filters=[_lower], validators=[DataRequired(), Regexp(EMAIL_PATTERN, message='Invalid email address.')])
    role = SelectField('Role', choices=STAFF_ROLE_CHOICES, validators=[DataRequired()])
    password = PasswordField('Password (defaults to the demo password)', validators=[Optional(), Length(min=8, max=128)])
    teacher_classes = NameListField('Classes')
    managed_halls = NameListField('Managed Halls')
    advisees = IntegerListField('Advisees (student record ids)')
    managed_grades = NameListField('Managed Grades')

    def validate_managed_halls(self, field):
        """Hall heads must manage at least one hall."""
        if self.role.data == Role.HALL_HEAD.value and not field.data:
            raise ValidationError('At least one hall is required for a hall head.')
