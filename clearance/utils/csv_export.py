"""
CSV export of clearance data.

Six sheets are available, each written as its own CSV file:
Student Overview, Item Returns, Assigned Items, Subject Materials,
Financial Status and Approval Status.

Timestamps are written as UTC ISO-8601 so a sheet read back with
`read_sheet` reproduces every exported value.
"""

import csv
import io
from collections import OrderedDict

from clearance.models import ApprovalStatus, ItemStatus, RegistrationStatus
from clearance.utils.helpers import format_utc_iso, utc_now

_FORMULA_PREFIXES = ("=", "+", "-", "@")
_ESCAPED_PREFIXES = _FORMULA_PREFIXES + ("'",)


def sanitize_csv_field(value):
    """
    Prevent CSV injection by prefixing risky leading characters.

    A leading apostrophe is escaped too, so `unsanitize_csv_field` can always
    tell an added prefix from one that was part of the value.
    """
    if value is None:
        return ""
    text = str(value)
    if text.startswith(_ESCAPED_PREFIXES):
        return f"'{text}"
    return text


def unsanitize_csv_field(text):
    if len(text) > 1 and text[0] == "'" and text[1] in _ESCAPED_PREFIXES:
        return text[1:]
    return text


def format_money(amount):
    return f"${(amount or 0):.2f}"


def _yes_no(flag):
    return 'Yes' if flag else 'No'


def _gate_label(status, gate):
    return 'Approved' if status is not None and status.is_approved(gate) else 'Pending'


def _gate_field(status, gate, suffix):
    return getattr(status, f'{gate}_{suffix}') if status is not None else None


# -------------------- SHEETS --------------------

def student_overview_rows(students, catalog):
    required = {item.id for item in catalog if item.is_required}
    headers = [
        'Student ID', 'Full Name', 'Grade/Year Level', 'Section', 'Hall', 'Student Email',
        'Teacher', 'Advisor', 'Year Head', 'Overall Status', 'Items Completed', 'Items Pending',
        'Outstanding Balance', 'Station Staff Approval', 'Teacher Approval', 'Hall Head Approval',
        'Advisor Approval', 'Year Head Approval', 'Final Clearance Status', 'Confirmation Code',
        'Date Cleared', 'Cleared By',
    ]
    rows = [headers]
    for student in students:
        completed = sum(
            1 for entry in student.clearance_items
            if entry.item_id in required and entry.status == ItemStatus.COMPLETED
        )
        status = student.approval_status
        rows.append([
            student.student_number,
            sanitize_csv_field(student.name),
            student.grade,
            student.section or '',
            sanitize_csv_field(student.hall),
            student.email,
            sanitize_csv_field(student.teacher),
            sanitize_csv_field(student.advisor),
            sanitize_csv_field(student.year_head),
            'Cleared' if student.is_cleared else 'Pending',
            str(completed),
            str(len(required) - completed),
            format_money(student.outstanding_balance),
            *[_yes_no(status is not None and status.is_approved(gate)) for gate in ApprovalStatus.GATES],
            student.final_clearance_status.value,
            student.confirmation_code or '',
            format_utc_iso(student.final_approved_at) or '',
            sanitize_csv_field(student.final_approved_by),
        ])
    return rows


def item_returns_rows(students, catalog, registrations):
    items_by_id = {item.id: item for item in catalog}
    headers = [
        'Student ID', 'Student Name', 'Grade', 'Item Name', 'Category', 'Status',
        'Submitted/Returned At', 'Condition', 'Received By', 'Notes', 'Serial Number (if assigned)',
    ]
    rows = [headers]
    for student in students:
        student_registrations = [reg for reg in registrations if reg.student_id == student.id]
        for entry in student.clearance_items:
            item = items_by_id.get(entry.item_id)
            if item is None:
                continue
            # Assigned items are matched to catalog items by type, e.g. "textbook"
            registration = next(
                (reg for reg in student_registrations if reg.item_type.replace('_', ' ') in item.name.lower()),
                None,
            )
            rows.append([
                student.student_number,
                sanitize_csv_field(student.name),
                student.grade,
                item.name,
                item.category.value,
                entry.status.value,
                format_utc_iso(entry.completed_at) or '',
                (registration.condition if registration else None) or 'N/A',
                sanitize_csv_field(entry.completed_by),
                sanitize_csv_field(entry.notes),
                sanitize_csv_field(registration.serial_number) if registration else '',
            ])
    return rows


def assigned_items_rows(registrations):
    headers = [
        'Student ID', 'Student Name', 'Subject', 'Item Type', 'Item Description', 'Serial Number',
        'Teacher', 'Assigned At', 'Status', 'Returned At', 'Condition', 'Reported Issue Type',
        'Issue Description', 'Issue Reported At',
    ]
    rows = [headers]
    for reg in registrations:
        rows.append([
            reg.student.student_number if reg.student else '',
            sanitize_csv_field(reg.student.name) if reg.student else '',
            sanitize_csv_field(reg.subject),
            reg.item_type,
            sanitize_csv_field(reg.item_description),
            sanitize_csv_field(reg.serial_number),
            sanitize_csv_field(reg.teacher_name),
            format_utc_iso(reg.registered_at) or '',
            reg.status.value,
            format_utc_iso(reg.returned_at) or '',
            reg.condition or '',
            reg.issue_type or '',
            sanitize_csv_field(reg.issue_description),
            format_utc_iso(reg.issue_reported_at) or '',
        ])
    return rows


def subject_materials_rows(registrations):
    headers = ['Subject', 'Item Type', 'Total Assigned', 'Returned', 'Missing', 'Damaged', 'Still Assigned']
    grouped = OrderedDict()
    for reg in registrations:
        key = (reg.subject or 'General', reg.item_type)
        stats = grouped.setdefault(key, {status: 0 for status in RegistrationStatus})
        stats[reg.status] += 1

    rows = [headers]
    for (subject, item_type), stats in grouped.items():
        rows.append([
            sanitize_csv_field(subject),
            item_type,
            str(sum(stats.values())),
            str(stats[RegistrationStatus.RETURNED]),
            str(stats[RegistrationStatus.MISSING]),
            str(stats[RegistrationStatus.DAMAGED]),
            str(stats[RegistrationStatus.ASSIGNED]),
        ])
    return rows


def financial_status_rows(students):
    rows = [['Student ID', 'Student Name', 'Grade', 'Hall', 'Outstanding Balance', 'Status']]
    for student in students:
        balance = student.outstanding_balance or 0
        rows.append([
            student.student_number,
            sanitize_csv_field(student.name),
            student.grade,
            sanitize_csv_field(student.hall),
            format_money(balance),
            'Outstanding' if balance > 0 else 'Cleared',
        ])
    return rows


def approval_status_rows(students):
    headers = ['Student ID', 'Student Name', 'Grade']
    for gate in ApprovalStatus.GATES:
        label = gate.replace('_', ' ').title()
        headers.extend([label, f'{label} By', f'{label} At'])
    headers.extend(['Final Status', 'Confirmation Code'])

    rows = [headers]
    for student in students:
        status = student.approval_status
        row = [student.student_number, sanitize_csv_field(student.name), student.grade]
        for gate in ApprovalStatus.GATES:
            row.extend([
                _gate_label(status, gate),
                sanitize_csv_field(_gate_field(status, gate, 'approved_by')),
                format_utc_iso(_gate_field(status, gate, 'approved_at')) or '',
            ])
        row.extend([student.final_clearance_status.value, student.confirmation_code or ''])
        rows.append(row)
    return rows


SHEETS = OrderedDict([
    ('student-overview', 'Student Overview'),
    ('item-returns', 'Item Returns'),
    ('assigned-items', 'Assigned Items'),
    ('subject-materials', 'Subject Materials'),
    ('financial-status', 'Financial Status'),
    ('approval-status', 'Approval Status'),
])


def build_sheet(slug, students, catalog, registrations):
    """Return the rows (header first) for one sheet."""
    if slug == 'student-overview':
        return student_overview_rows(students, catalog)
    if slug == 'item-returns':
        return item_returns_rows(students, catalog, registrations)
    if slug == 'assigned-items':
        return assigned_items_rows(registrations)
    if slug == 'subject-materials':
        return subject_materials_rows(registrations)
    if slug == 'financial-status':
        return financial_status_rows(students)
    if slug == 'approval-status':
        return approval_status_rows(students)
    raise KeyError(slug)


def sheet_filename(slug, now=None):
    """e.g. ``Student_Overview_2024-06-30.csv``"""
    day = (now or utc_now()).date().isoformat()
    return f"{SHEETS[slug].replace(' ', '_')}_{day}.csv"


def rows_to_csv(rows):
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerows(rows)
    return output.getvalue()


def read_sheet(text):
    """Parse CSV text produced by `rows_to_csv` back into rows."""
    reader = csv.reader(io.StringIO(text, newline=''))
    return [[unsanitize_csv_field(cell) for cell in row] for row in reader]
