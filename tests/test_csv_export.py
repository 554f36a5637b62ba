from datetime import datetime, timezone

import pytest

from clearance.extensions import db
from clearance.models import Role
from clearance.utils.assignments import register_item, return_item
from clearance.utils.csv_export import (
    SHEETS,
    build_sheet,
    read_sheet,
    rows_to_csv,
    sanitize_csv_field,
    sheet_filename,
)
from clearance.utils.ledger import report_issue
from conftest import make_student


def test_sanitize_csv_field():
    assert sanitize_csv_field('=SUM(A1:A3)') == "'=SUM(A1:A3)"
    assert sanitize_csv_field('@cmd') == "'@cmd"
    assert sanitize_csv_field('Ayanfe Ayanlade') == 'Ayanfe Ayanlade'
    assert sanitize_csv_field(None) == ''
    assert sanitize_csv_field("'quoted") == "''quoted"


def test_sheet_filename():
    now = datetime(2024, 6, 30, 9, 0, tzinfo=timezone.utc)
    assert sheet_filename('student-overview', now) == 'Student_Overview_2024-06-30.csv'
    assert sheet_filename('approval-status', now) == 'Approval_Status_2024-06-30.csv'


def test_unknown_sheet(catalog):
    with pytest.raises(KeyError):
        build_sheet('grades', [], catalog, [])


def test_every_sheet_has_a_header(student, catalog):
    for slug in SHEETS:
        rows = build_sheet(slug, [student], catalog, [])
        assert rows[0], slug


def test_overview_survives_formula_names(catalog):
    stu = make_student('ALA2024-140', 'formula@students.org', name='=HYPERLINK("http://x")', balance=150)
    rows = build_sheet('student-overview', [stu], catalog, [])
    assert rows[1][1].startswith("'=")

    parsed = read_sheet(rows_to_csv(rows))
    header, row = parsed
    record = dict(zip(header, row))
    assert record['Full Name'] == '=HYPERLINK("http://x")'
    assert record['Outstanding Balance'] == '$150.00'
    assert record['Items Pending'] == '7'
    assert record['Overall Status'] == 'Pending'


def test_financial_status_rows(student, catalog):
    owing = make_student('ALA2024-141', 'owing@students.org', balance=42.5)
    rows = build_sheet('financial-status', [student, owing], catalog, [])
    assert rows[1][4:] == ['$0.00', 'Cleared']
    assert rows[2][4:] == ['$42.50', 'Outstanding']


def test_subject_materials_groups_registrations(student, staff, catalog):
    teacher = staff[Role.TEACHER]
    first = register_item(student, teacher, 'CALC-1', 'calculator', 'Casio', subject='Mathematics')
    second = register_item(student, teacher, 'CALC-2', 'calculator', 'Casio', subject='Mathematics')
    book = register_item(student, teacher, 'BOOK-1', 'textbook', 'Physics vol. 1', subject='Physics')
    db.session.commit()
    return_item(first, teacher, 'good')
    report_issue(student, book.id, 'damaged', 'Torn cover')
    db.session.commit()

    rows = build_sheet('subject-materials', [student], catalog, [first, second, book])
    assert rows[1:] == [
        ['Mathematics', 'calculator', '2', '1', '0', '0', '1'],
        ['Physics', 'textbook', '1', '0', '0', '1', '0'],
    ]

    assigned = build_sheet('assigned-items', [student], catalog, [first, second, book])
    assert [row[5] for row in assigned[1:]] == ['CALC-1', 'CALC-2', 'BOOK-1']
    assert assigned[3][11] == 'damaged'


@pytest.mark.parametrize('name', ["'=not a formula", "'plain apostrophe", "''", "'"])
def test_leading_apostrophes_survive_a_round_trip(catalog, name):
    stu = make_student('ALA2024-142', 'apostrophe@students.org', name=name)
    rows = build_sheet('student-overview', [stu], catalog, [])

    header, row = read_sheet(rows_to_csv(rows))
    assert dict(zip(header, row))['Full Name'] == name
