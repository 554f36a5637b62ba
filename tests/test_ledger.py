"""
Tests for the clearance ledger: catalog loading, registration, item status
writes, completion maths and issue reports on assigned items.
"""

import pytest

from clearance.exceptions import InvalidTransitionError, NotFoundError, ScopeError, ValidationError
from clearance.extensions import db
from clearance.models import ClearanceStatus, ItemStatus, RegistrationStatus, Role
from clearance.utils.assignments import register_item, return_item
from clearance.utils.ledger import (
    all_required_completed,
    completion_percentage,
    get_catalog,
    load_catalog,
    report_issue,
    resolve_issue,
    set_item_status,
)
from conftest import complete_items, make_student, submission_ids


def test_load_catalog_is_idempotent(client):
    assert load_catalog() == 7
    db.session.commit()
    assert load_catalog() == 0
    ids = [item.id for item in get_catalog()]
    assert ids[0] == 'calculator'
    assert ids[-1] == 'finance_clearance'


def test_register_student_creates_ledger_gates_and_account(student, catalog):
    assert len(student.clearance_items) == len(catalog)
    assert {entry.status for entry in student.clearance_items} == {ItemStatus.PENDING}
    assert student.approval_status is not None
    assert not any(student.approval_status.is_approved(gate) for gate in student.approval_status.GATES)
    assert student.user.role == Role.STUDENT
    assert student.user.email == 'aayanlade24@students.org'


def test_register_student_with_balance_flags_finance(catalog):
    stu = make_student('ALA2024-200', 'owing@students.org', balance=150)
    finance = stu.get_item_status('finance_clearance')
    assert finance.status == ItemStatus.ACTION_REQUIRED
    assert finance.outstanding_amount == 150
    assert stu.outstanding_balance == 150


def test_register_student_rejects_duplicates(student):
    with pytest.raises(ValidationError):
        make_student('ALA2024-101', 'other@students.org')
    db.session.rollback()
    with pytest.raises(ValidationError):
        make_student('ALA2024-999', 'AAYANLADE24@students.org')


def test_register_student_rejects_negative_balance(catalog):
    with pytest.raises(ValidationError):
        make_student('ALA2024-300', 'neg@students.org', balance=-5)


def test_set_item_status_updates_in_place(student):
    set_item_status(student, 'calculator', 'completed', completed_by='Reception Staff', notes='Good condition')
    db.session.commit()
    entry = set_item_status(student, 'calculator', 'completed', completed_by='Reception Staff')
    db.session.commit()

    assert ClearanceStatus.query.filter_by(student_id=student.id, item_id='calculator').count() == 1
    assert entry.completed_at is not None
    assert entry.notes is None

    entry = set_item_status(student, 'calculator', 'pending')
    assert entry.completed_at is None


def test_finance_item_keeps_balance_in_sync(student):
    set_item_status(student, 'finance_clearance', 'action_required', outstanding_amount=75.5)
    assert student.outstanding_balance == 75.5

    entry = set_item_status(student, 'finance_clearance', 'completed', completed_by='Finance Office',
                            outstanding_amount=75.5)
    assert entry.outstanding_amount is None
    assert student.outstanding_balance == 0.0


def test_finance_update_without_amount_keeps_the_debt(catalog):
    stu = make_student('ALA2024-201', 'partial@students.org', balance=150)

    entry = set_item_status(stu, 'finance_clearance', 'pending', notes='Partial payment promised')
    assert entry.outstanding_amount == 150
    assert stu.outstanding_balance == 150

    set_item_status(stu, 'finance_clearance', 'action_required', outstanding_amount=60)
    assert stu.outstanding_balance == 60

    set_item_status(stu, 'finance_clearance', 'completed', completed_by='Finance Office')
    assert stu.outstanding_balance == 0.0


def test_set_item_status_rejects_bad_input(student):
    with pytest.raises(NotFoundError):
        set_item_status(student, 'library_card', 'completed')
    with pytest.raises(ValidationError):
        set_item_status(student, 'calculator', 'lost')
    with pytest.raises(ValidationError):
        set_item_status(student, 'finance_clearance', 'action_required', outstanding_amount=-1)


def test_completion_percentage_counts_required_items(student, catalog):
    assert completion_percentage(student, catalog) == 0
    complete_items(student, ['calculator'])
    # 1 of 7 = 14.28
    assert completion_percentage(student, catalog) == 14
    complete_items(student, [item.id for item in catalog])
    assert completion_percentage(student, catalog) == 100


def test_completion_percentage_rounds_half_up(client):
    load_catalog([
        {'id': f'item_{n}', 'name': f'Item {n}', 'category': 'other_requirements'}
        for n in range(8)
    ])
    db.session.commit()
    stu = make_student('ALA2024-400', 'eight@students.org')
    complete_items(stu, ['item_0'])
    # 1 of 8 = 12.5
    assert completion_percentage(stu) == 13


def test_catalog_without_required_items(client):
    load_catalog([{'id': 'optional', 'name': 'Optional', 'category': 'administrative', 'is_required': False}])
    db.session.commit()
    stu = make_student('ALA2024-500', 'optional@students.org')
    complete_items(stu, ['optional'])
    assert completion_percentage(stu) == 0
    assert all_required_completed(stu) is False


def test_submission_only_completion(student, catalog):
    complete_items(student, submission_ids(catalog))
    assert all_required_completed(student, catalog, submission_only=True)
    assert not all_required_completed(student, catalog)


# -------------------- ASSIGNED ITEM ISSUES --------------------

@pytest.fixture
def registration(student, staff):
    reg = register_item(student, staff[Role.TEACHER], 'CALC-0042', 'calculator', 'Casio fx-991', subject='Mathematics')
    db.session.commit()
    return reg


def test_report_and_resolve_issue(student, registration):
    report_issue(student, registration.id, 'missing', 'Left it on the bus')
    db.session.commit()
    assert registration.status == RegistrationStatus.MISSING
    assert registration.reported_issue['resolved'] is False

    resolve_issue(registration, 'Ismail Adeleke', notes='Replacement paid')
    assert registration.issue_resolved is True
    assert registration.status == RegistrationStatus.MISSING
    with pytest.raises(InvalidTransitionError):
        resolve_issue(registration, 'Ismail Adeleke')


def test_report_issue_checks_ownership_and_state(student, registration, staff):
    other = make_student('ALA2024-102', 'yabebe24@students.org')
    with pytest.raises(ScopeError):
        report_issue(other, registration.id, 'damaged', 'Cracked screen')
    with pytest.raises(ValidationError):
        report_issue(student, registration.id, 'stolen', 'Gone')
    with pytest.raises(NotFoundError):
        report_issue(student, 9999, 'missing', 'Gone')

    return_item(registration, staff[Role.TEACHER], 'good')
    with pytest.raises(InvalidTransitionError):
        report_issue(student, registration.id, 'damaged', 'Cracked screen')
