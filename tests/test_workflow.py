from clearance.extensions import db
from clearance.models import Role
from clearance.utils.approvals import approve_student
from clearance.utils.workflow import (
    STATUS_ACTION_REQUIRED,
    STATUS_AWAITING_APPROVAL,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    dashboard_counts,
    is_ready_for,
    ready_students,
    status_label,
    student_summary,
)
from conftest import all_ids, complete_items, make_student, submission_ids


def _clear(student, staff):
    for role in (Role.STATION_STAFF, Role.TEACHER, Role.HALL_HEAD, Role.ADVISOR, Role.YEAR_HEAD):
        approve_student(student, staff[role])
    db.session.commit()


def test_status_labels(student, staff, catalog):
    assert status_label(student, catalog) == STATUS_IN_PROGRESS

    owing = make_student('ALA2024-130', 'owing@students.org', balance=40)
    assert status_label(owing, catalog) == STATUS_ACTION_REQUIRED

    complete_items(student, all_ids(catalog))
    assert status_label(student, catalog) == STATUS_AWAITING_APPROVAL

    _clear(student, staff)
    assert status_label(student, catalog) == STATUS_COMPLETED


def test_readiness_follows_the_gate_order(student, staff, catalog):
    complete_items(student, submission_ids(catalog))
    assert is_ready_for(student, Role.STATION_STAFF, catalog)
    assert not is_ready_for(student, Role.TEACHER, catalog)
    assert not is_ready_for(student, Role.ADMIN, catalog)

    complete_items(student, ['finance_clearance'])
    approve_student(student, staff[Role.STATION_STAFF])
    db.session.commit()
    assert not is_ready_for(student, Role.STATION_STAFF, catalog)
    for role in (Role.TEACHER, Role.HALL_HEAD, Role.ADVISOR):
        assert is_ready_for(student, role, catalog), role
        assert [s.id for s in ready_students(staff[role], catalog)] == [student.id]
    assert ready_students(staff[Role.YEAR_HEAD], catalog) == []

    approve_student(student, staff[Role.HALL_HEAD])
    db.session.commit()
    assert not is_ready_for(student, Role.HALL_HEAD, catalog)
    assert is_ready_for(student, Role.TEACHER, catalog)
    assert is_ready_for(student, Role.ADVISOR, catalog)


def test_student_summary_adds_derived_fields(student, catalog):
    complete_items(student, ['calculator'])
    summary = student_summary(student, role=Role.STATION_STAFF, catalog=catalog)
    assert summary['student_id'] == 'ALA2024-101'
    assert summary['completion_percentage'] == 14
    assert summary['status_label'] == STATUS_IN_PROGRESS
    assert summary['ready_for_approval'] is False
    assert 'ready_for_approval' not in student_summary(student, catalog=catalog)


def test_dashboard_counts_for_admin(student, staff, catalog):
    make_student('ALA2024-131', 'owing@students.org', balance=150)
    make_student('ALA2024-132', 'owing2@students.org', balance=25.25)

    counts = dashboard_counts(staff[Role.ADMIN], catalog)
    assert counts['total'] == 3
    assert counts['completed'] == 0
    assert counts['pending'] == 3
    assert counts['finance_outstanding'] == 2
    assert counts['total_outstanding_amount'] == 175.25
    assert counts['items_needing_attention'] == 2
    assert counts['ready_for_approval'] is None
    assert counts['by_status'][STATUS_ACTION_REQUIRED] == 2
    assert counts['by_status'][STATUS_IN_PROGRESS] == 1


def test_dashboard_counts_respect_scope(student, staff, catalog):
    make_student('ALA2024-133', 'east@students.org', hall='East Wing')
    complete_items(student, all_ids(catalog))
    _clear(student, staff)

    hall_head = dashboard_counts(staff[Role.HALL_HEAD], catalog)
    assert hall_head['total'] == 1
    assert hall_head['completed'] == 1
    assert hall_head['ready_for_approval'] == 0

    station = dashboard_counts(staff[Role.STATION_STAFF], catalog)
    assert station['total'] == 2
    assert station['by_status'][STATUS_COMPLETED] == 1
