"""
Flask CLI commands for seeding data and maintenance.
"""

from datetime import timedelta

import click
from flask import current_app
from werkzeug.security import generate_password_hash

from clearance.extensions import db
from clearance.models import RequirementPriority, Role, Student, StudentRequirement, User
from clearance.utils.approvals import approve_student
from clearance.utils.helpers import school_today, utc_now
from clearance.utils.ledger import get_catalog, load_catalog, register_student, set_item_status
from clearance.utils.login_guard import release_expired_locks


DEMO_STAFF = [
    {'name': 'Admin User', 'email': 'admin@africanleadershipacademy.org', 'role': Role.ADMIN},
    {'name': 'Ismail Adeleke', 'email': 'iadeleke@africanleadershipacademy.org', 'role': Role.TEACHER,
     'teacher_classes': ['Mathematics Year 2', 'English Year 1']},
    {'name': 'Reception Staff', 'email': 'reception@africanleadershipacademy.org', 'role': Role.STATION_STAFF},
    {'name': 'Dr. Brown', 'email': 'brown@africanleadershipacademy.org', 'role': Role.HALL_HEAD,
     'managed_halls': ['East Wing', 'West Wing']},
    {'name': 'Ms. Catherine Delight', 'email': 'cdelight@africanleadershipacademy.org', 'role': Role.ADVISOR},
    {'name': 'Ms. Sebabatso', 'email': 'sthulo@africanleadershipacademy.org', 'role': Role.YEAR_HEAD},
]

DEMO_STUDENTS = [
    {'student_number': 'ALA2024-101', 'name': 'Ayanfe Ayanlade', 'email': 'aayanlade24@alastudents.org',
     'grade': 'Year 2', 'hall': 'West Wing', 'room': '204', 'outstanding_balance': 150.0},
    {'student_number': 'ALA2024-102', 'name': 'Yabets Abebe', 'email': 'yabebe24@alastudents.org',
     'grade': 'Year 1', 'hall': 'West Wing', 'room': '156', 'outstanding_balance': 0.0},
    {'student_number': 'ALA2024-103', 'name': 'Hassiet Fisseha', 'email': 'hfisseha24@alastudents.org',
     'grade': 'Year 2', 'hall': 'East Wing', 'room': '201', 'outstanding_balance': 0.0},
]


def _complete_items(student, item_ids, completed_by):
    for item_id in item_ids:
        set_item_status(student, item_id, 'completed', completed_by=completed_by)


def seed_demo_data(password):
    """
    Load the catalog, demo staff, students and requirements.

    Existing accounts and students are left untouched.

    Returns:
        dict: counts of created records
    """
    created = {'catalog_items': load_catalog(), 'users': 0, 'students': 0, 'requirements': 0}
    db.session.flush()
    password_hash = generate_password_hash(password)

    staff = {}
    for entry in DEMO_STAFF:
        user = User.query.filter_by(email=entry['email']).first()
        if user is None:
            user = User(password_hash=password_hash, **entry)
            db.session.add(user)
            created['users'] += 1
        staff[entry['role']] = user

    catalog = get_catalog()
    submission_ids = [item.id for item in catalog if item.requires_submission]
    all_ids = [item.id for item in catalog]
    reception = staff[Role.STATION_STAFF]

    new_students = []
    for entry in DEMO_STUDENTS:
        if Student.query.filter_by(student_number=entry['student_number']).first():
            continue
        student = register_student(
            password_hash=password_hash,
            advisor=staff[Role.ADVISOR].name,
            teacher=staff[Role.TEACHER].name,
            year_head=staff[Role.YEAR_HEAD].name,
            **entry,
        )
        new_students.append(student)
        created['students'] += 1
    db.session.flush()

    advisor = staff[Role.ADVISOR]
    advisor.advisees = sorted({*(advisor.advisees or []), *(s.id for s in Student.query.all())})

    for student in new_students:
        if student.student_number == 'ALA2024-101':
            set_item_status(student, 'calculator', 'completed', completed_by=reception.name,
                            notes='Calculator returned in good condition')
        elif student.student_number == 'ALA2024-102':
            _complete_items(student, all_ids, reception.name)
            approve_student(student, reception, catalog=catalog)
        elif student.student_number == 'ALA2024-103':
            _complete_items(student, submission_ids, reception.name)
            _complete_items(student, ['finance_clearance'], 'Finance Office')
            for role in (Role.STATION_STAFF, Role.TEACHER, Role.HALL_HEAD, Role.ADVISOR, Role.YEAR_HEAD):
                approve_student(student, staff[role], catalog=catalog)

    teacher = staff[Role.TEACHER]
    today = school_today(current_app.config.get('SCHOOL_TIMEZONE', 'UTC'))
    demo_requirements = [
        ('ALA2024-101', 'Complete final mathematics project submission', 'high', 10,
         'Project must include all calculations and diagrams'),
        ('ALA2024-102', 'Submit missing assignment from Chapter 5', 'medium', 7, None),
    ]
    for student in new_students:
        for number, text, priority, days, notes in demo_requirements:
            if student.student_number != number:
                continue
            db.session.add(StudentRequirement(
                student_id=student.id,
                teacher_id=teacher.id,
                teacher_name=teacher.name,
                requirement=text,
                priority=RequirementPriority.from_string(priority),
                due_date=today + timedelta(days=days),
                notes=notes,
                created_at=utc_now(),
            ))
            created['requirements'] += 1

    return created


@click.command('seed-catalog')
def seed_catalog_command():
    """Load the default clearance catalog."""
    try:
        created = load_catalog()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        click.echo(f"✗ Failed to load catalog: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ Catalog loaded ({created} new items)")


@click.command('seed-demo')
@click.option('--password', default=None, help='Password for demo accounts (defaults to DEMO_PASSWORD)')
def seed_demo_command(password):
    """Load demo students, staff accounts and requirements."""
    password = password or current_app.config['DEMO_PASSWORD']
    try:
        created = seed_demo_data(password)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        click.echo(f"✗ Failed to seed demo data: {e}", err=True)
        raise SystemExit(1)

    click.echo("✓ Demo data loaded")
    for key, count in created.items():
        click.echo(f"  {key.replace('_', ' ')}: {count}")


@click.command('release-expired-locks')
def release_expired_locks_command():
    """Unlock accounts whose lock has expired."""
    try:
        released = release_expired_locks()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        click.echo(f"✗ Failed to release locks: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ Released {released} expired lock(s)")


def init_app(app):
    """Register CLI commands with Flask app."""
    app.cli.add_command(seed_catalog_command)
    app.cli.add_command(seed_demo_command)
    app.cli.add_command(release_expired_locks_command)
