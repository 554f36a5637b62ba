from clearance.extensions import db
from clearance.models import Role, SignOutStatus, Student, User
from clearance.utils.sign_out import file_sign_out_request
from conftest import PASSWORD, login


def test_admin_routes_require_admin(client, staff, login_as):
    login_as(staff[Role.TEACHER])
    resp = client.get('/admin/users')
    assert resp.status_code == 403


def test_create_student(client, staff, catalog, login_as):
    login_as(staff[Role.ADMIN])
    payload = {
        'student_number': 'ALA2024-160',
        'name': 'Hassiet Fisseha',
        'email': 'HFisseha24@students.org',
        'grade': 'Year 2',
        'hall': 'East Wing',
        'teacher': 'Ismail Adeleke',
        'outstanding_balance': 20,
        'password': 'student-pass-1',
    }
    resp = client.post('/admin/students', json=payload)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()['student']
    assert body['email'] == 'hfisseha24@students.org'
    assert len(body['clearance_items']) == 7
    assert body['outstanding_balance'] == 20

    resp = client.post('/admin/students', json=payload)
    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'VALIDATION_ERROR'

    client.post('/auth/logout')
    assert login(client, 'hfisseha24@students.org', 'student-pass-1').status_code == 200


def test_create_student_defaults_to_demo_password(app, client, staff, catalog, login_as):
    login_as(staff[Role.ADMIN])
    resp = client.post('/admin/students', json={
        'student_number': 'ALA2024-161',
        'name': 'Yabets Abebe',
        'email': 'yabebe24@students.org',
        'grade': 'Year 1',
    })
    assert resp.status_code == 201
    client.post('/auth/logout')
    assert login(client, 'yabebe24@students.org', app.config['DEMO_PASSWORD']).status_code == 200


def test_create_staff_user(client, staff, login_as):
    login_as(staff[Role.ADMIN])
    resp = client.post('/admin/users', json={
        'name': 'Mrs. Hall',
        'email': 'hall@school.org',
        'role': 'hall_head',
        'password': PASSWORD,
    })
    assert resp.status_code == 400
    assert 'managed_halls' in resp.get_json()['errors']

    resp = client.post('/admin/users', json={
        'name': 'Mrs. Hall',
        'email': 'hall@school.org',
        'role': 'hall_head',
        'managed_halls': ['North Wing', 'South Wing'],
        'password': PASSWORD,
    })
    assert resp.status_code == 201
    assert resp.get_json()['user']['managed_halls'] == ['North Wing', 'South Wing']

    resp = client.post('/admin/users', json={'name': 'Dup', 'email': 'HALL@school.org', 'role': 'teacher'})
    assert resp.status_code == 400

    resp = client.post('/admin/users', json={'name': 'Kid', 'email': 'kid@school.org', 'role': 'student'})
    assert resp.status_code == 400

    listed = client.get('/admin/users?role=hall_head').get_json()['users']
    assert sorted(u['email'] for u in listed) == ['brown@school.org', 'hall@school.org']
    assert client.get('/admin/users?role=janitor').status_code == 400


def test_unlock_request_review(client, staff, login_as):
    teacher = staff[Role.TEACHER]
    for _ in range(6):
        login(client, teacher.email, 'wrong-password')
    client.post('/auth/unlock-request', json={'email': teacher.email})

    login_as(staff[Role.ADMIN])
    pending = client.get('/admin/unlock-requests').get_json()['requests']
    assert [r['user_email'] for r in pending] == [teacher.email]

    resp = client.post(f"/admin/unlock-requests/{pending[0]['id']}/approve", json={'notes': 'Verified by phone'})
    assert resp.status_code == 200
    assert resp.get_json()['request']['status'] == 'approved'
    db.session.expire_all()
    assert User.query.filter_by(email=teacher.email).first().is_locked is False

    resp = client.post(f"/admin/unlock-requests/{pending[0]['id']}/reject")
    assert resp.status_code == 409
    assert client.get('/admin/unlock-requests').get_json()['requests'] == []
    assert len(client.get('/admin/unlock-requests?status=all').get_json()['requests']) == 1
    assert client.post('/admin/unlock-requests/999/approve').status_code == 404


def test_sign_out_review(client, student, staff, login_as):
    sign_out = file_sign_out_request(student, 'Family emergency')
    db.session.commit()

    login_as(staff[Role.ADMIN])
    listed = client.get('/admin/sign-out-requests?status=pending').get_json()['requests']
    assert [r['student']['student_id'] for r in listed] == ['ALA2024-101']

    resp = client.post(f'/admin/sign-out-requests/{sign_out.id}/review', json={'status': 'pending'})
    assert resp.status_code == 400

    resp = client.post(f'/admin/sign-out-requests/{sign_out.id}/review',
                       json={'status': 'in_progress', 'notes': 'Checking with finance'})
    assert resp.get_json()['request']['status'] == 'in_progress'

    resp = client.post(f'/admin/sign-out-requests/{sign_out.id}/review', json={'status': 'approved'})
    assert resp.get_json()['request']['reviewed_by'] == 'Admin User'

    resp = client.post(f'/admin/sign-out-requests/{sign_out.id}/review', json={'status': 'rejected'})
    assert resp.status_code == 409
    db.session.expire_all()
    assert sign_out.status == SignOutStatus.APPROVED


def test_csv_export(client, student, staff, login_as):
    login_as(staff[Role.ADMIN])
    resp = client.get('/admin/export/student-overview.csv')
    assert resp.status_code == 200
    assert resp.mimetype == 'text/csv'
    assert 'attachment; filename=Student_Overview_' in resp.headers['Content-Disposition']
    lines = resp.get_data(as_text=True).splitlines()
    assert lines[0].startswith('Student ID,Full Name')
    assert lines[1].startswith('ALA2024-101,Ayanfe Ayanlade')

    assert client.get('/admin/export/grades.csv').status_code == 404
    assert Student.query.count() == 1
