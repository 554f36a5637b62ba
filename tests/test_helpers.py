from datetime import date, datetime, timezone

import pytest

from clearance.exceptions import AlreadyApprovedError, ApprovalPreconditionError, ScopeError
from clearance.utils.helpers import format_utc_iso, parse_name_list, sanitize_text, school_today


def test_format_utc_iso_treats_naive_values_as_utc():
    assert format_utc_iso(datetime(2024, 6, 30, 12, 0)) == '2024-06-30T12:00:00Z'
    assert format_utc_iso(None) is None


def test_school_today_uses_local_calendar():
    late_evening_utc = datetime(2024, 6, 30, 23, 30, tzinfo=timezone.utc)
    assert school_today('Africa/Johannesburg', late_evening_utc) == date(2024, 7, 1)
    assert school_today('UTC', late_evening_utc) == date(2024, 6, 30)


@pytest.mark.parametrize('value, expected', [
    ('East Wing, West Wing', ['East Wing', 'West Wing']),
    (['Year 1', ' Year 2 ', ''], ['Year 1', 'Year 2']),
    (None, []),
])
def test_parse_name_list(value, expected):
    assert parse_name_list(value) == expected


def test_sanitize_text_strips_markup():
    assert sanitize_text('  <script>alert(1)</script>Returned ') == 'alert(1)Returned'
    assert sanitize_text(None) is None


def test_error_payloads():
    error = ApprovalPreconditionError("Student is not ready for approval.", missing=['x'])
    assert error.to_dict() == {
        'status': 'error',
        'code': 'APPROVAL_PRECONDITION_FAILED',
        'message': 'Student is not ready for approval.',
        'missing': ['x'],
    }
    assert AlreadyApprovedError.http_status == 409
    assert ScopeError("nope").http_status == 403
