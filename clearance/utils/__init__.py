"""
Utility modules for the Student Clearance Tracker.

This package contains the clearance workflow and supporting helpers:
- helpers: date/time and list-parsing helpers shared by models and routes
- constants: catalog defaults and login-guard limits
- ledger: per-student item statuses and assigned-item issues
- approvals: role capability table and the approval state machine
- workflow: readiness, status labels and dashboard counts
- login_guard: failed-login tracking, account locks and unlock requests
- webhook: checkout-completed notification
- csv_export: CSV sheets for administrators
- assignments: teacher requirements and registered items
- sign_out: early sign-out requests
"""

from clearance.utils.helpers import format_utc_iso, as_utc, utc_now
from clearance.utils.constants import DEFAULT_CATALOG

__all__ = [
    'format_utc_iso',
    'as_utc',
    'utc_now',
    'DEFAULT_CATALOG',
]
