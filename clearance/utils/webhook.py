"""
Checkout webhook.

Sends a fire-and-forget JSON notification when station staff complete a
student's checkout. Delivery is best effort: failures are logged and reported
to the caller, never retried.
"""

import requests
from flask import current_app

from clearance.utils.constants import WEBHOOK_SOURCE, WEBHOOK_VERSION
from clearance.utils.helpers import format_utc_iso, utc_now
from clearance.utils.ledger import all_required_completed, completion_percentage


def build_checkout_payload(student, completed_entries, catalog, now=None):
    """
    Build the checkout-completed payload.

    Args:
        student: Student that was checked out
        completed_entries: ClearanceStatus rows completed during the checkout
        catalog: ClearanceItem list used for names and completion maths

    Returns:
        dict: JSON-serializable payload
    """
    now = now or utc_now()
    items_by_id = {item.id: item for item in catalog}

    completed_items = []
    for entry in completed_entries:
        item = items_by_id.get(entry.item_id)
        data = {
            'id': entry.item_id,
            'name': item.name if item else entry.item_id,
            'category': item.category.value if item else None,
            'description': (item.description or '') if item else '',
            'completedAt': format_utc_iso(entry.completed_at),
            'completedBy': entry.completed_by,
        }
        if entry.notes:
            data['notes'] = entry.notes
        completed_items.append(data)

    return {
        'timestamp': format_utc_iso(now),
        'student': {
            'id': student.id,
            'name': student.name,
            'studentId': student.student_number,
            'grade': student.grade,
            'section': student.section or '',
            'email': student.email,
            'hall': student.hall,
            'room': student.room,
            'advisor': student.advisor,
            'teacher': student.teacher,
        },
        'completedItems': completed_items,
        'summary': {
            'totalItemsSubmitted': len(completed_items),
            'allRequiredItemsCompleted': all_required_completed(student, catalog),
            'completionPercentage': completion_percentage(student, catalog),
        },
        'metadata': {
            'source': WEBHOOK_SOURCE,
            'version': WEBHOOK_VERSION,
            'checkoutCompletedAt': format_utc_iso(now),
        },
    }


def send_checkout_webhook(payload):
    """
    POST the payload to WEBHOOK_URL.

    Returns:
        bool | None: True on a 2xx response, False on failure,
        None when no webhook is configured
    """
    url = current_app.config.get('WEBHOOK_URL')
    if not url:
        current_app.logger.debug("Checkout webhook skipped: WEBHOOK_URL not configured")
        return None

    timeout = current_app.config.get('WEBHOOK_TIMEOUT_SECONDS', 10)
    student_number = payload.get('student', {}).get('studentId')

    try:
        response = requests.post(url, json=payload, timeout=timeout)
    except requests.exceptions.Timeout:
        current_app.logger.warning(f"Checkout webhook timed out for {student_number}")
        return False
    except requests.exceptions.RequestException as e:
        current_app.logger.warning(f"Checkout webhook failed for {student_number}: {e}")
        return False

    if not response.ok:
        current_app.logger.warning(
            f"Checkout webhook for {student_number} returned HTTP {response.status_code}"
        )
        return False

    current_app.logger.info(f"Checkout webhook delivered for {student_number}")
    return True
