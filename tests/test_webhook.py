from datetime import datetime, timezone

import pytest
import requests

from clearance.models import Role
from clearance.utils.approvals import checkout_items
from clearance.utils.webhook import build_checkout_payload, send_checkout_webhook
from conftest import submission_ids

WEBHOOK_URL = 'https://hooks.example.org/clearance'


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300


@pytest.fixture
def checkout(student, staff, catalog):
    items = {item_id: None for item_id in submission_ids(catalog)}
    items['uniform'] = 'Blazer missing a button'
    return checkout_items(student, staff[Role.STATION_STAFF], items, catalog=catalog)


def test_payload_shape(student, catalog, checkout):
    now = datetime(2024, 6, 30, 14, 5, tzinfo=timezone.utc)
    payload = build_checkout_payload(student, checkout.completed_entries, catalog, now=now)

    assert payload['timestamp'] == '2024-06-30T14:05:00Z'
    assert payload['student']['studentId'] == 'ALA2024-101'
    assert payload['student']['name'] == 'Ayanfe Ayanlade'
    assert payload['summary'] == {
        'totalItemsSubmitted': 6,
        'allRequiredItemsCompleted': False,
        'completionPercentage': 86,
    }
    assert payload['metadata']['source'] == 'station_staff_interface'

    uniform = next(item for item in payload['completedItems'] if item['id'] == 'uniform')
    assert uniform['name'] == 'Uniform'
    assert uniform['completedBy'] == 'Reception Staff'
    assert uniform['notes'] == 'Blazer missing a button'
    calculator = next(item for item in payload['completedItems'] if item['id'] == 'calculator')
    assert 'notes' not in calculator


def test_webhook_skipped_without_url(app, student, catalog, checkout, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("webhook should not be called")
    monkeypatch.setattr(requests, 'post', fail)
    payload = build_checkout_payload(student, checkout.completed_entries, catalog)
    assert send_checkout_webhook(payload) is None


def test_webhook_delivered(app, student, catalog, checkout, monkeypatch):
    app.config['WEBHOOK_URL'] = WEBHOOK_URL
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json, timeout))
        return FakeResponse(200)

    monkeypatch.setattr(requests, 'post', fake_post)
    payload = build_checkout_payload(student, checkout.completed_entries, catalog)

    assert send_checkout_webhook(payload) is True
    assert calls == [(WEBHOOK_URL, payload, 10)]


@pytest.mark.parametrize('outcome', [
    FakeResponse(500),
    requests.exceptions.Timeout('slow'),
    requests.exceptions.ConnectionError('refused'),
])
def test_webhook_failures_return_false(app, student, catalog, checkout, monkeypatch, outcome):
    app.config['WEBHOOK_URL'] = WEBHOOK_URL

    def fake_post(*args, **kwargs):
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(requests, 'post', fake_post)
    payload = build_checkout_payload(student, checkout.completed_entries, catalog)
    assert send_checkout_webhook(payload) is False
