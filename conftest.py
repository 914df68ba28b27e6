"""
Pytest configuration and fixtures.
"""

import pytest
from django.contrib.auth import get_user_model

User = get_user_model()


@pytest.fixture
def user(db):
    """Create a test user."""
    return User.objects.create_user(
        username='testuser',
        email='test@example.com',
        password='testpass123'
    )


@pytest.fixture
def other_user(db):
    return User.objects.create_user(
        username='otheruser',
        email='other@example.com',
        password='testpass123'
    )


@pytest.fixture
def authenticated_client(client, user):
    """Return a client with an authenticated user."""
    client.force_login(user)
    return client


@pytest.fixture
def location(db):
    """Create a test location that matches the Gilbert entry of raw_payload."""
    from core.models import Location
    return Location.objects.create(
        name='Gilbert',
        external_id='loc-1',
        address='123 Main St, Gilbert AZ',
    )


@pytest.fixture
def phoenix_location(db):
    from core.models import Location
    return Location.objects.create(
        name='Phoenix-Ahwatukee',
        external_id='loc-2',
    )


@pytest.fixture
def raw_payload():
    """A small canonical Greyfinch payload for January 2025."""
    gilbert = {'id': 'loc-1', 'name': 'Gilbert'}
    phoenix = {'id': 'loc-2', 'name': 'Phoenix-Ahwatukee'}
    return {
        'locations': {
            'gilbert': gilbert,
            'phoenix': phoenix,
        },
        'patients': [
            {'id': 'p1', 'createdAt': '2025-01-03T10:00:00Z', 'referralSource': 'Google Ads',
             'primaryLocation': gilbert, 'treatments': [{'id': 't1', 'status': 'active'}]},
            {'id': 'p2', 'createdAt': '2025-01-10T10:00:00Z', 'referralSource': 'Dr. Smith referral',
             'primaryLocation': gilbert, 'treatments': []},
            {'id': 'p3', 'createdAt': '2025-01-15T10:00:00Z', 'referralSource': None,
             'primaryLocation': phoenix},
            {'id': 'p4', 'createdAt': '2025-01-20T10:00:00Z', 'referralSource': 'Instagram',
             'primaryLocation': {'id': 'loc-99', 'name': 'Mesa'}},
        ],
        'appointments': [
            {'id': 'a1', 'patientId': 'p1', 'location': gilbert, 'status': 'completed',
             'scheduledDate': '2025-01-05T09:00:00Z', 'production': '1000', 'revenue': 800, 'cost': 200},
            {'id': 'a2', 'patientId': 'p2', 'location': gilbert, 'status': 'no-show',
             'scheduledDate': '2025-01-12T09:00:00Z', 'production': 0, 'revenue': 0},
            {'id': 'a3', 'patientId': 'p3', 'locationId': 'loc-2', 'status': 'completed',
             'scheduledDate': '2025-01-18T09:00:00Z', 'productionAmount': 500, 'fee': 400, 'cost': 'n/a'},
        ],
        'leads': [
            {'id': 'l1', 'source': 'Facebook', 'status': 'open', 'createdAt': '2025-01-04T12:00:00Z',
             'location': gilbert},
            {'id': 'l2', 'source': 'Google', 'status': 'converted', 'createdAt': '2025-01-06T12:00:00Z',
             'patientId': 'p1', 'location': gilbert},
        ],
        'appointmentBookings': [
            {'id': 'b1', 'startTime': '2025-01-25T09:00:00Z', 'status': 'scheduled',
             'appointment': {'id': 'a9', 'patientId': 'p3', 'location': phoenix}},
        ],
        'revenue': [
            {'id': 'r1', 'date': '2025-01-31', 'amount': '1000.50', 'location': gilbert},
        ],
        'production': [
            {'id': 'pr1', 'date': '2025-01-31', 'productionAmount': 250, 'locationId': 'loc-2'},
        ],
    }


@pytest.fixture
def make_snapshot(raw_payload):
    """Build an AnalyticsSnapshot for January 2025 without touching Greyfinch or the database."""
    from datetime import date
    from decimal import Decimal

    from analytics.costs import CostSummary
    from analytics.fallback import build_fallback_payload
    from analytics.processor import MultiLocationDataProcessor
    from analytics.snapshots import FALLBACK, LIVE, PeriodConfig, assemble

    def factory(label='January', fallback=False, cost_total='500'):
        period = PeriodConfig(
            start_date=date(2025, 1, 1), end_date=date(2025, 1, 31), label=label, id=label.lower(),
        )
        payload = build_fallback_payload(period.start_date, period.end_date) if fallback else raw_payload
        processed = MultiLocationDataProcessor().process(payload, period.start_date, period.end_date)
        costs = CostSummary(totals={'manual': Decimal(cost_total), 'total': Decimal(cost_total)})
        status = FALLBACK if fallback else LIVE
        reason = 'upstream_error: down' if fallback else None
        return assemble(period, processed, costs, status, fallback_reason=reason)

    return factory
