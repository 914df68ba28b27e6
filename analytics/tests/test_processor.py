import math
from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from analytics.processor import (
    LocationAggregate,
    MultiLocationDataProcessor,
    calculate_financial_metrics,
    classify_referral_source,
    filter_by_date,
    percentages,
    resolve_locations,
    week_label,
)
from analytics.records import parse_payload


@pytest.mark.parametrize('source,expected', [
    ('Google Ads', 'digital'),
    ('FACEBOOK campaign', 'digital'),
    ('Practice website', 'digital'),
    ('Dr. Smith referral', 'professional'),
    ('Referred by dentist', 'professional'),
    ('Walk-in', 'direct'),
    ('', 'direct'),
    (None, 'direct'),
    (42, 'direct'),
])
def test_classify_referral_source(source, expected):
    assert classify_referral_source(source) == expected


def test_classification_prefers_digital_over_professional():
    """A source matching both vocabularies is digital."""
    assert classify_referral_source('Google search for a doctor') == 'digital'


def test_classification_is_total():
    sources = ['Google', 'doctor', None, '', '   ', 'Radio', 'dr. jones', 'meta ads', 123]
    for source in sources:
        assert classify_referral_source(source) in ('digital', 'professional', 'direct')


def test_classification_uses_configured_keywords(settings):
    settings.REFERRAL_SOURCE_KEYWORDS = {
        'digital': ['tiktok'],
        'professional': ['orthodontist'],
    }
    processor = MultiLocationDataProcessor()

    assert processor.classify('TikTok video') == 'digital'
    assert processor.classify('Google Ads') == 'direct'
    assert processor.classify('Orthodontist referral') == 'professional'


def test_week_label():
    assert week_label(datetime(2025, 1, 1)) == 'Week 1, 2025'
    assert week_label(datetime(2025, 1, 3, 10)) == 'Week 1, 2025'
    assert week_label(datetime(2025, 1, 8)) == 'Week 1, 2025'
    assert week_label(datetime(2025, 1, 8, 0, 1)) == 'Week 2, 2025'
    assert week_label(datetime(2024, 12, 31, 12)) == 'Week 53, 2024'


@pytest.mark.parametrize('counts', [
    {'digital': 1, 'professional': 1, 'direct': 1},
    {'digital': 2, 'professional': 1, 'direct': 0},
    {'digital': 7, 'professional': 5, 'direct': 3},
    {'digital': 40, 'professional': 35, 'direct': 25},
    {'digital': 1, 'professional': 0, 'direct': 0},
])
def test_percentages_sum_to_100(counts):
    result = percentages(counts)
    assert sum(result.values()) == 100
    assert all(isinstance(v, int) for v in result.values())


def test_percentages_empty_are_zero():
    assert percentages({'digital': 0, 'professional': 0, 'direct': 0}) == {
        'digital': 0, 'professional': 0, 'direct': 0,
    }


def test_roi_is_zero_without_acquisition_cost():
    aggregates = [LocationAggregate(
        location_key='gilbert', name='Gilbert',
        revenue_total=Decimal('8000'), production_total=Decimal('6000'),
        net_production_total=Decimal('5000'),
    )]

    metrics = calculate_financial_metrics(aggregates, Decimal('0'))

    assert metrics.roi == 0
    assert not math.isnan(metrics.roi)
    assert metrics.total_net_production == Decimal('5000')


def test_profit_margin_is_zero_without_revenue():
    aggregates = [LocationAggregate(location_key='x', name='X', net_production_total=Decimal('100'))]

    metrics = calculate_financial_metrics(aggregates, Decimal('250'))

    assert metrics.profit_margin == 0
    assert metrics.roi == -60.0


def test_financial_metrics_formulas():
    aggregates = [
        LocationAggregate(location_key='a', name='A', revenue_total=Decimal('1000'),
                          production_total=Decimal('1200'), net_production_total=Decimal('900')),
        LocationAggregate(location_key='b', name='B', revenue_total=Decimal('1000'),
                          production_total=Decimal('800'), net_production_total=Decimal('600')),
    ]

    metrics = calculate_financial_metrics(aggregates, Decimal('500'))

    assert metrics.total_revenue == Decimal('2000')
    assert metrics.total_production == Decimal('2000')
    assert metrics.profit_margin == 75.0
    assert metrics.roi == 200.0


def test_resolve_locations_from_keyed_object_and_list():
    keyed = resolve_locations({'gilbert': {'id': 1, 'name': 'Gilbert'}})
    listed = resolve_locations([{'id': 1, 'name': 'Gilbert'}, {'id': 2, 'name': 'Phoenix-Ahwatukee'}])

    assert [(loc.key, loc.id, loc.name) for loc in keyed] == [('gilbert', '1', 'Gilbert')]
    assert [loc.key for loc in listed] == ['gilbert', 'phoenix-ahwatukee']
    assert resolve_locations(None) == []
    assert resolve_locations('garbage') == []


def test_process_aggregates_by_location(raw_payload):
    processed = MultiLocationDataProcessor().process(raw_payload)
    aggs = processed.location_aggregates

    assert list(aggs) == ['gilbert', 'phoenix', 'unknown']

    gilbert = aggs['gilbert']
    assert gilbert.patient_count == 2
    assert gilbert.appointment_count == 2
    assert gilbert.lead_count == 2
    assert gilbert.revenue_total == Decimal('1800.50')
    assert gilbert.production_total == Decimal('1000')
    assert gilbert.net_production_total == Decimal('800')

    phoenix = aggs['phoenix']
    assert phoenix.patient_count == 1
    assert phoenix.booking_count == 1
    assert phoenix.revenue_total == Decimal('400')
    # Unparseable cost counts as 0
    assert phoenix.net_production_total == Decimal('750')

    assert aggs['unknown'].patient_count == 1

    assert processed.total_patients == 4
    assert processed.total_appointments == 3
    assert processed.no_show_rate == 33.3


def test_unknown_bucket_only_when_needed(raw_payload):
    raw_payload['patients'] = raw_payload['patients'][:3]

    processed = MultiLocationDataProcessor().process(raw_payload)

    assert 'unknown' not in processed.location_aggregates


def test_referral_sources_and_conversion(raw_payload):
    processed = MultiLocationDataProcessor().process(raw_payload)

    # p1, p4, l1 digital; p2 professional; p3 direct (l2 is p1's lead)
    assert processed.referral_sources == {'digital': 60, 'professional': 20, 'direct': 20}
    # p1 has an active treatment, p3 has a scheduled booking
    assert processed.conversion_rates == {'digital': 33, 'professional': 0, 'direct': 100}


def test_referral_scenario_hundred_patients():
    patients = (
        [{'id': f'g{i}', 'referralSource': 'Google Ads'} for i in range(40)]
        + [{'id': f'd{i}', 'referralSource': 'Dr. Smith referral'} for i in range(35)]
        + [{'id': f'n{i}'} for i in range(25)]
    )

    processed = MultiLocationDataProcessor().process({'patients': patients})

    assert processed.referral_sources == {'digital': 40, 'professional': 35, 'direct': 25}
    assert sum(processed.referral_sources.values()) == 100


def test_weekly_trends(raw_payload):
    processed = MultiLocationDataProcessor().process(raw_payload)

    weekly = [(b.period_label, b.digital_pct, b.professional_pct, b.direct_pct)
              for b in processed.weekly_trends]
    assert weekly == [
        ('Week 1, 2025', 100, 0, 0),
        ('Week 2, 2025', 0, 100, 0),
        ('Week 3, 2025', 50, 0, 50),
    ]
    for bucket in processed.weekly_trends:
        assert bucket.digital_pct + bucket.professional_pct + bucket.direct_pct == 100


def test_weekly_trends_sort_across_years():
    patients = [
        {'id': 'a', 'createdAt': '2025-01-02T00:00:00', 'referralSource': 'web'},
        {'id': 'b', 'createdAt': '2024-12-30T00:00:00', 'referralSource': 'web'},
    ]

    processed = MultiLocationDataProcessor().process({'patients': patients})

    assert [b.period_label for b in processed.weekly_trends] == ['Week 52, 2024', 'Week 1, 2025']


def test_monthly_trends(raw_payload):
    processed = MultiLocationDataProcessor().process(raw_payload)

    assert len(processed.monthly_trends) == 1
    january = processed.monthly_trends[0]
    assert january.period_label == '2025-01'
    assert january.revenue == Decimal('2200.50')
    assert january.production == Decimal('1750')
    assert january.appointments == 3


def test_date_filter_counts_only_range(raw_payload):
    processed = MultiLocationDataProcessor().process(
        raw_payload, start_date=date(2025, 1, 1), end_date=date(2025, 1, 10),
    )

    assert processed.total_patients == 2
    assert processed.total_appointments == 1
    assert processed.total_leads == 2
    assert processed.total_bookings == 0


def test_date_filter_scenario_january_only():
    raw = {
        'locations': [{'id': 1, 'name': 'Gilbert'}],
        'appointments': [
            {'id': 'jan', 'locationId': 1, 'scheduledDate': '2025-01-05'},
            {'id': 'apr', 'locationId': 1, 'scheduledDate': '2025-04-05'},
        ],
    }

    processed = MultiLocationDataProcessor().process(
        raw, start_date=date(2025, 1, 1), end_date=date(2025, 2, 1),
    )

    assert processed.total_appointments == 1
    assert processed.location_aggregates['gilbert'].appointment_count == 1


def test_date_filter_never_expands(raw_payload):
    records = parse_payload(raw_payload).patients
    ranges = [
        (date(2025, 1, 1), date(2025, 1, 31)),
        (date(2025, 1, 10), date(2025, 1, 15)),
        (date(2025, 2, 1), date(2025, 2, 28)),
        (None, date(2025, 1, 10)),
    ]
    for start, end in ranges:
        filtered = filter_by_date(records, start, end)
        assert len(filtered) <= len(records)
        assert all(r in records for r in filtered)


def test_date_filter_is_inclusive_and_drops_undated():
    raw = {'patients': [
        {'id': 'start', 'createdAt': '2025-03-01T00:00:00'},
        {'id': 'end', 'createdAt': '2025-03-31T23:59:59'},
        {'id': 'undated'},
        {'id': 'garbage', 'createdAt': 'not a date'},
    ]}
    records = parse_payload(raw).patients

    filtered = filter_by_date(records, date(2025, 3, 1), date(2025, 3, 31))

    assert [r.id for r in filtered] == ['start', 'end']
    assert len(filter_by_date(records)) == 4


def test_location_filter(raw_payload):
    location = SimpleNamespace(external_id='loc-1', name='Gilbert')

    processed = MultiLocationDataProcessor().process(raw_payload, location=location)

    assert list(processed.location_aggregates) == ['gilbert']
    assert processed.total_patients == 2
    assert processed.total_leads == 2


def test_location_filter_for_location_missing_upstream(raw_payload):
    location = SimpleNamespace(external_id=None, name='Scottsdale')

    processed = MultiLocationDataProcessor().process(raw_payload, location=location)

    assert list(processed.location_aggregates) == ['scottsdale']
    assert processed.total_patients == 0


def test_acquisition_costs_are_assigned(raw_payload):
    processed = MultiLocationDataProcessor().process(
        raw_payload, acquisition_costs={'loc-1': Decimal('300'), None: Decimal('200')},
    )

    assert processed.location_aggregates['gilbert'].acquisition_cost_total == Decimal('300')
    metrics = processed.financial_metrics
    assert metrics.total_acquisition_costs == Decimal('500')
    assert metrics.profit_margin == 77.28
    assert metrics.roi == 210.0


@pytest.mark.parametrize('raw', [
    None,
    [],
    'not a payload',
    {'patients': 'nope', 'appointments': {'count': 3}},
    {'patients': [None, 1, 'x'], 'appointments': [{'production': 'abc', 'scheduledDate': 12}]},
])
def test_process_tolerates_malformed_input(raw):
    processed = MultiLocationDataProcessor().process(raw, start_date=date(2025, 1, 1), end_date=date(2025, 1, 31))

    assert processed.financial_metrics.roi == 0
    assert processed.total_patients == 0


def test_records_default_missing_fields():
    payload = parse_payload({'appointments': [{'status': 'completed'}]})
    appointment = payload.appointments[0]

    assert appointment.id == 'appointment-0'
    assert appointment.timestamp is None
    assert appointment.location_ref is None
    assert appointment.production == Decimal('0')
    assert appointment.revenue == Decimal('0')


def test_records_parse_epoch_timestamps():
    payload = parse_payload({'leads': [{'id': 'l', 'createdAt': 1735689600000}]})

    assert payload.leads[0].timestamp == datetime(2025, 1, 1, tzinfo=timezone.utc)
