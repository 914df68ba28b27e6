"""
Multi-location data processor.

Turns a raw Greyfinch payload into per-location aggregates, referral and
financial trends and KPIs. Never raises on malformed input: the records
module defaults anything it cannot parse.
"""

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from django.conf import settings
from django.utils.text import slugify

from .records import parse_payload

logger = logging.getLogger(__name__)

REFERRAL_TYPES = ('digital', 'professional', 'direct')

DEFAULT_REFERRAL_KEYWORDS = {
    'digital': ['online', 'google', 'web', 'digital', 'social', 'facebook',
                'instagram', 'meta', 'website', 'internet', 'search', 'ads'],
    'professional': ['referral', 'referred', 'doctor', 'dr.', 'dentist',
                     'professional', 'physician'],
}

ACTIVE_STATUSES = {'active', 'in_progress', 'started', 'scheduled', 'confirmed', 'completed'}
NO_SHOW_STATUSES = {'no-show', 'no_show', 'noshow', 'cancelled', 'canceled'}

UNKNOWN_KEY = 'unknown'


@dataclass(frozen=True)
class ResolvedLocation:
    key: str
    id: Optional[str]
    name: str


@dataclass(frozen=True)
class ReferralRecord:
    id: str
    source: str
    statuses: Tuple[str, ...]
    timestamp: Optional[datetime]


@dataclass
class LocationAggregate:
    location_key: str
    name: str
    patient_count: int = 0
    appointment_count: int = 0
    lead_count: int = 0
    booking_count: int = 0
    revenue_total: Decimal = Decimal('0')
    production_total: Decimal = Decimal('0')
    net_production_total: Decimal = Decimal('0')
    acquisition_cost_total: Decimal = Decimal('0')


@dataclass(frozen=True)
class ReferralTrendBucket:
    period_label: str
    digital_pct: int
    professional_pct: int
    direct_pct: int


@dataclass(frozen=True)
class FinancialTrendBucket:
    period_label: str
    revenue: Decimal
    production: Decimal
    appointments: int


@dataclass(frozen=True)
class FinancialMetrics:
    total_production: Decimal = Decimal('0')
    total_revenue: Decimal = Decimal('0')
    total_net_production: Decimal = Decimal('0')
    total_acquisition_costs: Decimal = Decimal('0')
    profit_margin: float = 0.0
    roi: float = 0.0


@dataclass
class ProcessedSnapshot:
    location_aggregates: Dict[str, LocationAggregate] = field(default_factory=OrderedDict)
    total_patients: int = 0
    total_appointments: int = 0
    total_leads: int = 0
    total_bookings: int = 0
    no_show_rate: float = 0.0
    avg_net_production: float = 0.0
    avg_acquisition_cost: float = 0.0
    referral_sources: Dict[str, int] = field(default_factory=lambda: dict.fromkeys(REFERRAL_TYPES, 0))
    conversion_rates: Dict[str, int] = field(default_factory=lambda: dict.fromkeys(REFERRAL_TYPES, 0))
    weekly_trends: List[ReferralTrendBucket] = field(default_factory=list)
    monthly_trends: List[FinancialTrendBucket] = field(default_factory=list)
    financial_metrics: FinancialMetrics = field(default_factory=FinancialMetrics)
    record_count: int = 0


def referral_keywords() -> dict:
    configured = getattr(settings, 'REFERRAL_SOURCE_KEYWORDS', None) or {}
    return {
        'digital': list(configured.get('digital', DEFAULT_REFERRAL_KEYWORDS['digital'])),
        'professional': list(configured.get('professional', DEFAULT_REFERRAL_KEYWORDS['professional'])),
    }


def classify_referral_source(source, keywords=None) -> str:
    """
    Classify a free-text referral source as digital, professional or direct.

    Digital keywords win over professional ones. Empty or unknown sources
    are direct.
    """
    keywords = keywords or DEFAULT_REFERRAL_KEYWORDS
    text = str(source).lower().strip() if source is not None else ''
    if not text:
        return 'direct'
    if any(word in text for word in keywords.get('digital', ())):
        return 'digital'
    if any(word in text for word in keywords.get('professional', ())):
        return 'professional'
    return 'direct'


def week_of_year(timestamp: datetime):
    """
    Ordinal week: ceil(days since Jan 1 / 7), minimum 1.

    Not ISO week numbering; week 1 is Jan 1 through Jan 8.
    """
    jan_first = datetime(timestamp.year, 1, 1, tzinfo=timestamp.tzinfo)
    elapsed = (timestamp - jan_first).total_seconds() / (7 * 24 * 3600)
    return timestamp.year, max(1, math.ceil(elapsed))


def week_label(timestamp: datetime) -> str:
    year, week = week_of_year(timestamp)
    return f"Week {week}, {year}"


def percentages(counts: Dict[str, int]) -> Dict[str, int]:
    """
    Integer percentages that sum to exactly 100, or all 0 for no data.

    Largest-remainder rounding; ties go to the earlier referral type.
    """
    total = sum(counts.get(key, 0) for key in REFERRAL_TYPES)
    if total <= 0:
        return dict.fromkeys(REFERRAL_TYPES, 0)

    exact = {key: counts.get(key, 0) * 100 / total for key in REFERRAL_TYPES}
    result = {key: int(math.floor(value)) for key, value in exact.items()}
    shortfall = 100 - sum(result.values())
    by_remainder = sorted(REFERRAL_TYPES, key=lambda k: (-(exact[k] - result[k]), REFERRAL_TYPES.index(k)))
    for key in by_remainder[:shortfall]:
        result[key] += 1
    return result


def _round2(value) -> float:
    return float(round(Decimal(value), 2))


def calculate_financial_metrics(aggregates, acquisition_cost_total=None) -> FinancialMetrics:
    """
    Roll location aggregates up into totals, profit margin and ROI.

    profit_margin = (revenue - acquisition costs) / revenue * 100, 0 without revenue.
    roi = (net production - acquisition costs) / acquisition costs * 100, 0 without costs.
    """
    aggregates = list(aggregates)
    total_production = sum((a.production_total for a in aggregates), Decimal('0'))
    total_revenue = sum((a.revenue_total for a in aggregates), Decimal('0'))
    total_net = sum((a.net_production_total for a in aggregates), Decimal('0'))
    if acquisition_cost_total is None:
        acquisition_cost_total = sum((a.acquisition_cost_total for a in aggregates), Decimal('0'))
    acquisition_cost_total = Decimal(acquisition_cost_total)

    profit_margin = 0.0
    if total_revenue != 0:
        profit_margin = _round2((total_revenue - acquisition_cost_total) / total_revenue * 100)

    roi = 0.0
    if acquisition_cost_total != 0:
        roi = _round2((total_net - acquisition_cost_total) / acquisition_cost_total * 100)

    return FinancialMetrics(
        total_production=total_production,
        total_revenue=total_revenue,
        total_net_production=total_net,
        total_acquisition_costs=acquisition_cost_total,
        profit_margin=profit_margin,
        roi=roi,
    )


def _as_date(value) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"Ignoring unparseable date bound {value!r}")
        return None


def filter_by_date(records, start_date=None, end_date=None) -> list:
    """
    Keep records with start <= timestamp.date() <= end.

    With either bound set, records without a timestamp are dropped.
    """
    start = _as_date(start_date)
    end = _as_date(end_date)
    if start is None and end is None:
        return list(records)

    kept = []
    for record in records:
        if record.timestamp is None:
            continue
        day = record.timestamp.date()
        if start is not None and day < start:
            continue
        if end is not None and day > end:
            continue
        kept.append(record)
    return kept


def resolve_locations(raw_locations) -> List[ResolvedLocation]:
    """Normalize a keyed object or a list of locations into ResolvedLocations."""
    resolved = []
    seen = set()

    if isinstance(raw_locations, dict):
        entries = [(str(key), value) for key, value in raw_locations.items()]
    elif isinstance(raw_locations, list):
        entries = [(None, value) for value in raw_locations]
    else:
        return resolved

    for key, value in entries:
        value = value if isinstance(value, dict) else {}
        loc_id = value.get('id')
        loc_id = str(loc_id) if loc_id not in (None, '') else None
        name = str(value.get('name') or key or loc_id or '')
        if key is None:
            key = slugify(name) or loc_id
        if not key or key == UNKNOWN_KEY:
            continue
        if key in seen:
            key = f"{key}-{loc_id}" if loc_id else f"{key}-{len(resolved)}"
        seen.add(key)
        resolved.append(ResolvedLocation(key=key, id=loc_id, name=name or key))

    return resolved


class MultiLocationDataProcessor:
    """
    Aggregate raw Greyfinch collections per location.

    Usage:
        processor = MultiLocationDataProcessor()
        processed = processor.process(payload, date(2025, 1, 1), date(2025, 1, 31))

    `location` narrows the output to one location (a core.Location, or any
    object with external_id/name, or a plain key string). `acquisition_costs`
    maps location keys, upstream ids or names to spend; the None key holds
    spend not tied to one location.
    """

    def __init__(self, keywords=None):
        self.keywords = keywords or referral_keywords()

    def classify(self, source) -> str:
        return classify_referral_source(source, self.keywords)

    def process(self, raw_data, start_date=None, end_date=None, location=None,
                acquisition_costs=None) -> ProcessedSnapshot:
        raw_data = raw_data if isinstance(raw_data, dict) else {}
        payload = parse_payload(raw_data)
        locations = resolve_locations(raw_data.get('locations'))

        # Filter every collection before anything is counted
        patients = filter_by_date(payload.patients, start_date, end_date)
        appointments = filter_by_date(payload.appointments, start_date, end_date)
        leads = filter_by_date(payload.leads, start_date, end_date)
        bookings = filter_by_date(payload.bookings, start_date, end_date)
        revenue_lines = filter_by_date(payload.revenue, start_date, end_date)
        production_lines = filter_by_date(payload.production, start_date, end_date)

        index = self._location_index(locations)
        target_key = self._target_key(location, locations, index)

        def keep(record):
            if target_key is None:
                return True
            return self._match(record.location_ref, index) == target_key

        patients = [r for r in patients if keep(r)]
        appointments = [r for r in appointments if keep(r)]
        leads = [r for r in leads if keep(r)]
        bookings = [r for r in bookings if keep(r)]
        revenue_lines = [r for r in revenue_lines if keep(r)]
        production_lines = [r for r in production_lines if keep(r)]

        aggregates = self._aggregate(
            locations, index, target_key, location,
            patients, appointments, leads, bookings, revenue_lines, production_lines,
        )
        unallocated = self._apply_acquisition_costs(aggregates, locations, acquisition_costs)

        referral_records = self._referral_records(patients, leads)
        sources = {key: 0 for key in REFERRAL_TYPES}
        for record in referral_records:
            sources[self.classify(record.source)] += 1

        acquisition_total = sum((a.acquisition_cost_total for a in aggregates.values()), Decimal('0'))
        acquisition_total += unallocated
        metrics = calculate_financial_metrics(aggregates.values(), acquisition_total)

        count = len(aggregates)
        processed = ProcessedSnapshot(
            location_aggregates=aggregates,
            total_patients=len(patients),
            total_appointments=len(appointments),
            total_leads=len(leads),
            total_bookings=len(bookings),
            no_show_rate=self._no_show_rate(appointments),
            avg_net_production=_round2(metrics.total_net_production / count) if count else 0.0,
            avg_acquisition_cost=_round2(acquisition_total / count) if count else 0.0,
            referral_sources=percentages(sources),
            conversion_rates=self._conversion_rates(referral_records, bookings),
            weekly_trends=self._weekly_trends(referral_records),
            monthly_trends=self._monthly_trends(appointments, revenue_lines, production_lines),
            financial_metrics=metrics,
            record_count=sum(len(c) for c in (patients, appointments, leads, bookings,
                                              revenue_lines, production_lines)),
        )
        logger.debug(
            f"Processed {processed.record_count} records into {count} location aggregates"
        )
        return processed

    # Location matching

    def _location_index(self, locations):
        index = {}
        for loc in locations:
            index.setdefault(('key', loc.key.lower()), loc.key)
            if loc.id:
                index.setdefault(('id', loc.id.lower()), loc.key)
            index.setdefault(('name', loc.name.lower()), loc.key)
        return index

    def _match(self, ref, index) -> str:
        if ref is None:
            return UNKNOWN_KEY
        if ref.id:
            ref_id = ref.id.lower()
            for kind in ('id', 'key', 'name'):
                if (kind, ref_id) in index:
                    return index[(kind, ref_id)]
        if ref.name:
            ref_name = ref.name.lower()
            for kind in ('name', 'key'):
                if (kind, ref_name) in index:
                    return index[(kind, ref_name)]
        return UNKNOWN_KEY

    def _target_key(self, location, locations, index):
        if location is None or location == '' or location == 'all':
            return None
        if isinstance(location, str):
            candidates = [location]
        else:
            candidates = [getattr(location, 'external_id', None), getattr(location, 'name', None)]
        for candidate in candidates:
            if not candidate:
                continue
            value = str(candidate).lower()
            for kind in ('id', 'key', 'name'):
                if (kind, value) in index:
                    return index[(kind, value)]
        # Not in the payload: aggregate under the filter's own key
        fallback = next((str(c) for c in candidates if c), None)
        return slugify(fallback) or fallback

    def _aggregate(self, locations, index, target_key, location, patients, appointments,
                   leads, bookings, revenue_lines, production_lines):
        aggregates = OrderedDict()
        for loc in locations:
            if target_key is None or loc.key == target_key:
                aggregates[loc.key] = LocationAggregate(location_key=loc.key, name=loc.name)
        if target_key is not None and target_key not in aggregates:
            name = getattr(location, 'name', None) or str(location)
            aggregates[target_key] = LocationAggregate(location_key=target_key, name=name)

        def bucket(record):
            key = target_key or self._match(record.location_ref, index)
            if key not in aggregates:
                aggregates[key] = LocationAggregate(location_key=key, name='Unknown location')
            return aggregates[key]

        for record in patients:
            bucket(record).patient_count += 1
        for record in leads:
            bucket(record).lead_count += 1
        for record in bookings:
            bucket(record).booking_count += 1
        for record in appointments:
            agg = bucket(record)
            agg.appointment_count += 1
            agg.production_total += record.production
            agg.revenue_total += record.revenue
            agg.net_production_total += record.production - record.cost
        for record in revenue_lines:
            bucket(record).revenue_total += record.amount
        for record in production_lines:
            agg = bucket(record)
            agg.production_total += record.amount
            agg.net_production_total += record.amount

        # Unknown goes last and only when it holds something
        if UNKNOWN_KEY in aggregates:
            aggregates.move_to_end(UNKNOWN_KEY)
        return aggregates

    def _apply_acquisition_costs(self, aggregates, locations, acquisition_costs) -> Decimal:
        """Assign spend to aggregates; returns spend that matched no aggregate."""
        if not acquisition_costs:
            return Decimal('0')

        by_alias = {}
        for loc in locations:
            for alias in (loc.key, loc.id, loc.name):
                if alias:
                    by_alias.setdefault(str(alias).lower(), loc.key)

        unallocated = Decimal('0')
        for alias, amount in acquisition_costs.items():
            amount = Decimal(amount or 0)
            key = by_alias.get(str(alias).lower()) if alias is not None else None
            if key is None and alias is not None and str(alias) in aggregates:
                key = str(alias)
            if key in aggregates:
                aggregates[key].acquisition_cost_total += amount
            else:
                unallocated += amount
        return unallocated

    # Referral sources and conversion

    def _referral_records(self, patients, leads) -> List[ReferralRecord]:
        """Every patient, plus leads not already counted through their patient."""
        records = [
            ReferralRecord(p.id, p.referral_source, p.treatment_statuses, p.timestamp)
            for p in patients
        ]
        patient_ids = {p.id for p in patients}
        for lead in leads:
            if lead.patient_id and lead.patient_id in patient_ids:
                continue
            records.append(ReferralRecord(
                lead.patient_id or lead.id, lead.source, lead.treatment_statuses, lead.timestamp,
            ))
        return records

    def _conversion_rates(self, referral_records, bookings):
        booked = set()
        for booking in bookings:
            # A booking without a status is a plain scheduled booking
            status = (booking.status or 'scheduled').lower()
            if status in ACTIVE_STATUSES and booking.patient_id:
                booked.add(booking.patient_id)

        totals = {key: 0 for key in REFERRAL_TYPES}
        converted = {key: 0 for key in REFERRAL_TYPES}
        for record in referral_records:
            referral_type = self.classify(record.source)
            totals[referral_type] += 1
            if record.id in booked or any(s.lower() in ACTIVE_STATUSES for s in record.statuses):
                converted[referral_type] += 1

        return {
            key: round(converted[key] / totals[key] * 100) if totals[key] else 0
            for key in REFERRAL_TYPES
        }

    def _no_show_rate(self, appointments) -> float:
        if not appointments:
            return 0.0
        missed = sum(1 for a in appointments if a.status.lower() in NO_SHOW_STATUSES)
        return round(missed / len(appointments) * 100, 1)

    # Trends

    def _weekly_trends(self, referral_records):
        weeks = {}
        for record in referral_records:
            if record.timestamp is None:
                continue
            week = week_of_year(record.timestamp)
            counts = weeks.setdefault(week, dict.fromkeys(REFERRAL_TYPES, 0))
            counts[self.classify(record.source)] += 1

        buckets = []
        for (year, week), counts in sorted(weeks.items()):
            pct = percentages(counts)
            buckets.append(ReferralTrendBucket(
                period_label=f"Week {week}, {year}",
                digital_pct=pct['digital'],
                professional_pct=pct['professional'],
                direct_pct=pct['direct'],
            ))
        return buckets

    def _monthly_trends(self, appointments, revenue_lines, production_lines):
        months = {}

        def month(record):
            key = record.timestamp.strftime('%Y-%m')
            if key not in months:
                months[key] = {'revenue': Decimal('0'), 'production': Decimal('0'), 'appointments': 0}
            return months[key]

        for record in appointments:
            if record.timestamp is None:
                continue
            bucket = month(record)
            bucket['appointments'] += 1
            bucket['revenue'] += record.revenue
            bucket['production'] += record.production
        for record in revenue_lines:
            if record.timestamp is not None:
                month(record)['revenue'] += record.amount
        for record in production_lines:
            if record.timestamp is not None:
                month(record)['production'] += record.amount

        return [
            FinancialTrendBucket(
                period_label=key,
                revenue=values['revenue'],
                production=values['production'],
                appointments=values['appointments'],
            )
            for key, values in sorted(months.items())
        ]
