"""
Period snapshot assembly.

A snapshot is the processed analytics for one user-defined period merged
with that month's acquisition costs. Live snapshots are cached per exact
(user, location, start, end, data type) key for ANALYTICS_CACHE_TTL seconds.
When Greyfinch fails, times out or returns nothing, the snapshot is built
from deterministic sample data and tagged api_status="fallback".
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from core.exceptions import (
    CredentialsInvalidError,
    OrthoInsightError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from core.services import resolve_location

from .costs import get_costs, period_for
from .fallback import build_fallback_payload
from .models import AnalyticsCache
from .processor import MultiLocationDataProcessor, calculate_financial_metrics

logger = logging.getLogger(__name__)

LIVE = 'live'
FALLBACK = 'fallback'

PAYLOAD_COLLECTIONS = ('patients', 'appointments', 'leads', 'appointmentBookings', 'revenue', 'production')


def _money(value) -> float:
    return float(round(Decimal(value), 2))


def _parse_date(value, field_name) -> date:
    if value in (None, ''):
        raise ValidationError(f"{field_name} is required", field=field_name)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field_name} {value!r}, expected YYYY-MM-DD", field=field_name)


@dataclass(frozen=True)
class PeriodConfig:
    start_date: date
    end_date: date
    location_id: Optional[int] = None
    label: str = ''
    id: str = ''

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ValidationError("Each period must be an object")

        start_date = _parse_date(data.get('startDate', data.get('start_date')), 'startDate')
        end_date = _parse_date(data.get('endDate', data.get('end_date')), 'endDate')
        if start_date > end_date:
            raise ValidationError("startDate must not be after endDate", field='startDate')

        location_id = data.get('locationId', data.get('location_id', data.get('location')))
        if location_id in (None, '', 'all'):
            location_id = None
        else:
            try:
                location_id = int(location_id)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid location id: {location_id!r}", field='locationId')

        return cls(
            start_date=start_date,
            end_date=end_date,
            location_id=location_id,
            label=str(data.get('label') or ''),
            id=str(data.get('id') or ''),
        )

    @property
    def display_label(self) -> str:
        return self.label or f"{self.start_date.isoformat()} to {self.end_date.isoformat()}"


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Finished analytics for one period. Serialize with to_dict()."""
    location_id: Optional[int]
    start_date: date
    end_date: date
    data_type: str
    label: str
    api_status: str
    fallback_reason: Optional[str]
    location_aggregates: dict
    summary: dict
    trends: dict
    financial_metrics: dict
    acquisition_cost_breakdown: dict
    generated_at: datetime = field(default_factory=timezone.now)
    cached: bool = False

    @property
    def is_fallback(self) -> bool:
        return self.api_status == FALLBACK

    def to_dict(self) -> dict:
        return {
            'locations': self.location_aggregates,
            'summary': self.summary,
            'trends': self.trends,
            'financialMetrics': self.financial_metrics,
            'acquisitionCostBreakdown': self.acquisition_cost_breakdown,
            'apiStatus': self.api_status,
            'fallbackReason': self.fallback_reason,
            'label': self.label,
            'dataType': self.data_type,
            'lastUpdated': self.generated_at.isoformat(),
            'cached': self.cached,
            'queryParams': {
                'startDate': self.start_date.isoformat(),
                'endDate': self.end_date.isoformat(),
                'location': self.location_id if self.location_id is not None else 'all',
            },
        }

    @classmethod
    def from_dict(cls, data, cached=False):
        params = data.get('queryParams') or {}
        location = params.get('location')
        return cls(
            location_id=None if location in (None, 'all') else location,
            start_date=date.fromisoformat(params['startDate']),
            end_date=date.fromisoformat(params['endDate']),
            data_type=data.get('dataType', 'analytics'),
            label=data.get('label', ''),
            api_status=data.get('apiStatus', LIVE),
            fallback_reason=data.get('fallbackReason'),
            location_aggregates=data.get('locations') or {},
            summary=data.get('summary') or {},
            trends=data.get('trends') or {'weekly': [], 'monthly': []},
            financial_metrics=data.get('financialMetrics') or {},
            acquisition_cost_breakdown=data.get('acquisitionCostBreakdown') or {},
            generated_at=datetime.fromisoformat(data['lastUpdated']),
            cached=cached,
        )


def assemble(period, processed, costs, api_status, fallback_reason=None, data_type='analytics'):
    """
    Merge processor output with the cost aggregator's totals.

    Financial metrics are recomputed against the aggregator's total so the
    ROI and margin always agree with the cost breakdown.
    """
    totals = costs.totals
    cost_total = totals.get('total', Decimal('0'))
    aggregates = list(processed.location_aggregates.values())
    metrics = calculate_financial_metrics(aggregates, cost_total)

    locations = {
        agg.location_key: {
            'name': agg.name,
            'patients': agg.patient_count,
            'appointments': agg.appointment_count,
            'leads': agg.lead_count,
            'bookings': agg.booking_count,
            'revenue': _money(agg.revenue_total),
            'production': _money(agg.production_total),
            'netProduction': _money(agg.net_production_total),
            'acquisitionCosts': _money(agg.acquisition_cost_total),
        }
        for agg in aggregates
    }

    avg_acquisition_cost = _money(cost_total / len(aggregates)) if aggregates else 0.0

    summary = {
        'totalPatients': processed.total_patients,
        'totalAppointments': processed.total_appointments,
        'totalLeads': processed.total_leads,
        'totalBookings': processed.total_bookings,
        'totalRevenue': _money(metrics.total_revenue),
        'totalProduction': _money(metrics.total_production),
        'totalNetProduction': _money(metrics.total_net_production),
        'profitMargin': metrics.profit_margin,
        'roi': metrics.roi,
        'noShowRate': processed.no_show_rate,
        'avgNetProduction': processed.avg_net_production,
        'avgAcquisitionCost': avg_acquisition_cost,
        'referralSources': dict(processed.referral_sources),
        'conversionRates': dict(processed.conversion_rates),
    }

    trends = {
        'weekly': [
            {
                'periodLabel': bucket.period_label,
                'digitalPct': bucket.digital_pct,
                'professionalPct': bucket.professional_pct,
                'directPct': bucket.direct_pct,
            }
            for bucket in processed.weekly_trends
        ],
        'monthly': [
            {
                'periodLabel': bucket.period_label,
                'revenue': _money(bucket.revenue),
                'production': _money(bucket.production),
                'appointments': bucket.appointments,
            }
            for bucket in processed.monthly_trends
        ],
    }

    financial_metrics = {
        'totalProduction': _money(metrics.total_production),
        'totalRevenue': _money(metrics.total_revenue),
        'totalNetProduction': _money(metrics.total_net_production),
        'totalAcquisitionCosts': _money(metrics.total_acquisition_costs),
        'profitMargin': metrics.profit_margin,
        'roi': metrics.roi,
    }

    breakdown = {
        key: _money(totals.get(key, Decimal('0')))
        for key in ('manual', 'meta', 'google', 'quickbooks', 'total')
    }

    return AnalyticsSnapshot(
        location_id=period.location_id,
        start_date=period.start_date,
        end_date=period.end_date,
        data_type=data_type,
        label=period.display_label,
        api_status=api_status,
        fallback_reason=fallback_reason,
        location_aggregates=locations,
        summary=summary,
        trends=trends,
        financial_metrics=financial_metrics,
        acquisition_cost_breakdown=breakdown,
    )


def is_empty_payload(payload) -> bool:
    if not isinstance(payload, dict):
        return True
    return not any(isinstance(payload.get(key), list) and payload[key] for key in PAYLOAD_COLLECTIONS)


def purge_expired_cache() -> int:
    """Delete cache rows older than ANALYTICS_CACHE_TTL."""
    cutoff = timezone.now() - timedelta(seconds=settings.ANALYTICS_CACHE_TTL)
    deleted, _ = AnalyticsCache.objects.filter(cached_at__lt=cutoff).delete()
    if deleted:
        logger.info(f"Purged {deleted} expired analytics cache rows")
    return deleted


class SnapshotService:
    """
    Build snapshots for one user.

    Usage:
        service = SnapshotService(request.user)
        snapshot = service.build_snapshot(PeriodConfig.from_dict(params))
        results = service.compare_periods(body['periods'])

    `client_factory` returns an object with fetch_analytics_payload(start, end);
    by default a GreyfinchClient configured for the user. Upstream fetches
    may run on worker threads; database work stays on the calling thread.
    """

    data_type = 'analytics'

    def __init__(self, user, client_factory=None, timeout=None):
        self.user = user
        self.client_factory = client_factory or self._default_client
        self.timeout = timeout or settings.UPSTREAM_TIMEOUT_SECONDS
        self.processor = MultiLocationDataProcessor()

    def _default_client(self):
        from integrations.services.greyfinch import GreyfinchClient, config_for_user
        return GreyfinchClient(config_for_user(self.user))

    # Cache

    def _cache_key(self, period, location):
        return {
            'user': self.user,
            'location': location,
            'start_date': period.start_date,
            'end_date': period.end_date,
            'data_type': self.data_type,
        }

    def get_cached(self, period, location) -> Optional[AnalyticsSnapshot]:
        cutoff = timezone.now() - timedelta(seconds=settings.ANALYTICS_CACHE_TTL)
        try:
            row = (
                AnalyticsCache.objects
                .filter(cached_at__gte=cutoff, **self._cache_key(period, location))
                .order_by('-cached_at')
                .first()
            )
        except DatabaseError as e:
            logger.exception("Failed to read analytics cache")
            raise PersistenceError(f"Could not read analytics cache: {e}")
        if row is None:
            return None
        logger.debug(f"Analytics cache hit for {period.start_date}..{period.end_date}")
        snapshot = AnalyticsSnapshot.from_dict(row.data, cached=True)
        if period.label and snapshot.label != period.label:
            snapshot = replace(snapshot, label=period.label)
        return snapshot

    def store(self, period, location, snapshot):
        key = self._cache_key(period, location)
        try:
            with transaction.atomic():
                AnalyticsCache.objects.update_or_create(
                    defaults={'data': snapshot.to_dict(), 'cached_at': snapshot.generated_at},
                    **key,
                )
        except DatabaseError as e:
            logger.exception("Failed to write analytics cache")
            raise PersistenceError(f"Could not write analytics cache: {e}")

    # Fetch

    def _fetch(self, client, period):
        return client.fetch_analytics_payload(period.start_date, period.end_date)

    def _await(self, future, period, timeout):
        """Wait for a pooled fetch; errors outside the taxonomy become UpstreamError for that period."""
        try:
            return future.result(timeout=timeout)
        except (OrthoInsightError, FutureTimeoutError):
            raise
        except Exception as e:
            logger.exception(f"Greyfinch fetch for {period.display_label} failed unexpectedly")
            raise UpstreamError(f"Greyfinch fetch failed: {e}")

    def _outcome(self, fetch):
        """
        Run a fetch callable and classify the result.

        Returns (payload or None, fallback reason or None).
        """
        try:
            payload = fetch()
        except CredentialsInvalidError as e:
            logger.warning(f"Greyfinch credentials rejected, using sample data: {e.message}")
            return None, f"credentials_invalid: {e.message}"
        except UpstreamError as e:
            logger.warning(f"Greyfinch request failed, using sample data: {e.message}")
            return None, f"upstream_error: {e.message}"
        except FutureTimeoutError:
            logger.warning(f"Greyfinch request exceeded {self.timeout}s, using sample data")
            return None, f"timeout: no response within {self.timeout}s"

        if is_empty_payload(payload):
            logger.warning("Greyfinch returned no records, using sample data")
            return None, "empty: upstream returned no records"
        return payload, None

    def _finish(self, period, location, payload, fallback_reason):
        costs = get_costs(self.user, location.id if location else None, period_for(period.start_date))

        if payload is None:
            payload = build_fallback_payload(period.start_date, period.end_date, location)
            api_status = FALLBACK
        else:
            api_status = LIVE

        processed = self.processor.process(
            payload,
            start_date=period.start_date,
            end_date=period.end_date,
            location=location,
            acquisition_costs=costs.by_location,
        )
        snapshot = assemble(
            period, processed, costs, api_status,
            fallback_reason=fallback_reason, data_type=self.data_type,
        )
        if api_status == LIVE:
            self.store(period, location, snapshot)
        return snapshot

    def build_snapshot(self, period) -> AnalyticsSnapshot:
        if isinstance(period, dict):
            period = PeriodConfig.from_dict(period)
        location = resolve_location(period.location_id)

        cached = self.get_cached(period, location)
        if cached is not None:
            return cached

        client = self.client_factory()
        payload, reason = self._outcome(lambda: self._fetch(client, period))
        return self._finish(period, location, payload, reason)

    def compare_periods(self, periods) -> list:
        """
        Build one snapshot per period, fetching cache misses concurrently.

        Returns a list in input order of {id, label, snapshot, error}; a
        period that fails carries its error and leaves the others intact.
        """
        if not isinstance(periods, list) or not periods:
            raise ValidationError("periods must be a non-empty list", field='periods')
        max_periods = settings.MAX_COMPARISON_PERIODS
        if len(periods) > max_periods:
            raise ValidationError(
                f"At most {max_periods} periods can be compared at once", field='periods',
            )

        results = [None] * len(periods)
        pending = []

        for index, raw in enumerate(periods):
            try:
                period = PeriodConfig.from_dict(raw)
                location = resolve_location(period.location_id)
                cached = self.get_cached(period, location)
            except OrthoInsightError as e:
                results[index] = self._error_entry(raw, e)
                continue
            if cached is not None:
                results[index] = self._entry(period, cached)
            else:
                pending.append((index, period, location))

        if pending:
            executor = ThreadPoolExecutor(max_workers=len(pending), thread_name_prefix='greyfinch')
            try:
                # One client per period; sessions are not shared across threads
                futures = [
                    (index, period, location, executor.submit(self._fetch, self.client_factory(), period))
                    for index, period, location in pending
                ]
                deadline = time.monotonic() + self.timeout
                for index, period, location, future in futures:
                    remaining = max(0.0, deadline - time.monotonic())
                    payload, reason = self._outcome(lambda: self._await(future, period, remaining))
                    try:
                        snapshot = self._finish(period, location, payload, reason)
                    except OrthoInsightError as e:
                        results[index] = self._error_entry({'id': period.id, 'label': period.label}, e)
                        continue
                    results[index] = self._entry(period, snapshot)
            finally:
                executor.shutdown(wait=False, cancel_futures=True)

        return results

    def _entry(self, period, snapshot):
        return {
            'id': period.id,
            'label': snapshot.label,
            'snapshot': snapshot,
            'error': None,
        }

    def _error_entry(self, raw, exc):
        raw = raw if isinstance(raw, dict) else {}
        logger.info(f"Period {raw.get('id') or raw.get('label') or '?'} failed: {exc.message}")
        return {
            'id': str(raw.get('id') or ''),
            'label': str(raw.get('label') or ''),
            'snapshot': None,
            'error': exc.to_dict()['error'],
        }
