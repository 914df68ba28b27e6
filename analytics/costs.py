"""
Cost aggregation: manual acquisition costs plus API-synced ad spend.

All writes are upserts on natural keys, so repeated or concurrent
submissions converge on one row.
"""

import calendar
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from django.db import DatabaseError, transaction
from django.db.models import Sum

from core.exceptions import NotFoundError, PersistenceError, ValidationError
from core.services import resolve_location
from integrations.models import AdSpend

from .models import AcquisitionCost

logger = logging.getLogger(__name__)

PERIOD_PATTERN = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')
PLATFORMS = ('meta', 'google', 'quickbooks')
REFERRAL_TYPES = [choice for choice, _ in AcquisitionCost.REFERRAL_TYPE_CHOICES]
SOURCES = [choice for choice, _ in AcquisitionCost.SOURCE_CHOICES]


@dataclass
class CostSummary:
    manual: List[AcquisitionCost] = field(default_factory=list)
    api: Dict[str, List[AdSpend]] = field(default_factory=dict)
    totals: Dict[str, Decimal] = field(default_factory=dict)
    # Location lookup key (None = not tied to a location) -> spend
    by_location: Dict[Optional[str], Decimal] = field(default_factory=dict)


def validate_period(value) -> str:
    """Return a YYYY-MM period or raise ValidationError."""
    if not isinstance(value, str) or not PERIOD_PATTERN.match(value.strip()):
        raise ValidationError(f"Invalid period {value!r}, expected YYYY-MM", field='period')
    return value.strip()


def period_for(day: date) -> str:
    return day.strftime('%Y-%m')


def period_date_range(period):
    """First and last day of a YYYY-MM period."""
    period = validate_period(period)
    year, month = (int(part) for part in period.split('-'))
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def parse_cost(value) -> Decimal:
    try:
        cost = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid cost {value!r}", field='cost')
    if not cost.is_finite() or cost < 0:
        raise ValidationError("Cost must be a non-negative number", field='cost')
    return cost.quantize(Decimal('0.01'))


def _location_key(location) -> Optional[str]:
    return location.lookup_key if location is not None else None


def get_costs(user, location_id, period) -> CostSummary:
    """
    Manual and synced costs for a user and period.

    location_id None means every location, including rows with no location.
    """
    period = validate_period(period)
    location = resolve_location(location_id)

    manual_qs = AcquisitionCost.objects.filter(
        user=user, period=period, is_deleted=False,
    ).select_related('location')
    api_qs = AdSpend.objects.filter(user=user, period=period).select_related('location')
    if location is not None:
        manual_qs = manual_qs.filter(location=location)
        api_qs = api_qs.filter(location=location)

    try:
        manual_rows = list(manual_qs)
        api_rows = list(api_qs)
    except DatabaseError as e:
        logger.exception(f"Failed to load costs for {period}")
        raise PersistenceError(f"Could not load costs: {e}")

    totals = {'manual': Decimal('0')}
    totals.update({platform: Decimal('0') for platform in PLATFORMS})
    by_location = {}

    def add(location_obj, amount):
        key = _location_key(location_obj)
        by_location[key] = by_location.get(key, Decimal('0')) + amount

    for row in manual_rows:
        # Synced AcquisitionCost rows count toward their platform
        bucket = row.source if row.source in PLATFORMS else 'manual'
        totals[bucket] += row.cost
        add(row.location, row.cost)

    api = {platform: [] for platform in PLATFORMS}
    for row in api_rows:
        api[row.platform].append(row)
        totals[row.platform] += row.spend
        add(row.location, row.spend)

    totals['total'] = sum((totals[key] for key in ('manual',) + PLATFORMS), Decimal('0'))
    return CostSummary(manual=manual_rows, api=api, totals=totals, by_location=by_location)


def upsert_manual_cost(user, location_id, referral_type, period, cost,
                       description='', source='manual', metadata=None):
    """
    Create or replace the cost for (location, referral_type, period, user).

    Last write wins. A soft-deleted row on the same key is revived.
    """
    period = validate_period(period)
    if referral_type not in REFERRAL_TYPES:
        raise ValidationError(
            f"Invalid referral type {referral_type!r}, expected one of {', '.join(REFERRAL_TYPES)}",
            field='referralType',
        )
    if source not in SOURCES:
        raise ValidationError(f"Invalid source {source!r}", field='source')
    amount = parse_cost(cost)
    location = resolve_location(location_id)

    try:
        with transaction.atomic():
            row, created = AcquisitionCost.objects.update_or_create(
                user=user,
                location=location,
                referral_type=referral_type,
                period=period,
                defaults={
                    'cost': amount,
                    'source': source,
                    'description': description or '',
                    'metadata': metadata or {},
                    'is_deleted': False,
                }
            )
    except DatabaseError as e:
        logger.exception(f"Failed to save {referral_type} cost for {period}")
        raise PersistenceError(f"Could not save acquisition cost: {e}")

    logger.info(
        f"{'Created' if created else 'Updated'} {referral_type} cost {amount} "
        f"for {period} ({location or 'all locations'})"
    )
    return row


def soft_delete_cost(user, cost_id):
    """Hide a cost row; it is kept for audit."""
    try:
        row = AcquisitionCost.objects.get(pk=cost_id, user=user, is_deleted=False)
    except (AcquisitionCost.DoesNotExist, ValueError, TypeError):
        raise NotFoundError('Acquisition cost', cost_id)

    row.is_deleted = True
    try:
        row.save(update_fields=['is_deleted', 'updated_at'])
    except DatabaseError as e:
        logger.exception(f"Failed to delete acquisition cost {cost_id}")
        raise PersistenceError(f"Could not delete acquisition cost: {e}")
    return row


def monthly_totals(user, period):
    """Per-referral-type manual totals for a period, used by the cost editor."""
    rows = (
        AcquisitionCost.objects
        .filter(user=user, period=validate_period(period), is_deleted=False)
        .values('referral_type')
        .annotate(total=Sum('cost'))
    )
    totals = dict.fromkeys(REFERRAL_TYPES, Decimal('0'))
    for row in rows:
        totals[row['referral_type']] = row['total'] or Decimal('0')
    return totals


def serialize_cost(row):
    return {
        'id': row.id,
        'locationId': row.location_id,
        'referralType': row.referral_type,
        'cost': float(row.cost),
        'period': row.period,
        'source': row.source,
        'description': row.description,
        'metadata': row.metadata,
        'updatedAt': row.updated_at.isoformat() if row.updated_at else None,
    }


def serialize_ad_spend(row):
    return {
        'id': row.id,
        'platform': row.platform,
        'locationId': row.location_id,
        'campaignId': row.campaign_id,
        'campaignName': row.campaign_name,
        'adSetId': row.ad_set_id,
        'adId': row.ad_id,
        'spend': float(row.spend),
        'impressions': row.impressions,
        'clicks': row.clicks,
        'conversions': row.conversions,
        'period': row.period,
    }
