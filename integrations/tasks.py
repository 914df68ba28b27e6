"""
Celery tasks for integration syncing.

Scheduled via Celery Beat (see config/celery.py).
"""

import logging
from decimal import Decimal

from celery import shared_task
from django.db import DatabaseError, transaction
from django.utils import timezone

from core.exceptions import (
    ConfigurationError,
    CredentialsInvalidError,
    OrthoInsightError,
    PersistenceError,
    UpstreamError,
)

logger = logging.getLogger(__name__)


def _platform_client(api_config):
    """Build the API client for a meta/google/quickbooks configuration."""
    from .services.google_ads import GoogleAdsClient
    from .services.meta_ads import MetaAdsClient
    from .services.quickbooks import QuickBooksClient

    options = api_config.config_json or {}

    if api_config.type == 'meta':
        return MetaAdsClient(
            access_token=api_config.access_token,
            ad_account_id=options.get('ad_account_id', ''),
        )
    if api_config.type == 'google':
        return GoogleAdsClient(
            access_token=api_config.access_token,
            refresh_token=api_config.refresh_token,
            customer_id=options.get('customer_id', ''),
            developer_token=options.get('developer_token'),
        )
    if api_config.type == 'quickbooks':
        return QuickBooksClient(
            access_token=api_config.access_token,
            realm_id=options.get('realm_id', ''),
            environment=options.get('environment'),
        )
    raise ConfigurationError(f"{api_config.get_type_display()} does not provide cost data")


def _fetch_platform_rows(api_config, start_date, end_date):
    client = _platform_client(api_config)
    if api_config.type == 'quickbooks':
        return client.get_expenses(start_date, end_date)
    return client.get_ad_spend(start_date, end_date)


def run_cost_sync(api_config, period, location=None):
    """
    Pull one month of spend for a platform configuration and upsert AdSpend.

    Every attempt is recorded in ApiSyncHistory. Failures are recorded on the
    configuration and re-raised.

    Returns:
        Dict with period, platform, records and total_amount
    """
    from analytics.costs import period_date_range
    from .models import AdSpend, ApiSyncHistory
    from .transforms import TRANSFORMS, merge_by_ad

    start_date, end_date = period_date_range(period)
    platform = api_config.type

    try:
        if platform not in TRANSFORMS:
            raise ConfigurationError(f"{api_config.get_type_display()} does not provide cost data")

        rows = _fetch_platform_rows(api_config, start_date, end_date)
        records = merge_by_ad(TRANSFORMS[platform](rows))

        total = Decimal('0')
        try:
            with transaction.atomic():
                for record in records:
                    AdSpend.objects.update_or_create(
                        user=api_config.user,
                        platform=platform,
                        campaign_id=record['campaign_id'],
                        ad_set_id=record['ad_set_id'],
                        ad_id=record['ad_id'],
                        period=period,
                        location=location,
                        defaults={
                            'api_config': api_config,
                            'campaign_name': record['campaign_name'],
                            'ad_set_name': record['ad_set_name'],
                            'ad_name': record['ad_name'],
                            'spend': record['spend'],
                            'impressions': record['impressions'],
                            'clicks': record['clicks'],
                            'conversions': record['conversions'],
                            'date': record['date'],
                            'metadata': record['metadata'],
                        }
                    )
                    total += record['spend']
        except DatabaseError as e:
            logger.exception(f"Failed to store {platform} spend for {period}")
            raise PersistenceError(f"Could not store {platform} spend: {e}")

    except OrthoInsightError as e:
        api_config.last_error = e.message
        api_config.save(update_fields=['last_error', 'updated_at'])
        ApiSyncHistory.objects.create(
            api_config=api_config,
            user=api_config.user,
            period=period,
            status='failed',
            error_message=e.message,
            metadata={'error_code': e.error_code},
        )
        raise

    api_config.last_sync_at = timezone.now()
    api_config.last_error = ''
    api_config.save(update_fields=['last_sync_at', 'last_error', 'updated_at'])

    ApiSyncHistory.objects.create(
        api_config=api_config,
        user=api_config.user,
        period=period,
        status='success',
        data_count=len(records),
        total_amount=total,
        metadata={'location_id': location.id if location else None},
    )

    logger.info(f"Synced {len(records)} {platform} spend rows for {period} (total {total})")
    return {
        'period': period,
        'platform': platform,
        'records': len(records),
        'total_amount': str(total),
    }


@shared_task
def sync_external_costs(config_id, period, location_id=None):
    """
    Sync one platform configuration for a YYYY-MM period.
    Called from the sync-costs API or by sync_platform_costs.
    """
    from analytics.costs import validate_period
    from core.services import resolve_location
    from .models import ApiConfiguration

    validate_period(period)
    location = resolve_location(location_id)

    try:
        api_config = ApiConfiguration.objects.get(id=config_id, is_active=True)
    except ApiConfiguration.DoesNotExist:
        logger.error(f"API configuration {config_id} not found")
        return None

    return run_cost_sync(api_config, period, location)


@shared_task
def sync_platform_costs(platform, period=None):
    """
    Sync the current month for every active configuration of a platform.
    Runs daily via Celery Beat.
    """
    from .models import ApiConfiguration

    period = period or timezone.localdate().strftime('%Y-%m')
    configs = ApiConfiguration.objects.filter(type=platform, is_active=True)

    synced = 0
    for api_config in configs:
        try:
            run_cost_sync(api_config, period)
            synced += 1
        except OrthoInsightError:
            logger.exception(f"Error syncing {platform} costs for {api_config}")

    return synced


def _greyfinch_sources():
    """Yield (api_config or None, GreyfinchConfig) for every Greyfinch account to sync."""
    from django.conf import settings
    from .models import ApiConfiguration
    from .services.greyfinch import GreyfinchConfig

    configs = ApiConfiguration.objects.filter(type='greyfinch', is_active=True)
    if not configs.exists():
        if settings.GREYFINCH_API_KEY:
            yield None, GreyfinchConfig.from_settings()
        return

    for api_config in configs:
        yield api_config, GreyfinchConfig(
            api_key=api_config.api_key.strip(),
            api_secret=api_config.api_secret.strip(),
            base_url=api_config.config_json.get('base_url') or settings.GREYFINCH_API_URL,
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
        )


def _patient_count(location_data):
    aggregate = (location_data.get('patients_aggregate') or {}).get('aggregate') or {}
    count = aggregate.get('count', location_data.get('patientCount'))
    try:
        return int(count) if count is not None else None
    except (TypeError, ValueError):
        return None


@shared_task
def sync_greyfinch_locations():
    """
    Create or refresh Location rows from Greyfinch.
    Runs every 15 minutes via Celery Beat.
    """
    from core.services import upsert_location_from_upstream
    from .models import ApiSyncHistory
    from .services.greyfinch import GreyfinchClient

    period = timezone.localdate().strftime('%Y-%m')
    created_total = 0

    for api_config, config in _greyfinch_sources():
        try:
            locations = GreyfinchClient(config).get_locations()
        except (CredentialsInvalidError, UpstreamError) as e:
            logger.warning(f"Greyfinch location sync failed: {e.message}")
            if api_config is not None:
                api_config.last_error = e.message
                api_config.save(update_fields=['last_error', 'updated_at'])
                ApiSyncHistory.objects.create(
                    api_config=api_config,
                    user=api_config.user,
                    sync_type='locations',
                    period=period,
                    status='failed',
                    error_message=e.message,
                )
            continue

        seen = 0
        for location_data in locations:
            external_id = location_data.get('id')
            if external_id in (None, ''):
                continue
            _, created = upsert_location_from_upstream(
                external_id=str(external_id),
                name=location_data.get('name') or '',
                address=location_data.get('address') or '',
                patient_count=_patient_count(location_data),
            )
            seen += 1
            created_total += int(created)

        if api_config is not None:
            api_config.last_sync_at = timezone.now()
            api_config.last_error = ''
            api_config.save(update_fields=['last_sync_at', 'last_error', 'updated_at'])
            ApiSyncHistory.objects.create(
                api_config=api_config,
                user=api_config.user,
                sync_type='locations',
                period=period,
                status='success',
                data_count=seen,
            )
        logger.info(f"Greyfinch location sync: {seen} locations seen")

    return created_total
