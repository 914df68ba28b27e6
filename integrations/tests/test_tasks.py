from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db import IntegrityError, transaction

from core.exceptions import ConfigurationError, UpstreamError
from core.models import Location
from integrations.models import AdSpend, ApiConfiguration, ApiSyncHistory
from integrations.tasks import (
    run_cost_sync,
    sync_external_costs,
    sync_greyfinch_locations,
    sync_platform_costs,
)

META_ROWS = [
    {'campaign_id': 'c1', 'campaign_name': 'Spring', 'adset_id': 's1', 'ad_id': 'a1',
     'spend': '100.00', 'impressions': '500', 'clicks': '20', 'date_start': '2025-03-01'},
    {'campaign_id': 'c1', 'campaign_name': 'Spring', 'adset_id': 's1', 'ad_id': 'a2',
     'spend': '50.25', 'impressions': '100', 'clicks': '4', 'date_start': '2025-03-01'},
]


@pytest.fixture
def meta_config(user):
    return ApiConfiguration.objects.create(
        user=user, name='Practice Meta', type='meta',
        access_token='token', config_json={'ad_account_id': '123'},
    )


@pytest.mark.django_db
class TestRunCostSync:

    @patch('integrations.tasks._fetch_platform_rows', return_value=META_ROWS)
    def test_stores_spend_and_history(self, mock_fetch, meta_config, user):
        result = run_cost_sync(meta_config, '2025-03')

        assert result == {'period': '2025-03', 'platform': 'meta', 'records': 2, 'total_amount': '150.25'}
        args = mock_fetch.call_args.args
        assert args[1].isoformat() == '2025-03-01'
        assert args[2].isoformat() == '2025-03-31'

        assert AdSpend.objects.filter(user=user, period='2025-03').count() == 2
        history = ApiSyncHistory.objects.get(api_config=meta_config)
        assert history.status == 'success'
        assert history.data_count == 2
        assert history.total_amount == Decimal('150.25')

        meta_config.refresh_from_db()
        assert meta_config.last_sync_at is not None
        assert meta_config.last_error == ''

    @patch('integrations.tasks._fetch_platform_rows', return_value=META_ROWS)
    def test_rerun_does_not_duplicate_spend(self, mock_fetch, meta_config, user):
        run_cost_sync(meta_config, '2025-03')
        run_cost_sync(meta_config, '2025-03')

        assert AdSpend.objects.filter(user=user).count() == 2
        assert ApiSyncHistory.objects.filter(status='success').count() == 2

    @patch('integrations.tasks._fetch_platform_rows', return_value=META_ROWS)
    def test_spend_for_a_location(self, mock_fetch, meta_config, location):
        run_cost_sync(meta_config, '2025-03', location)

        assert set(AdSpend.objects.values_list('location_id', flat=True)) == {location.id}

    @patch('integrations.tasks._fetch_platform_rows', side_effect=UpstreamError("Meta Ads API error", status=500))
    def test_failure_is_recorded_and_raised(self, mock_fetch, meta_config):
        with pytest.raises(UpstreamError):
            run_cost_sync(meta_config, '2025-03')

        history = ApiSyncHistory.objects.get(api_config=meta_config)
        assert history.status == 'failed'
        assert history.metadata == {'error_code': 'UPSTREAM_ERROR'}
        meta_config.refresh_from_db()
        assert meta_config.last_error == 'Meta Ads API error'
        assert AdSpend.objects.count() == 0

    @pytest.mark.parametrize('with_location', [True, False])
    def test_duplicate_spend_key_is_rejected_by_the_database(self, user, location, with_location):
        key = {'user': user, 'platform': 'meta', 'campaign_id': 'c1', 'ad_set_id': 's1',
               'ad_id': 'a1', 'period': '2025-03', 'location': location if with_location else None}
        AdSpend.objects.create(spend=Decimal('10.00'), **key)

        with pytest.raises(IntegrityError), transaction.atomic():
            AdSpend.objects.create(spend=Decimal('20.00'), **key)

        assert AdSpend.objects.filter(user=user).count() == 1

    def test_greyfinch_config_has_no_costs(self, user):
        config = ApiConfiguration.objects.create(user=user, name='PMS', type='greyfinch')

        with pytest.raises(ConfigurationError):
            run_cost_sync(config, '2025-03')

        assert ApiSyncHistory.objects.get(api_config=config).status == 'failed'


@pytest.mark.django_db
class TestSyncTasks:

    @patch('integrations.tasks._fetch_platform_rows', return_value=META_ROWS)
    def test_sync_external_costs(self, mock_fetch, meta_config):
        result = sync_external_costs.delay(meta_config.id, '2025-03').get()

        assert result['records'] == 2

    def test_sync_external_costs_missing_config(self):
        assert sync_external_costs(9999, '2025-03') is None

    @patch('integrations.tasks._fetch_platform_rows')
    def test_sync_platform_costs_continues_after_failure(self, mock_fetch, user, meta_config):
        ApiConfiguration.objects.create(
            user=user, name='Second account', type='meta',
            access_token='token', config_json={'ad_account_id': '456'},
        )
        mock_fetch.side_effect = [UpstreamError("expired token"), META_ROWS]

        synced = sync_platform_costs('meta', '2025-03')

        assert synced == 1
        assert ApiSyncHistory.objects.filter(status='failed').count() == 1
        assert ApiSyncHistory.objects.filter(status='success').count() == 1


@pytest.mark.django_db
class TestSyncGreyfinchLocations:

    LOCATIONS = [
        {'id': 'loc-1', 'name': 'Gilbert', 'address': '1 Main St',
         'patients_aggregate': {'aggregate': {'count': 412}}},
        {'id': 'loc-3', 'name': 'Mesa'},
        {'name': 'No id'},
    ]

    @pytest.fixture
    def greyfinch_config(self, user):
        return ApiConfiguration.objects.create(
            user=user, name='Greyfinch', type='greyfinch', api_key='key', api_secret='secret',
        )

    @patch('integrations.services.greyfinch.GreyfinchClient.get_locations')
    def test_creates_and_refreshes_locations(self, mock_locations, greyfinch_config, location):
        location.is_active = False
        location.save()
        mock_locations.return_value = self.LOCATIONS

        created = sync_greyfinch_locations()

        assert created == 1
        gilbert = Location.objects.get(external_id='loc-1')
        assert gilbert.patient_count == 412
        assert gilbert.is_active is False
        assert gilbert.last_sync_date is not None
        assert Location.objects.get(external_id='loc-3').name == 'Mesa'
        history = ApiSyncHistory.objects.get(api_config=greyfinch_config)
        assert history.sync_type == 'locations'
        assert history.data_count == 2

    @patch('integrations.services.greyfinch.GreyfinchClient.get_locations',
           side_effect=UpstreamError("Greyfinch returned HTTP 502"))
    def test_failure_is_recorded(self, mock_locations, greyfinch_config):
        assert sync_greyfinch_locations() == 0

        greyfinch_config.refresh_from_db()
        assert greyfinch_config.last_error == 'Greyfinch returned HTTP 502'
        assert ApiSyncHistory.objects.get(api_config=greyfinch_config).status == 'failed'

    @patch('integrations.services.greyfinch.GreyfinchClient.get_locations')
    def test_nothing_configured(self, mock_locations):
        assert sync_greyfinch_locations() == 0
        mock_locations.assert_not_called()
