"""
Meta (Facebook) Ads API client.

API Documentation: https://developers.facebook.com/docs/marketing-api/insights

Uses long-lived user access tokens (60-day expiry).
Rate limit: 200 calls/hour per user.
"""

import json
import logging
from datetime import date
from typing import List

import requests
from django.conf import settings

from core.exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

INSIGHT_FIELDS = [
    'campaign_id', 'campaign_name',
    'adset_id', 'adset_name',
    'ad_id', 'ad_name',
    'spend', 'impressions', 'clicks', 'actions',
    'date_start', 'date_stop',
]

# Safety stop for runaway paging
MAX_PAGES = 50


class MetaAdsClient:
    """
    Client for the Meta Marketing API.

    Usage:
        client = MetaAdsClient(
            access_token='xxx',
            ad_account_id='act_123456789'
        )
        rows = client.get_ad_spend(date(2025, 1, 1), date(2025, 1, 31))
    """

    def __init__(self, access_token: str, ad_account_id: str, timeout: float = 30):
        self.access_token = access_token
        if ad_account_id and not ad_account_id.startswith('act_'):
            ad_account_id = f'act_{ad_account_id}'
        self.ad_account_id = ad_account_id
        self.timeout = timeout
        self.base_url = f'https://graph.facebook.com/{settings.META_GRAPH_API_VERSION}'
        self.session = requests.Session()

    def _request(self, method: str, url: str, **kwargs) -> dict:
        """Make an API request. `url` may be an endpoint or an absolute paging URL."""
        if not url.startswith('http'):
            url = f"{self.base_url}/{url}"
            params = kwargs.get('params', {})
            params['access_token'] = self.access_token
            kwargs['params'] = params

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"Meta Ads API error: {e}")
            raise UpstreamError(f"Meta Ads API error: {e}", status=status)
        except requests.exceptions.RequestException as e:
            logger.error(f"Meta Ads API error: {e}")
            raise UpstreamError(f"Meta Ads request failed: {e}")

        try:
            body = response.json()
        except ValueError:
            logger.error("Meta Ads API returned a non-JSON body")
            raise UpstreamError("Meta Ads returned a non-JSON body", status=response.status_code)

        if not isinstance(body, dict):
            raise UpstreamError("Meta Ads returned an unexpected body", status=response.status_code)
        return body

    def get_ad_spend(self, start_date: date, end_date: date) -> List[dict]:
        """
        Get ad-level spend insights for a date range.

        Returns:
            Raw insight rows (campaign/ad set/ad ids and names, spend,
            impressions, clicks, actions). Follows paging.next.
        """
        if not self.access_token or not self.ad_account_id:
            raise ConfigurationError("Meta Ads access token and ad account id are required")

        params = {
            'fields': ','.join(INSIGHT_FIELDS),
            'time_range': json.dumps({'since': start_date.isoformat(), 'until': end_date.isoformat()}),
            'level': 'ad',
            'limit': 500,
        }

        data = self._request('GET', f"{self.ad_account_id}/insights", params=params)
        rows = list(data.get('data', []))

        pages = 1
        next_url = (data.get('paging') or {}).get('next')
        while next_url and pages < MAX_PAGES:
            data = self._request('GET', next_url)
            rows.extend(data.get('data', []))
            next_url = (data.get('paging') or {}).get('next')
            pages += 1

        logger.info(f"Meta Ads: {len(rows)} insight rows for {self.ad_account_id} {start_date}..{end_date}")
        return rows
