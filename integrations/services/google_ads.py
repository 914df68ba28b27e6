"""
Google Ads API client.

API Documentation: https://developers.google.com/google-ads/api/docs/start

Uses OAuth2 with refresh tokens.
Rate limit: 15k requests/day per developer token.
"""

import logging
from datetime import date
from typing import List, Optional

from django.conf import settings
from google.ads.googleads.client import GoogleAdsClient as LibGoogleAdsClient
from google.ads.googleads.errors import GoogleAdsException
from google.oauth2.credentials import Credentials

from core.exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

AD_SPEND_QUERY = """
    SELECT
        campaign.id,
        campaign.name,
        ad_group.id,
        ad_group.name,
        ad_group_ad.ad.id,
        ad_group_ad.ad.name,
        segments.date,
        metrics.cost_micros,
        metrics.impressions,
        metrics.clicks,
        metrics.conversions
    FROM ad_group_ad
    WHERE segments.date BETWEEN '{start_date}' AND '{end_date}'
    ORDER BY segments.date ASC
"""


class GoogleAdsClient:
    """
    Client for Google Ads API.

    Usage:
        client = GoogleAdsClient(
            access_token='xxx',
            refresh_token='xxx',
            customer_id='123-456-7890'
        )
        rows = client.get_ad_spend(date(2025, 1, 1), date(2025, 1, 31))
    """

    def __init__(
        self,
        access_token: str,
        refresh_token: str,
        customer_id: str,
        developer_token: Optional[str] = None
    ):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.customer_id = (customer_id or '').replace('-', '')
        self.developer_token = developer_token or settings.GOOGLE_ADS_DEVELOPER_TOKEN

        if not self.customer_id:
            raise ConfigurationError("Google Ads customer id is required")

        self.credentials = Credentials(
            token=access_token,
            refresh_token=refresh_token,
            client_id=settings.GOOGLE_ADS_CLIENT_ID,
            client_secret=settings.GOOGLE_ADS_CLIENT_SECRET,
            token_uri="https://oauth2.googleapis.com/token",
        )

        try:
            self.client = LibGoogleAdsClient(
                credentials=self.credentials,
                developer_token=self.developer_token,
            )
        except ValueError as e:
            logger.error(f"Failed to initialize Google Ads client: {e}")
            raise ConfigurationError(f"Google Ads client configuration is invalid: {e}")

    def get_ad_spend(self, start_date: date, end_date: date) -> List[dict]:
        """
        Get ad-level spend for a date range, one row per ad per day.

        Returns:
            List of dicts shaped like the REST search response:
            {campaign, adGroup, ad, date, metrics{costMicros, impressions,
            clicks, conversions}}
        """
        ga_service = self.client.get_service("GoogleAdsService")
        query = AD_SPEND_QUERY.format(start_date=start_date, end_date=end_date)

        try:
            stream = ga_service.search_stream(
                customer_id=self.customer_id,
                query=query,
            )

            rows = []
            for batch in stream:
                for row in batch.results:
                    rows.append({
                        'campaign': {
                            'id': str(row.campaign.id),
                            'name': row.campaign.name,
                        },
                        'adGroup': {
                            'id': str(row.ad_group.id),
                            'name': row.ad_group.name,
                        },
                        'ad': {
                            'id': str(row.ad_group_ad.ad.id),
                            'name': row.ad_group_ad.ad.name,
                        },
                        'date': row.segments.date,  # 'YYYY-MM-DD'
                        'metrics': {
                            'costMicros': row.metrics.cost_micros,
                            'impressions': row.metrics.impressions,
                            'clicks': row.metrics.clicks,
                            'conversions': row.metrics.conversions,
                        },
                    })
        except GoogleAdsException as e:
            logger.error(f"Error fetching Google Ads spend: {e.failure}")
            raise UpstreamError(
                f"Google Ads request {e.request_id} failed",
                details={'customer_id': self.customer_id},
            )

        logger.info(f"Google Ads: {len(rows)} rows for {self.customer_id} {start_date}..{end_date}")
        return rows
