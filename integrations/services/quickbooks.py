"""
QuickBooks Online accounting API client.

API Documentation: https://developer.intuit.com/app/developer/qbo/docs/api/accounting/all-entities/purchase

Base URL: https://quickbooks.api.intuit.com/v3/company/{realm_id}
Sandbox:  https://sandbox-quickbooks.api.intuit.com/v3/company/{realm_id}
"""

import logging
from datetime import date
from typing import List

import requests
from django.conf import settings

from core.exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

BASE_URLS = {
    'production': 'https://quickbooks.api.intuit.com/v3/company/{realm_id}',
    'sandbox': 'https://sandbox-quickbooks.api.intuit.com/v3/company/{realm_id}',
}

PAGE_SIZE = 1000


class QuickBooksClient:
    """
    Client for the QuickBooks Online query endpoint.

    Usage:
        client = QuickBooksClient(access_token='xxx', realm_id='1234567890')
        purchases = client.get_expenses(date(2025, 1, 1), date(2025, 1, 31))
    """

    def __init__(self, access_token: str, realm_id: str, environment: str = None, timeout: float = 30):
        self.access_token = access_token
        self.realm_id = realm_id
        self.environment = environment or settings.QUICKBOOKS_ENVIRONMENT
        base = BASE_URLS.get(self.environment, BASE_URLS['sandbox'])
        self.base_url = base.format(realm_id=realm_id)
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'Authorization': f'Bearer {access_token}',
        })

    def _query(self, statement: str) -> dict:
        url = f"{self.base_url}/query"
        try:
            response = self.session.get(url, params={'query': statement}, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"QuickBooks API error: {e}")
            raise UpstreamError(f"QuickBooks API error: {e}", status=status)
        except requests.exceptions.RequestException as e:
            logger.error(f"QuickBooks API error: {e}")
            raise UpstreamError(f"QuickBooks request failed: {e}")

        try:
            body = response.json()
        except ValueError:
            logger.error("QuickBooks API returned a non-JSON body")
            raise UpstreamError("QuickBooks returned a non-JSON body", status=response.status_code)

        if not isinstance(body, dict):
            raise UpstreamError("QuickBooks returned an unexpected body", status=response.status_code)
        return body

    def get_expenses(self, start_date: date, end_date: date) -> List[dict]:
        """
        Get Purchase entities with a TxnDate inside the range.

        Returns:
            Raw Purchase dicts (Id, TxnDate, TotalAmt, DocNumber, ...)
        """
        if not self.access_token or not self.realm_id:
            raise ConfigurationError("QuickBooks access token and realm id are required")

        purchases = []
        start_position = 1
        while True:
            statement = (
                f"SELECT * FROM Purchase "
                f"WHERE TxnDate >= '{start_date.isoformat()}' AND TxnDate <= '{end_date.isoformat()}' "
                f"STARTPOSITION {start_position} MAXRESULTS {PAGE_SIZE}"
            )
            data = self._query(statement)
            page = (data.get('QueryResponse') or {}).get('Purchase', [])
            purchases.extend(page)
            if len(page) < PAGE_SIZE:
                break
            start_position += PAGE_SIZE

        logger.info(f"QuickBooks: {len(purchases)} purchases for realm {self.realm_id} {start_date}..{end_date}")
        return purchases
