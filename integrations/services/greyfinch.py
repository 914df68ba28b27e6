"""
Greyfinch GraphQL API client.

API Documentation: https://connect.greyfinch.com/docs
Endpoint: POST {GREYFINCH_API_URL} with a JSON {query, variables} body.

Greyfinch authenticates with a bearer token built from the API key and
secret: base64("{api_key}:{api_secret}").
"""

import base64
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

import requests
from django.conf import settings

from core.exceptions import CredentialsInvalidError, UpstreamError

from .greyfinch_schema import (
    ANALYTICS_QUERY,
    INTROSPECTION_QUERY,
    LOCATIONS_QUERY,
    SCHEMA_VERSION,
    normalize_payload,
)

logger = logging.getLogger(__name__)

# Printable ASCII without spaces; anything else breaks the Authorization header
CREDENTIAL_PATTERN = re.compile(r'[\x21-\x7e]+')


@dataclass(frozen=True)
class GreyfinchConfig:
    api_key: str
    api_secret: str
    base_url: str
    timeout: float = 20

    @classmethod
    def from_settings(cls):
        return cls(
            api_key=settings.GREYFINCH_API_KEY,
            api_secret=settings.GREYFINCH_API_SECRET,
            base_url=settings.GREYFINCH_API_URL,
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
        )


def config_for_user(user) -> GreyfinchConfig:
    """
    Build the Greyfinch config for a user.

    Uses the user's active greyfinch ApiConfiguration when there is one,
    otherwise the GREYFINCH_* settings.
    """
    from integrations.models import ApiConfiguration

    api_config = None
    if user is not None and getattr(user, 'is_authenticated', False):
        api_config = ApiConfiguration.objects.filter(
            user=user, type='greyfinch', is_active=True,
        ).order_by('-updated_at').first()

    if api_config is None:
        return GreyfinchConfig.from_settings()

    return GreyfinchConfig(
        api_key=api_config.api_key.strip(),
        api_secret=api_config.api_secret.strip(),
        base_url=api_config.config_json.get('base_url') or settings.GREYFINCH_API_URL,
        timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
    )


def validate_credentials(api_key: str, api_secret: str):
    """Raise CredentialsInvalidError unless both values are header-safe."""
    if not api_key or not api_secret:
        raise CredentialsInvalidError("Greyfinch API key and secret are required")
    for name, value in (('api_key', api_key), ('api_secret', api_secret)):
        if not CREDENTIAL_PATTERN.fullmatch(value):
            raise CredentialsInvalidError(
                f"Greyfinch {name} contains characters that are not allowed",
                details={'field': name},
            )


def _range_bound(value, end=False) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return datetime.combine(value, time.max if end else time.min).isoformat()
    return str(value)


class GreyfinchClient:
    """
    Client for the Greyfinch GraphQL API.

    Usage:
        client = GreyfinchClient(config_for_user(request.user))
        payload = client.fetch_analytics_payload(date(2025, 1, 1), date(2025, 1, 31))

    Credentials are checked before anything goes on the wire. Every failure
    (transport, timeout, non-2xx, GraphQL errors) raises UpstreamError and
    nothing is retried.
    """

    def __init__(self, config: GreyfinchConfig):
        self.config = config
        self.session = requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'User-Agent': 'OrthoInsight',
        })

    def _auth_header(self) -> str:
        validate_credentials(self.config.api_key, self.config.api_secret)
        raw = f"{self.config.api_key}:{self.config.api_secret}".encode('ascii')
        return f"Bearer {base64.b64encode(raw).decode('ascii')}"

    def fetch_entities(self, query: str, variables: Optional[dict] = None,
                       operation: str = 'query') -> dict:
        """
        Run one GraphQL query and return its `data` object.

        Raises:
            CredentialsInvalidError: key/secret missing or unsafe (no request made)
            UpstreamError: any transport, HTTP or GraphQL failure
        """
        headers = {'Authorization': self._auth_header()}
        variables = variables or {}
        logger.info(
            f"Greyfinch {operation} (schema {SCHEMA_VERSION}) "
            f"variables={sorted(variables.keys())}"
        )

        try:
            response = self.session.post(
                self.config.base_url,
                json={'query': query, 'variables': variables},
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.error(f"Greyfinch API timeout: {e}")
            raise UpstreamError(f"Greyfinch request timed out after {self.config.timeout}s")
        except requests.exceptions.RequestException as e:
            logger.error(f"Greyfinch API error: {e}")
            raise UpstreamError(f"Greyfinch request failed: {e}")

        if not 200 <= response.status_code < 300:
            logger.error(f"Greyfinch API error: HTTP {response.status_code}")
            raise UpstreamError(
                f"Greyfinch returned HTTP {response.status_code}",
                status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            logger.error("Greyfinch API returned a non-JSON body")
            raise UpstreamError("Greyfinch returned a non-JSON body", status=response.status_code)

        if not isinstance(body, dict):
            raise UpstreamError("Greyfinch returned an unexpected body", status=response.status_code)

        errors = body.get('errors')
        if errors:
            messages = [err.get('message', str(err)) if isinstance(err, dict) else str(err)
                        for err in errors]
            logger.error(f"Greyfinch GraphQL errors: {messages}")
            raise UpstreamError(
                f"Greyfinch GraphQL error: {'; '.join(messages)}",
                status=response.status_code,
                details={'graphql_errors': messages},
            )

        data = body.get('data') or {}
        if not isinstance(data, dict):
            logger.error(f"Greyfinch {operation} returned data of type {type(data).__name__}")
            raise UpstreamError("Greyfinch returned an unexpected data object", status=response.status_code)
        shape = {
            key: len(value) if isinstance(value, (list, dict)) else type(value).__name__
            for key, value in data.items()
        }
        logger.info(f"Greyfinch {operation} response: {shape}")
        return data

    def fetch_analytics_payload(self, start_date=None, end_date=None) -> dict:
        """
        Fetch every entity set the analytics processor needs.

        Returns the canonical payload (locations, patients, appointments,
        leads, appointmentBookings, revenue, production).
        """
        variables = {
            'startDate': _range_bound(start_date),
            'endDate': _range_bound(end_date, end=True),
        }
        data = self.fetch_entities(ANALYTICS_QUERY, variables, operation='GetAnalyticsData')
        return normalize_payload(data)

    def get_locations(self) -> list:
        """Get practice locations with their patient counts."""
        data = self.fetch_entities(LOCATIONS_QUERY, operation='GetLocations')
        locations = data.get('locations')
        return locations if isinstance(locations, list) else []

    def introspect(self) -> list:
        """
        List root query fields exposed by the current schema.

        Returns a list of dicts: {name, type, kind}.
        """
        data = self.fetch_entities(INTROSPECTION_QUERY, operation='IntrospectSchema')
        query_type = (data.get('__schema') or {}).get('queryType') or {}
        fields = []
        for field in query_type.get('fields') or []:
            field_type = field.get('type') or {}
            inner = field_type.get('ofType') or {}
            fields.append({
                'name': field.get('name'),
                'type': field_type.get('name') or inner.get('name'),
                'kind': field_type.get('kind'),
            })
        return fields
