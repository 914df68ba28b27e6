import base64
from datetime import date
from io import StringIO
from unittest.mock import MagicMock, patch

import pytest
import requests
from django.core.management import call_command
from django.core.management.base import CommandError

from core.exceptions import CredentialsInvalidError, UpstreamError
from integrations.models import ApiConfiguration
from integrations.services.greyfinch import (
    GreyfinchClient,
    GreyfinchConfig,
    config_for_user,
    validate_credentials,
)
from integrations.services.greyfinch_schema import normalize_payload

CONFIG = GreyfinchConfig(api_key='key-123', api_secret='s3cr3t!', base_url='https://greyfinch.test/graphql', timeout=7)


def _response(body=None, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


@pytest.fixture
def client():
    return GreyfinchClient(CONFIG)


class TestCredentials:

    @pytest.mark.parametrize('key,secret', [
        ('', 'secret'),
        ('key', ''),
        ('key with space', 'secret'),
        ('key', 'sécret'),
        ('key\n', 'secret'),
    ])
    def test_rejects_unsafe_values(self, key, secret):
        with pytest.raises(CredentialsInvalidError):
            validate_credentials(key, secret)

    def test_accepts_printable_ascii(self):
        validate_credentials('abc-123_XYZ', 'p@ss:w0rd!')

    def test_invalid_credentials_never_hit_the_network(self):
        client = GreyfinchClient(GreyfinchConfig('bad key', 'secret', 'https://greyfinch.test/graphql'))

        with patch.object(client.session, 'post') as mock_post:
            with pytest.raises(CredentialsInvalidError):
                client.fetch_entities('query { locations { id } }')

        mock_post.assert_not_called()


class TestFetchEntities:

    def test_posts_query_with_bearer_token(self, client):
        with patch.object(client.session, 'post', return_value=_response({'data': {'locations': []}})) as mock_post:
            data = client.fetch_entities('query { locations { id } }', {'limit': 5})

        assert data == {'locations': []}
        args, kwargs = mock_post.call_args
        assert args[0] == 'https://greyfinch.test/graphql'
        assert kwargs['json'] == {'query': 'query { locations { id } }', 'variables': {'limit': 5}}
        assert kwargs['timeout'] == 7
        token = base64.b64encode(b'key-123:s3cr3t!').decode('ascii')
        assert kwargs['headers']['Authorization'] == f'Bearer {token}'

    def test_http_error(self, client):
        with patch.object(client.session, 'post', return_value=_response({}, status_code=503)):
            with pytest.raises(UpstreamError) as exc_info:
                client.fetch_entities('query { x }')

        assert exc_info.value.status == 503
        assert exc_info.value.details['upstream_status'] == 503

    def test_graphql_errors(self, client):
        body = {'data': None, 'errors': [{'message': 'field "revenueLines" not found'}]}
        with patch.object(client.session, 'post', return_value=_response(body)):
            with pytest.raises(UpstreamError) as exc_info:
                client.fetch_entities('query { x }')

        assert exc_info.value.details['graphql_errors'] == ['field "revenueLines" not found']

    def test_timeout(self, client):
        with patch.object(client.session, 'post', side_effect=requests.exceptions.Timeout('slow')):
            with pytest.raises(UpstreamError) as exc_info:
                client.fetch_entities('query { x }')

        assert 'timed out' in exc_info.value.message

    def test_connection_error(self, client):
        with patch.object(client.session, 'post', side_effect=requests.exceptions.ConnectionError('refused')):
            with pytest.raises(UpstreamError):
                client.fetch_entities('query { x }')

    def test_non_json_body(self, client):
        response = _response()
        response.json.side_effect = ValueError('not json')
        with patch.object(client.session, 'post', return_value=response):
            with pytest.raises(UpstreamError):
                client.fetch_entities('query { x }')

    def test_non_object_body(self, client):
        with patch.object(client.session, 'post', return_value=_response(['unexpected'])):
            with pytest.raises(UpstreamError):
                client.fetch_entities('query { x }')

    @pytest.mark.parametrize('data', [['unexpected'], 'oops', 42])
    def test_non_object_data(self, client, data):
        with patch.object(client.session, 'post', return_value=_response({'data': data})):
            with pytest.raises(UpstreamError) as exc_info:
                client.fetch_entities('query { x }')

        assert exc_info.value.message == "Greyfinch returned an unexpected data object"
        assert exc_info.value.status == 200

    def test_null_data_is_empty(self, client):
        with patch.object(client.session, 'post', return_value=_response({'data': None})):
            assert client.fetch_entities('query { x }') == {}


class TestAnalyticsPayload:

    def test_date_bounds_and_canonical_keys(self, client):
        body = {'data': {
            'locations': [{'id': 'loc-1', 'name': 'Gilbert'}],
            'patients': [{'id': 'p1'}],
            'revenueLines': [{'id': 'r1', 'amount': 10}],
            'somethingNew': [1, 2, 3],
        }}
        with patch.object(client.session, 'post', return_value=_response(body)) as mock_post:
            payload = client.fetch_analytics_payload(date(2025, 1, 1), date(2025, 1, 31))

        variables = mock_post.call_args.kwargs['json']['variables']
        assert variables['startDate'] == '2025-01-01T00:00:00'
        assert variables['endDate'].startswith('2025-01-31T23:59:59')
        assert payload['revenue'] == [{'id': 'r1', 'amount': 10}]
        assert payload['production'] == []
        assert payload['appointmentBookings'] == []
        assert 'somethingNew' not in payload

    def test_get_locations(self, client):
        body = {'data': {'locations': [{'id': 'loc-1', 'name': 'Gilbert'}]}}
        with patch.object(client.session, 'post', return_value=_response(body)):
            assert client.get_locations() == [{'id': 'loc-1', 'name': 'Gilbert'}]

    def test_introspect(self, client):
        body = {'data': {'__schema': {'queryType': {'fields': [
            {'name': 'patients', 'type': {'name': None, 'kind': 'NON_NULL', 'ofType': {'name': 'Patient'}}},
            {'name': 'leads', 'type': {'name': 'Lead', 'kind': 'OBJECT'}},
        ]}}}}
        with patch.object(client.session, 'post', return_value=_response(body)):
            fields = client.introspect()

        assert fields == [
            {'name': 'patients', 'type': 'Patient', 'kind': 'NON_NULL'},
            {'name': 'leads', 'type': 'Lead', 'kind': 'OBJECT'},
        ]


def test_normalize_payload():
    payload = normalize_payload({
        'locations': {'gilbert': {'id': 'loc-1'}},
        'productionLines': [{'id': 'pr1'}],
        'patients': None,
    })

    assert payload['locations'] == {'gilbert': {'id': 'loc-1'}}
    assert payload['production'] == [{'id': 'pr1'}]
    assert payload['patients'] == []
    assert set(payload) == {
        'locations', 'patients', 'appointments', 'leads',
        'appointmentBookings', 'revenue', 'production',
    }
    assert normalize_payload(None)['leads'] == []


@pytest.mark.django_db
class TestConfigForUser:

    def test_falls_back_to_settings(self, user, settings):
        settings.GREYFINCH_API_KEY = 'settings-key'
        settings.GREYFINCH_API_SECRET = 'settings-secret'

        config = config_for_user(user)

        assert config.api_key == 'settings-key'
        assert config.base_url == settings.GREYFINCH_API_URL

    def test_uses_user_configuration(self, user):
        ApiConfiguration.objects.create(
            user=user, name='Practice', type='greyfinch',
            api_key=' user-key ', api_secret='user-secret',
            config_json={'base_url': 'https://beta.greyfinch.test/graphql'},
        )

        config = config_for_user(user)

        assert config.api_key == 'user-key'
        assert config.api_secret == 'user-secret'
        assert config.base_url == 'https://beta.greyfinch.test/graphql'

    def test_ignores_inactive_configuration(self, user, settings):
        ApiConfiguration.objects.create(
            user=user, name='Old', type='greyfinch', api_key='old', api_secret='old', is_active=False,
        )

        assert config_for_user(user).api_key == settings.GREYFINCH_API_KEY


@pytest.mark.django_db
class TestIntrospectCommand:

    def test_reports_missing_collections(self):
        fields = [{'name': 'patients', 'type': 'Patient', 'kind': 'OBJECT'}]
        out = StringIO()
        with patch.object(GreyfinchClient, 'introspect', return_value=fields):
            call_command('greyfinch_introspect', stdout=out)

        output = out.getvalue()
        assert 'patients: Patient (OBJECT)' in output
        assert 'Mapped collections missing upstream' in output
        assert 'revenueLines' in output

    def test_bad_credentials(self):
        # Test settings carry no Greyfinch key
        with pytest.raises(CommandError):
            call_command('greyfinch_introspect', stdout=StringIO())

    def test_unknown_user(self):
        with pytest.raises(CommandError):
            call_command('greyfinch_introspect', user='nobody', stdout=StringIO())
