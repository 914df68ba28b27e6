import pytest

from core.decorators import parse_json_body
from core.exceptions import NotFoundError, UpstreamError, ValidationError
from core.models import Location
from core.services import (
    create_location,
    deactivate_location,
    resolve_location,
    upsert_location_from_upstream,
)


@pytest.mark.django_db
class TestLocations:

    def test_create_location(self):
        location = create_location('  Gilbert ', '123 Main St', external_id='loc-1')

        assert location.name == 'Gilbert'
        assert location.lookup_key == 'loc-1'
        assert location.is_active is True

    def test_create_requires_name(self):
        with pytest.raises(ValidationError):
            create_location('   ')

    def test_duplicate_external_id(self, location):
        with pytest.raises(ValidationError) as exc_info:
            create_location('Gilbert again', external_id='loc-1')

        assert exc_info.value.details['field'] == 'externalId'

    def test_lookup_key_falls_back_to_name(self):
        assert create_location('Mesa').lookup_key == 'Mesa'

    def test_upsert_from_upstream(self, location):
        refreshed, created = upsert_location_from_upstream('loc-1', 'Gilbert Office', patient_count=120)
        new, new_created = upsert_location_from_upstream('loc-5', '', address='9 Elm')

        assert created is False
        assert refreshed.pk == location.pk
        assert refreshed.name == 'Gilbert Office'
        assert refreshed.patient_count == 120
        assert refreshed.last_sync_date is not None
        assert new_created is True
        assert new.name == 'loc-5'
        assert new.address == '9 Elm'

    def test_upsert_keeps_deactivated_location_inactive(self, location):
        deactivate_location(location.id)

        refreshed, _ = upsert_location_from_upstream('loc-1', 'Gilbert')

        assert refreshed.is_active is False

    def test_locations_cannot_be_deleted(self, location):
        with pytest.raises(ValueError):
            location.delete()

        assert Location.objects.filter(pk=location.pk).exists()

    def test_deactivate_unknown(self):
        with pytest.raises(NotFoundError):
            deactivate_location(12345)


@pytest.mark.django_db
class TestResolveLocation:

    @pytest.mark.parametrize('value', [None, '', 'all'])
    def test_all_locations(self, value):
        assert resolve_location(value) is None

    def test_by_id(self, location):
        assert resolve_location(str(location.id)) == location

    def test_invalid(self):
        with pytest.raises(ValidationError):
            resolve_location('gilbert')

    def test_missing(self):
        with pytest.raises(NotFoundError):
            resolve_location(424242)


def test_error_payload_shape():
    error = UpstreamError("Greyfinch returned HTTP 503", status=503)

    assert error.status_code == 502
    assert error.to_dict() == {
        'error': {
            'code': 'UPSTREAM_ERROR',
            'message': 'Greyfinch returned HTTP 503',
            'details': {'upstream_status': 503},
        }
    }


def test_parse_json_body(rf):
    assert parse_json_body(rf.post('/', data='', content_type='application/json')) == {}
    assert parse_json_body(rf.post('/', data='{"a": 1}', content_type='application/json')) == {'a': 1}
    with pytest.raises(ValidationError):
        parse_json_body(rf.post('/', data='[1, 2]', content_type='application/json'))
    with pytest.raises(ValidationError):
        parse_json_body(rf.post('/', data='{broken', content_type='application/json'))
