"""
Business logic services for core app.
Keep views thin, put logic here.
"""

import logging

from django.db import DatabaseError, transaction
from django.utils import timezone

from .exceptions import NotFoundError, PersistenceError, ValidationError
from .models import Location

logger = logging.getLogger(__name__)


def create_location(name, address='', external_id=None):
    """Create a location from manual admin entry."""
    name = (name or '').strip()
    if not name:
        raise ValidationError("Location name is required", field='name')

    external_id = (external_id or '').strip() or None
    if external_id and Location.objects.filter(external_id=external_id).exists():
        raise ValidationError(
            f"A location with Greyfinch id {external_id} already exists",
            field='externalId',
        )

    try:
        return Location.objects.create(
            name=name,
            address=address or '',
            external_id=external_id,
        )
    except DatabaseError as e:
        logger.exception("Failed to create location")
        raise PersistenceError(f"Could not create location: {e}")


def upsert_location_from_upstream(external_id, name, address='', patient_count=None):
    """
    Create or refresh a location seen in a Greyfinch sync.

    Locations first seen upstream are created active. An admin-deactivated
    location stays deactivated; only its sync metadata is refreshed.
    """
    defaults = {
        'name': name or external_id,
        'last_sync_date': timezone.now(),
    }
    if address:
        defaults['address'] = address
    if patient_count is not None:
        defaults['patient_count'] = max(0, int(patient_count))

    try:
        with transaction.atomic():
            location, created = Location.objects.update_or_create(
                external_id=external_id,
                defaults=defaults,
            )
    except DatabaseError as e:
        logger.exception(f"Failed to upsert location {external_id}")
        raise PersistenceError(f"Could not save location {external_id}: {e}")

    if created:
        logger.info(f"New location from Greyfinch: {location.name} ({external_id})")
    return location, created


def deactivate_location(location_id):
    """Soft-deactivate a location."""
    try:
        location = Location.objects.get(pk=location_id)
    except Location.DoesNotExist:
        raise NotFoundError('Location', location_id)

    location.is_active = False
    location.save(update_fields=['is_active', 'updated_at'])
    return location


def resolve_location(location_id):
    """
    Resolve a location filter value.

    None, '' and 'all' mean every location and return None.
    """
    if location_id in (None, '', 'all'):
        return None
    try:
        pk = int(location_id)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid location id: {location_id!r}", field='locationId')

    try:
        return Location.objects.get(pk=pk)
    except Location.DoesNotExist:
        raise NotFoundError('Location', pk)


def serialize_location(location):
    return {
        'id': location.id,
        'externalId': location.external_id,
        'name': location.name,
        'address': location.address,
        'patientCount': location.patient_count,
        'lastSyncDate': location.last_sync_date.isoformat() if location.last_sync_date else None,
        'isActive': location.is_active,
    }
