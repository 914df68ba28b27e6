"""
Core models for Ortho Insight.

Locations are practice offices. Patient, appointment and lead data stays in
Greyfinch (the PMS is source of truth) and is only fetched per request.
"""

from django.db import models


class Location(models.Model):
    """
    A practice location.

    Created by an admin or the first time it is seen in a Greyfinch sync.
    Never deleted - deactivate it instead so historical costs keep their FK.
    """
    name = models.CharField(max_length=255)
    external_id = models.CharField(
        max_length=100, unique=True, null=True, blank=True,
        help_text='Greyfinch location identifier',
    )
    address = models.TextField(blank=True)
    patient_count = models.PositiveIntegerField(default=0)

    # Sync tracking
    last_sync_date = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name

    def delete(self, *args, **kwargs):
        raise ValueError("Locations cannot be deleted, set is_active=False instead")

    @property
    def lookup_key(self):
        """Identifier used to match this location against upstream records."""
        return self.external_id or self.name
