"""
Django admin configuration for core models.
"""

from django.contrib import admin
from .models import Location


@admin.register(Location)
class LocationAdmin(admin.ModelAdmin):
    list_display = ['name', 'external_id', 'patient_count', 'is_active', 'last_sync_date']
    list_filter = ['is_active']
    search_fields = ['name', 'external_id', 'address']
    readonly_fields = ['created_at', 'updated_at', 'last_sync_date']

    def has_delete_permission(self, request, obj=None):
        return False  # Deactivate instead
