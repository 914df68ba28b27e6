"""
Django admin configuration for analytics models.
"""

from django.contrib import admin
from .models import AcquisitionCost, AnalyticsCache


@admin.register(AcquisitionCost)
class AcquisitionCostAdmin(admin.ModelAdmin):
    list_display = ['period', 'location', 'referral_type', 'cost', 'source', 'user', 'is_deleted']
    list_filter = ['referral_type', 'source', 'is_deleted', 'location']
    search_fields = ['description', 'user__username']
    readonly_fields = ['created_at', 'updated_at']

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(AnalyticsCache)
class AnalyticsCacheAdmin(admin.ModelAdmin):
    list_display = ['user', 'location', 'start_date', 'end_date', 'data_type', 'cached_at']
    list_filter = ['data_type']
    readonly_fields = ['cached_at']
