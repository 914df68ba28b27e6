"""
Django admin configuration for integration models.
"""

from django.contrib import admin
from .models import AdSpend, ApiConfiguration, ApiSyncHistory


@admin.register(ApiConfiguration)
class ApiConfigurationAdmin(admin.ModelAdmin):
    list_display = ['name', 'type', 'user', 'is_active', 'last_sync_at']
    list_filter = ['type', 'is_active']
    search_fields = ['name', 'user__username']
    readonly_fields = ['created_at', 'updated_at', 'last_sync_at', 'last_error']


@admin.register(AdSpend)
class AdSpendAdmin(admin.ModelAdmin):
    list_display = ['campaign_name', 'platform', 'period', 'location', 'spend',
                    'impressions', 'clicks', 'conversions']
    list_filter = ['platform', 'period', 'location']
    search_fields = ['campaign_name', 'campaign_id', 'ad_name']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(ApiSyncHistory)
class ApiSyncHistoryAdmin(admin.ModelAdmin):
    list_display = ['api_config', 'sync_type', 'period', 'status', 'data_count',
                    'total_amount', 'created_at']
    list_filter = ['status', 'sync_type', 'api_config__type']
    readonly_fields = ['created_at']
