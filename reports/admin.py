"""
Django admin configuration for reports models.
"""

from django.contrib import admin
from .models import AnalysisSession, Report


@admin.register(Report)
class ReportAdmin(admin.ModelAdmin):
    list_display = ['name', 'user', 'is_public', 'updated_at']
    list_filter = ['is_public']
    search_fields = ['name', 'description']
    readonly_fields = ['share_token', 'created_at', 'updated_at']


@admin.register(AnalysisSession)
class AnalysisSessionAdmin(admin.ModelAdmin):
    list_display = ['__str__', 'user', 'is_active', 'updated_at']
    list_filter = ['is_active']
    search_fields = ['name', 'client_session_id']
    readonly_fields = ['created_at', 'updated_at']
