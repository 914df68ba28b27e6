"""
Saved reports and dashboard sessions.
"""

import secrets

from django.conf import settings
from django.db import models


def generate_share_token():
    return secrets.token_urlsafe(24)


class Report(models.Model):
    """
    A saved report definition: a named set of periods to compare.

    period_configs holds the period dicts accepted by PeriodConfig.from_dict.
    """
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='reports'
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    period_configs = models.JSONField(default=list)
    is_public = models.BooleanField(default=False)
    share_token = models.CharField(max_length=64, unique=True, default=generate_share_token)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-updated_at']

    def __str__(self):
        return self.name


class AnalysisSession(models.Model):
    """
    Dashboard state saved when the user leaves the page.

    Written through the persist_analysis_session task so a lost request
    is retried rather than dropped.
    """
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='analysis_sessions'
    )
    name = models.CharField(max_length=255, blank=True)
    client_session_id = models.CharField(max_length=100, blank=True, db_index=True)
    periods = models.JSONField(default=list)
    acquisition_costs = models.JSONField(default=dict, blank=True)
    ai_summary = models.JSONField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-updated_at']

    def __str__(self):
        return self.name or f"Session {self.pk}"
