"""
Integration models for external services.

ApiConfiguration holds per-user credentials for Greyfinch and the ad/accounting
platforms. AdSpend is the synced spend that feeds acquisition cost totals.
"""

from django.db import models
from django.db.models import Q
from django.conf import settings

from core.models import Location


class ApiConfiguration(models.Model):
    """
    API credentials for a third-party integration.
    """
    TYPE_CHOICES = [
        ('greyfinch', 'Greyfinch'),
        ('meta', 'Meta Ads'),
        ('google', 'Google Ads'),
        ('quickbooks', 'QuickBooks'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='api_configurations'
    )
    name = models.CharField(max_length=255)
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)

    # Credentials (encrypted at rest in production)
    api_key = models.TextField(blank=True)
    api_secret = models.TextField(blank=True)
    access_token = models.TextField(blank=True)
    refresh_token = models.TextField(blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    # Account ids etc. (ad_account_id, customer_id, realm_id)
    config_json = models.JSONField(default=dict, blank=True)

    # Status
    is_active = models.BooleanField(default=True)
    last_sync_at = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['type', 'name']

    def __str__(self):
        return f"{self.name} ({self.get_type_display()})"


class AdSpend(models.Model):
    """
    Spend synced from an ad or accounting platform for one campaign/ad and period.

    Upserted on its natural key so re-running a sync never duplicates spend.
    """
    PLATFORM_CHOICES = [
        ('meta', 'Meta Ads'),
        ('google', 'Google Ads'),
        ('quickbooks', 'QuickBooks'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ad_spend'
    )
    api_config = models.ForeignKey(
        ApiConfiguration,
        on_delete=models.SET_NULL,
        null=True, blank=True,
        related_name='ad_spend'
    )
    location = models.ForeignKey(
        Location,
        on_delete=models.PROTECT,
        null=True, blank=True,
        related_name='ad_spend'
    )
    platform = models.CharField(max_length=20, choices=PLATFORM_CHOICES, db_index=True)

    # Campaign hierarchy
    campaign_id = models.CharField(max_length=100, blank=True)
    campaign_name = models.CharField(max_length=255, blank=True)
    ad_set_id = models.CharField(max_length=100, blank=True)
    ad_set_name = models.CharField(max_length=255, blank=True)
    ad_id = models.CharField(max_length=100, blank=True)
    ad_name = models.CharField(max_length=255, blank=True)

    # Performance
    spend = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    impressions = models.PositiveIntegerField(default=0)
    clicks = models.PositiveIntegerField(default=0)
    conversions = models.PositiveIntegerField(default=0)

    period = models.CharField(max_length=7, db_index=True)  # YYYY-MM
    date = models.DateField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-period', 'platform', 'campaign_name']
        indexes = [
            models.Index(fields=['user', 'period', 'platform']),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'platform', 'campaign_id', 'ad_set_id', 'ad_id', 'period', 'location'],
                condition=Q(location__isnull=False),
                name='unique_ad_spend_per_location',
            ),
            models.UniqueConstraint(
                fields=['user', 'platform', 'campaign_id', 'ad_set_id', 'ad_id', 'period'],
                condition=Q(location__isnull=True),
                name='unique_ad_spend_all_locations',
            ),
        ]
        verbose_name_plural = 'Ad spend'

    def __str__(self):
        return f"{self.get_platform_display()} {self.campaign_name or self.campaign_id} - {self.period}"


class ApiSyncHistory(models.Model):
    """
    One row per sync attempt, successful or not.
    """
    STATUS_CHOICES = [
        ('success', 'Success'),
        ('failed', 'Failed'),
    ]

    api_config = models.ForeignKey(
        ApiConfiguration,
        on_delete=models.CASCADE,
        related_name='sync_history'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='sync_history'
    )
    sync_type = models.CharField(max_length=20, default='costs')
    period = models.CharField(max_length=7)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES)
    data_count = models.PositiveIntegerField(default=0)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    error_message = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name_plural = 'API sync history'

    def __str__(self):
        return f"{self.api_config} {self.period} - {self.status}"
