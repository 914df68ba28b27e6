"""
Analytics models: acquisition costs and the snapshot cache.

Analytics themselves are computed per request from Greyfinch data; only
cost inputs and finished snapshots are stored.
"""

from django.conf import settings
from django.db import models
from django.db.models import Q

from core.models import Location


class AcquisitionCost(models.Model):
    """
    Marketing spend attributed to a referral channel for one month.

    One row per (location, referral_type, period, user). Never hard-deleted;
    is_deleted hides a row and a later upsert on the same key revives it.
    A null location means the cost applies across all locations.
    """
    REFERRAL_TYPE_CHOICES = [
        ('digital', 'Digital'),
        ('professional', 'Professional'),
        ('direct', 'Direct'),
    ]
    SOURCE_CHOICES = [
        ('manual', 'Manual'),
        ('meta', 'Meta Ads'),
        ('google', 'Google Ads'),
        ('quickbooks', 'QuickBooks'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='acquisition_costs'
    )
    location = models.ForeignKey(
        Location,
        on_delete=models.PROTECT,
        null=True, blank=True,
        related_name='acquisition_costs'
    )
    referral_type = models.CharField(max_length=20, choices=REFERRAL_TYPE_CHOICES)
    cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    period = models.CharField(max_length=7, db_index=True)  # YYYY-MM
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default='manual')
    description = models.TextField(blank=True)

    is_deleted = models.BooleanField(default=False)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-period', 'referral_type']
        indexes = [
            models.Index(fields=['user', 'period', 'is_deleted']),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'location', 'referral_type', 'period'],
                condition=Q(location__isnull=False),
                name='unique_acquisition_cost_per_location',
            ),
            models.UniqueConstraint(
                fields=['user', 'referral_type', 'period'],
                condition=Q(location__isnull=True),
                name='unique_acquisition_cost_all_locations',
            ),
        ]

    def __str__(self):
        where = self.location or 'All locations'
        return f"{where} {self.get_referral_type_display()} {self.period}: {self.cost}"


class AnalyticsCache(models.Model):
    """
    Cached snapshot for an exact (user, location, range, data type) key.

    Rows older than ANALYTICS_CACHE_TTL are ignored and purged daily.
    """
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='analytics_cache'
    )
    location = models.ForeignKey(
        Location,
        on_delete=models.CASCADE,
        null=True, blank=True,
        related_name='analytics_cache'
    )
    start_date = models.DateField()
    end_date = models.DateField()
    data_type = models.CharField(max_length=50, default='analytics')
    data = models.JSONField(default=dict)
    cached_at = models.DateTimeField(db_index=True)

    class Meta:
        ordering = ['-cached_at']
        indexes = [
            models.Index(fields=['user', 'start_date', 'end_date', 'data_type']),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'location', 'start_date', 'end_date', 'data_type'],
                condition=Q(location__isnull=False),
                name='unique_analytics_cache_per_location',
            ),
            models.UniqueConstraint(
                fields=['user', 'start_date', 'end_date', 'data_type'],
                condition=Q(location__isnull=True),
                name='unique_analytics_cache_all_locations',
            ),
        ]
        verbose_name_plural = 'Analytics cache'

    def __str__(self):
        return f"{self.data_type} {self.start_date}..{self.end_date} ({self.location or 'all'})"
