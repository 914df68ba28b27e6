"""
Celery configuration for Ortho Insight.

Usage:
    # Run worker (dev)
    celery -A config worker -l info

    # Run beat scheduler (dev)
    celery -A config beat -l info
"""

import os

from celery import Celery

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.dev')

app = Celery('orthoinsight')

# Read config from Django settings, using CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()


# Celery Beat schedule
app.conf.beat_schedule = {
    'sync-greyfinch-locations': {
        'task': 'integrations.tasks.sync_greyfinch_locations',
        'schedule': 900.0,  # Every 15 minutes
    },
    'sync-meta-ad-spend': {
        'task': 'integrations.tasks.sync_platform_costs',
        'schedule': 86400.0,  # Daily
        'args': ('meta',),
    },
    'sync-google-ad-spend': {
        'task': 'integrations.tasks.sync_platform_costs',
        'schedule': 86400.0,  # Daily
        'args': ('google',),
    },
    'sync-quickbooks-expenses': {
        'task': 'integrations.tasks.sync_platform_costs',
        'schedule': 86400.0,  # Daily
        'args': ('quickbooks',),
    },
    'purge-expired-analytics-cache': {
        'task': 'analytics.tasks.purge_expired_analytics_cache',
        'schedule': 86400.0,  # Daily
    },
}
