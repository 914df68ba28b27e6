"""
Celery tasks for analytics housekeeping.
"""

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def purge_expired_analytics_cache():
    """
    Remove stale snapshot cache rows.
    Runs daily via Celery Beat.
    """
    from .snapshots import purge_expired_cache

    return purge_expired_cache()
