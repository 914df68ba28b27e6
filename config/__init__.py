"""
Ortho Insight - analytics for orthodontic practices.

This module makes the Celery app available for Django.
"""

from .celery import app as celery_app

__all__ = ('celery_app',)
