"""
Celery tasks for reports.

Dashboard sessions are saved through a queue: the request only enqueues,
and the worker acknowledges the message after the write, so a crashed
worker gets the write redelivered.
"""

import logging

from celery import shared_task
from django.db import DatabaseError

logger = logging.getLogger(__name__)


def save_analysis_session(user_id, payload):
    """
    Create or update an AnalysisSession.

    A payload carrying a sessionId updates that client session in place, so
    redelivered messages converge on one row.
    """
    from .models import AnalysisSession

    fields = {
        'name': str(payload.get('name') or '')[:255],
        'periods': payload.get('periods') if isinstance(payload.get('periods'), list) else [],
        'acquisition_costs': payload.get('acquisitionCosts') if isinstance(payload.get('acquisitionCosts'), dict) else {},
        'ai_summary': payload.get('aiSummary') if isinstance(payload.get('aiSummary'), dict) else None,
        'metadata': payload.get('metadata') if isinstance(payload.get('metadata'), dict) else {},
        'is_active': True,
    }

    client_session_id = str(payload.get('sessionId') or '')
    if not client_session_id:
        return AnalysisSession.objects.create(user_id=user_id, **fields)

    session, _ = AnalysisSession.objects.update_or_create(
        user_id=user_id,
        client_session_id=client_session_id,
        defaults=fields,
    )
    return session


@shared_task(bind=True, acks_late=True, max_retries=5, default_retry_delay=30)
def persist_analysis_session(self, user_id, payload):
    """Write a dashboard session. Retried on database errors."""
    try:
        session = save_analysis_session(user_id, payload)
    except DatabaseError as e:
        logger.exception(f"Failed to save analysis session for user {user_id}")
        raise self.retry(exc=e)

    logger.info(f"Saved analysis session {session.pk} for user {user_id}")
    return session.pk
