"""
Views for integration syncs - JSON API.
"""

import logging

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST

from core.decorators import json_api, parse_json_body
from core.exceptions import NotFoundError, ValidationError
from core.services import resolve_location

from .models import ApiConfiguration, ApiSyncHistory
from .tasks import run_cost_sync

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


def serialize_sync(entry):
    return {
        'id': entry.id,
        'configId': entry.api_config_id,
        'platform': entry.api_config.type,
        'syncType': entry.sync_type,
        'period': entry.period,
        'status': entry.status,
        'dataCount': entry.data_count,
        'totalAmount': float(entry.total_amount),
        'errorMessage': entry.error_message,
        'createdAt': entry.created_at.isoformat(),
    }


@login_required
@json_api
@require_POST
def sync_costs(request):
    """
    Run a cost sync for one of the user's platform configurations.

    Body: {configId, period: "YYYY-MM", locationId?}
    """
    from analytics.costs import validate_period

    body = parse_json_body(request)
    config_id = body.get('configId')
    if config_id in (None, ''):
        raise ValidationError("configId is required", field='configId')

    period = validate_period(body.get('period'))
    location = resolve_location(body.get('locationId'))

    try:
        api_config = ApiConfiguration.objects.get(
            pk=config_id, user=request.user, is_active=True,
        )
    except (ApiConfiguration.DoesNotExist, ValueError, TypeError):
        raise NotFoundError('API configuration', config_id)

    result = run_cost_sync(api_config, period, location)
    return JsonResponse({'success': True, **result})


@login_required
@json_api
@require_GET
def sync_history(request):
    """Recent sync attempts for the current user, newest first."""
    history = ApiSyncHistory.objects.filter(user=request.user).select_related('api_config')

    config_id = request.GET.get('configId')
    if config_id:
        try:
            history = history.filter(api_config_id=int(config_id))
        except ValueError:
            raise ValidationError(f"Invalid configId: {config_id!r}", field='configId')

    return JsonResponse({'history': [serialize_sync(entry) for entry in history[:HISTORY_LIMIT]]})
