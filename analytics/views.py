"""
Analytics views - JSON API for snapshots, comparisons and acquisition costs.
"""

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from core.decorators import json_api, parse_json_body
from core.exceptions import ValidationError

from .costs import (
    get_costs,
    monthly_totals,
    serialize_ad_spend,
    serialize_cost,
    soft_delete_cost,
    upsert_manual_cost,
)
from .snapshots import PeriodConfig, SnapshotService


def _money_totals(totals):
    return {key: float(value) for key, value in totals.items()}


@login_required
@json_api
@require_GET
def snapshot_api(request):
    """
    Analytics snapshot for one date range.

    Query params: startDate, endDate (YYYY-MM-DD, required), locationId, label.
    """
    if not request.GET.get('startDate') or not request.GET.get('endDate'):
        raise ValidationError("startDate and endDate are required")

    period = PeriodConfig.from_dict({
        'startDate': request.GET.get('startDate'),
        'endDate': request.GET.get('endDate'),
        'locationId': request.GET.get('locationId'),
        'label': request.GET.get('label', ''),
    })
    snapshot = SnapshotService(request.user).build_snapshot(period)
    return JsonResponse(snapshot.to_dict())


@login_required
@json_api
@require_POST
def compare_api(request):
    """
    Side-by-side snapshots.

    Body: {periods: [{id, label, startDate, endDate, locationId}, ...]}
    """
    body = parse_json_body(request)
    results = SnapshotService(request.user).compare_periods(body.get('periods'))
    return JsonResponse({
        'periods': [
            {
                'id': entry['id'],
                'label': entry['label'],
                'data': entry['snapshot'].to_dict() if entry['snapshot'] else None,
                'error': entry['error'],
            }
            for entry in results
        ]
    })


@login_required
@json_api
@require_http_methods(['GET', 'POST'])
def acquisition_costs_api(request):
    """
    GET: costs for ?period=YYYY-MM[&locationId=].
    POST: upsert a manual cost {locationId, referralType, period, cost, description}.
    """
    if request.method == 'POST':
        body = parse_json_body(request)
        row = upsert_manual_cost(
            user=request.user,
            location_id=body.get('locationId'),
            referral_type=body.get('referralType'),
            period=body.get('period'),
            cost=body.get('cost'),
            description=body.get('description', ''),
            metadata=body.get('metadata') if isinstance(body.get('metadata'), dict) else None,
        )
        return JsonResponse(serialize_cost(row))

    period = request.GET.get('period')
    summary = get_costs(request.user, request.GET.get('locationId'), period)
    return JsonResponse({
        'period': period,
        'manual': [serialize_cost(row) for row in summary.manual],
        'api': {
            platform: [serialize_ad_spend(row) for row in rows]
            for platform, rows in summary.api.items()
        },
        'totals': _money_totals(summary.totals),
        'byReferralType': _money_totals(monthly_totals(request.user, period)),
    })


@login_required
@json_api
@require_http_methods(['DELETE'])
def acquisition_cost_delete(request, pk):
    """Soft-delete one of the user's costs."""
    row = soft_delete_cost(request.user, pk)
    return JsonResponse({'success': True, 'id': row.id})
