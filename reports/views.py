"""
Reports views - AI summary, PDF export, saved reports and sessions.
"""

import logging

from django.contrib.auth.decorators import login_required
from django.db.models import Q
from django.http import HttpResponse, JsonResponse
from django.utils.text import slugify
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from analytics.snapshots import PeriodConfig, SnapshotService
from core.decorators import json_api, parse_json_body
from core.exceptions import NotFoundError, ValidationError

from .models import Report
from .pdf import render_report_pdf
from .summary import generate_ai_summary
from .tasks import persist_analysis_session

logger = logging.getLogger(__name__)


def _build_snapshots(user, periods):
    """Snapshots for every period that resolved; raises if none did."""
    results = SnapshotService(user).compare_periods(periods)
    resolved = [entry for entry in results if entry['snapshot'] is not None]
    if not resolved:
        first_error = results[0]['error'] if results else {}
        raise ValidationError(
            "None of the requested periods could be built",
            details={'error': first_error},
        )
    configs = [
        PeriodConfig.from_dict(periods[index])
        for index, entry in enumerate(results) if entry['snapshot'] is not None
    ]
    return configs, [entry['snapshot'] for entry in resolved]


def _pdf_response(name, pdf_bytes):
    filename = f"{slugify(name) or 'report'}.pdf"
    response = HttpResponse(pdf_bytes, content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


def serialize_report(report):
    return {
        'id': report.id,
        'name': report.name,
        'description': report.description,
        'periods': report.period_configs,
        'isPublic': report.is_public,
        'shareToken': report.share_token,
        'createdAt': report.created_at.isoformat(),
        'updatedAt': report.updated_at.isoformat(),
    }


@login_required
@json_api
@require_POST
def summary_api(request):
    """Body: {periods: [...]}. Returns the AI summary JSON."""
    body = parse_json_body(request)
    configs, snapshots = _build_snapshots(request.user, body.get('periods'))
    summary = generate_ai_summary(configs, snapshots)
    return JsonResponse(summary)


@login_required
@json_api
@require_POST
def pdf_api(request):
    """Body: {name, periods: [...], aiSummary?}. Returns a PDF download."""
    body = parse_json_body(request)
    name = body.get('name') or 'Practice analytics report'
    _, snapshots = _build_snapshots(request.user, body.get('periods'))
    ai_summary = body.get('aiSummary') if isinstance(body.get('aiSummary'), dict) else None
    return _pdf_response(name, render_report_pdf(name, snapshots, ai_summary))


@login_required
@json_api
@require_http_methods(['GET', 'POST'])
def report_list(request):
    """GET: the user's saved reports. POST: save a report definition."""
    if request.method == 'POST':
        body = parse_json_body(request)
        name = (body.get('name') or '').strip()
        if not name:
            raise ValidationError("Report name is required", field='name')
        periods = body.get('periods')
        if not isinstance(periods, list) or not periods:
            raise ValidationError("periods must be a non-empty list", field='periods')
        for period in periods:
            PeriodConfig.from_dict(period)

        report = Report.objects.create(
            user=request.user,
            name=name,
            description=body.get('description', ''),
            period_configs=periods,
            is_public=bool(body.get('isPublic', False)),
        )
        return JsonResponse(serialize_report(report), status=201)

    reports = Report.objects.filter(user=request.user)
    return JsonResponse({'reports': [serialize_report(report) for report in reports]})


@login_required
@json_api
@require_GET
def report_detail(request, pk):
    report = _get_report(request, pk)
    return JsonResponse(serialize_report(report))


@login_required
@json_api
@require_GET
def report_pdf(request, pk):
    """PDF for a saved report, built from fresh snapshots."""
    report = _get_report(request, pk)
    _, snapshots = _build_snapshots(request.user, report.period_configs)
    return _pdf_response(report.name, render_report_pdf(report.name, snapshots))


def _get_report(request, pk):
    try:
        return Report.objects.get(Q(user=request.user) | Q(is_public=True), pk=pk)
    except Report.DoesNotExist:
        raise NotFoundError('Report', pk)


@login_required
@json_api
@require_POST
def session_save(request):
    """Queue a dashboard session write; returns immediately."""
    body = parse_json_body(request)
    persist_analysis_session.delay(request.user.id, body)
    return JsonResponse({'queued': True}, status=202)
