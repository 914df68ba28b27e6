"""
PDF report rendering.

The report is a Django template printed with WeasyPrint. WeasyPrint needs
native Pango/Cairo libraries, so it is imported only when a PDF is actually
rendered.
"""

import logging

from django.template.loader import render_to_string
from django.utils import timezone

logger = logging.getLogger(__name__)

LOCATION_COLUMNS = [
    ('patients', 'Patients'),
    ('appointments', 'Appointments'),
    ('leads', 'Leads'),
    ('revenue', 'Revenue'),
    ('production', 'Production'),
    ('netProduction', 'Net production'),
    ('acquisitionCosts', 'Acquisition costs'),
]


def _report_period(snapshot):
    data = snapshot.to_dict()
    return {
        'label': snapshot.label,
        'start_date': snapshot.start_date,
        'end_date': snapshot.end_date,
        'is_sample': snapshot.is_fallback,
        'summary': data['summary'],
        'financial': data['financialMetrics'],
        'costs': data['acquisitionCostBreakdown'],
        'locations': [
            {'key': key, 'name': values.get('name', key), 'values': [values.get(col, 0) for col, _ in LOCATION_COLUMNS]}
            for key, values in data['locations'].items()
        ],
        'weekly': data['trends']['weekly'],
        'monthly': data['trends']['monthly'],
    }


def render_report_html(report_name, snapshots, ai_summary=None) -> str:
    """Render the report template for a list of snapshots."""
    context = {
        'report_name': report_name or 'Practice analytics report',
        'generated_at': timezone.now(),
        'periods': [_report_period(snapshot) for snapshot in snapshots],
        'location_columns': [label for _, label in LOCATION_COLUMNS],
        'ai_summary': ai_summary,
    }
    return render_to_string('reports/report.html', context)


def render_report_pdf(report_name, snapshots, ai_summary=None) -> bytes:
    """Render the report and print it to PDF bytes."""
    from weasyprint import HTML

    html = render_report_html(report_name, snapshots, ai_summary)
    pdf_bytes = HTML(string=html).write_pdf()
    logger.info(f"Rendered PDF report '{report_name}' ({len(pdf_bytes)} bytes, {len(snapshots)} periods)")
    return pdf_bytes
