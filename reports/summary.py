"""
AI narrative summary of compared periods (OpenAI chat completions).
"""

import json
import logging

from django.conf import settings
from openai import OpenAI, OpenAIError

from core.exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert orthodontic practice analytics consultant with deep knowledge "
    "of industry benchmarks, marketing ROI optimization, and practice management. "
    "Provide actionable, data-driven insights."
)

NATIONAL_AVERAGES = {
    'Average Case Value': '$5,000-$7,500',
    'Digital Marketing ROI': '300-500%',
    'Professional Referral Conversion': '70-85%',
    'No-Show Rate': '15-25%',
    'Digital Lead Conversion': '20-35%',
}

RESPONSE_FORMAT = {
    'recommendations': ['Specific actionable recommendation with numbers/percentages'],
    'deepDive': {
        'insights': ['Detailed analytical insight with context'],
        'externalLinks': [
            {'title': 'Resource title', 'url': 'https://example.com', 'description': 'Brief description'},
        ],
    },
    'comparativeAnalysis': {
        'nationalAverages': {'Average Case Value': '$5,000-$7,500'},
        'performance': ['How this practice compares to national averages'],
    },
}

TEMPERATURE = 0.7
MAX_TOKENS = 2000


def _period_dict(period):
    if isinstance(period, dict):
        return {
            'id': period.get('id', ''),
            'label': period.get('label', ''),
            'startDate': period.get('startDate'),
            'endDate': period.get('endDate'),
            'locationId': period.get('locationId'),
        }
    return {
        'id': period.id,
        'label': period.display_label,
        'startDate': period.start_date.isoformat(),
        'endDate': period.end_date.isoformat(),
        'locationId': period.location_id,
    }


def build_prompt(periods, snapshots) -> str:
    """Prompt text for a set of periods and their snapshots (same order)."""
    period_data = {}
    for period, snapshot in zip(periods, snapshots):
        info = _period_dict(period)
        key = info['label'] or info['id'] or f"{info['startDate']} to {info['endDate']}"
        summary = snapshot.summary
        period_data[key] = {
            'sampleData': snapshot.is_fallback,
            'avgNetProduction': summary.get('avgNetProduction'),
            'avgAcquisitionCost': summary.get('avgAcquisitionCost'),
            'noShowRate': summary.get('noShowRate'),
            'referralSources': summary.get('referralSources'),
            'conversionRates': summary.get('conversionRates'),
            'financialMetrics': snapshot.financial_metrics,
            'acquisitionCosts': snapshot.acquisition_cost_breakdown,
        }

    data = {'periods': [_period_dict(p) for p in periods], 'periodData': period_data}
    averages = '\n'.join(f"- {name}: {value}" for name, value in NATIONAL_AVERAGES.items())

    return (
        "As an orthodontic practice analytics expert, analyze the following data from "
        "multiple time periods and provide insights in JSON format.\n\n"
        f"Data Summary:\n{json.dumps(data, indent=2, default=str)}\n\n"
        "Provide:\n"
        "1. Recommendations (3-5 actionable items to increase return on ad spend)\n"
        "2. Deep Dive (detailed insights with relevant external research links)\n"
        "3. Comparative Analysis (performance vs national orthodontic industry averages)\n\n"
        "Periods marked sampleData use placeholder numbers; say so instead of analyzing them.\n\n"
        f"National Orthodontic Industry Averages for Reference:\n{averages}\n\n"
        f"Return your analysis in this exact JSON format:\n{json.dumps(RESPONSE_FORMAT, indent=2)}"
    )


def _normalize(result: dict) -> dict:
    deep_dive = result.get('deepDive') if isinstance(result.get('deepDive'), dict) else {}
    comparative = result.get('comparativeAnalysis') if isinstance(result.get('comparativeAnalysis'), dict) else {}
    return {
        'recommendations': list(result.get('recommendations') or []),
        'deepDive': {
            'insights': list(deep_dive.get('insights') or []),
            'externalLinks': list(deep_dive.get('externalLinks') or []),
        },
        'comparativeAnalysis': {
            'nationalAverages': dict(comparative.get('nationalAverages') or NATIONAL_AVERAGES),
            'performance': list(comparative.get('performance') or []),
        },
    }


def generate_ai_summary(periods, snapshots) -> dict:
    """
    Ask the model for recommendations, a deep dive and a benchmark comparison.

    Raises:
        ConfigurationError: OPENAI_API_KEY is not set
        UpstreamError: the provider call failed or returned unusable JSON
    """
    if not settings.OPENAI_API_KEY:
        raise ConfigurationError("OPENAI_API_KEY is not configured")

    client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.UPSTREAM_TIMEOUT_SECONDS * 3)
    try:
        response = client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': build_prompt(periods, snapshots)},
            ],
            response_format={'type': 'json_object'},
            temperature=TEMPERATURE,
            max_tokens=MAX_TOKENS,
        )
    except OpenAIError as e:
        logger.exception("OpenAI call failed")
        raise UpstreamError(f"Failed to generate AI summary: {e}")

    usage = getattr(response, 'usage', None)
    if usage:
        logger.info(
            f"AI usage model={settings.OPENAI_MODEL} prompt_tokens={usage.prompt_tokens} "
            f"completion_tokens={usage.completion_tokens}"
        )

    content = response.choices[0].message.content or '{}'
    try:
        result = json.loads(content)
    except json.JSONDecodeError:
        logger.error("OpenAI returned invalid JSON")
        raise UpstreamError("AI summary was not valid JSON")
    if not isinstance(result, dict):
        raise UpstreamError("AI summary was not a JSON object")

    return _normalize(result)
