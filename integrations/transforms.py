"""
Pure transforms from platform API rows to AdSpend field dicts.

No database or network access here, so the per-platform mapping can be
tested on captured payloads.
"""

from datetime import date
from decimal import Decimal, InvalidOperation

# Meta action types that count as a conversion
META_CONVERSION_ACTIONS = ('purchase', 'lead')

METRIC_FIELDS = ('spend', 'impressions', 'clicks', 'conversions')


def _decimal(value) -> Decimal:
    if value is None or value == '':
        return Decimal('0')
    try:
        return Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError):
        return Decimal('0')


def _int(value) -> int:
    if value is None or value == '':
        return 0
    try:
        return max(0, int(round(float(value))))
    except (TypeError, ValueError):
        return 0


def _date(value):
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _meta_conversions(actions) -> int:
    total = 0
    for action in actions or []:
        if action.get('action_type') in META_CONVERSION_ACTIONS:
            total += _int(action.get('value'))
    return total


def transform_meta_ad_spend(rows):
    """Map Meta insight rows (level=ad) to AdSpend fields."""
    records = []
    for row in rows or []:
        records.append({
            'campaign_id': str(row.get('campaign_id') or ''),
            'campaign_name': row.get('campaign_name') or '',
            'ad_set_id': str(row.get('adset_id') or ''),
            'ad_set_name': row.get('adset_name') or '',
            'ad_id': str(row.get('ad_id') or ''),
            'ad_name': row.get('ad_name') or '',
            'spend': _decimal(row.get('spend')),
            'impressions': _int(row.get('impressions')),
            'clicks': _int(row.get('clicks')),
            'conversions': _meta_conversions(row.get('actions')),
            'date': _date(row.get('date_start')),
            'metadata': {'date_stop': row.get('date_stop')},
        })
    return records


def transform_google_ad_spend(rows):
    """Map Google Ads search rows to AdSpend fields. Spend comes in micros."""
    records = []
    for row in rows or []:
        campaign = row.get('campaign') or {}
        ad_group = row.get('adGroup') or {}
        ad = row.get('ad') or (row.get('adGroupAd') or {}).get('ad') or {}
        metrics = row.get('metrics') or {}

        cost_micros = metrics.get('costMicros') or 0
        try:
            spend = _decimal(Decimal(str(cost_micros)) / Decimal('1000000'))
        except InvalidOperation:
            spend = Decimal('0')

        records.append({
            'campaign_id': str(campaign.get('id') or ''),
            'campaign_name': campaign.get('name') or '',
            'ad_set_id': str(ad_group.get('id') or ''),
            'ad_set_name': ad_group.get('name') or '',
            'ad_id': str(ad.get('id') or ''),
            'ad_name': ad.get('name') or '',
            'spend': spend,
            'impressions': _int(metrics.get('impressions')),
            'clicks': _int(metrics.get('clicks')),
            'conversions': _int(metrics.get('conversions')),
            'date': _date(row.get('date')),
            'metadata': {},
        })
    return records


def transform_quickbooks_expenses(purchases):
    """
    Map QuickBooks Purchase entities to AdSpend fields.

    Each purchase becomes its own row keyed on the purchase id.
    """
    records = []
    for purchase in purchases or []:
        entity = purchase.get('EntityRef') or {}
        doc_number = purchase.get('DocNumber') or ''
        records.append({
            'campaign_id': str(purchase.get('Id') or doc_number),
            'campaign_name': entity.get('name') or doc_number or 'Expense',
            'ad_set_id': '',
            'ad_set_name': '',
            'ad_id': '',
            'ad_name': '',
            'spend': _decimal(purchase.get('TotalAmt')),
            'impressions': 0,
            'clicks': 0,
            'conversions': 0,
            'date': _date(purchase.get('TxnDate')),
            'metadata': {
                'doc_number': doc_number,
                'payment_type': purchase.get('PaymentType', ''),
            },
        })
    return records


def merge_by_ad(records):
    """
    Collapse rows sharing (campaign, ad set, ad) into one row for the period.

    Metrics are summed and the latest date wins. Order of first appearance
    is kept.
    """
    merged = {}
    for record in records:
        key = (record['campaign_id'], record['ad_set_id'], record['ad_id'])
        if key not in merged:
            merged[key] = dict(record)
            continue
        current = merged[key]
        for field in METRIC_FIELDS:
            current[field] += record[field]
        if record['date'] and (current['date'] is None or record['date'] > current['date']):
            current['date'] = record['date']
    return list(merged.values())


TRANSFORMS = {
    'meta': transform_meta_ad_spend,
    'google': transform_google_ad_spend,
    'quickbooks': transform_quickbooks_expenses,
}
