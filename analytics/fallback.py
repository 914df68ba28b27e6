"""
Deterministic sample payload used when Greyfinch is unavailable.

The payload is seeded from the requested range, so the same range always
yields the same numbers and every record falls inside the range.
"""

import random
import zlib
from datetime import date, datetime, time, timedelta

from django.utils.text import slugify

DEFAULT_LOCATIONS = [
    ('gilbert', 'Gilbert'),
    ('phoenix', 'Phoenix-Ahwatukee'),
]

REFERRAL_SOURCES = [
    'Google Ads', 'Facebook', 'Instagram', 'Practice website',
    'Dr. Patel referral', 'Dentist referral', 'Referred by friend',
    'Walk-in', 'Drive by', '',
]

APPOINTMENT_STATUSES = ['completed'] * 7 + ['scheduled'] * 2 + ['no-show', 'cancelled']
TREATMENT_STATUSES = ['active', 'in_progress', 'completed', 'pending', 'declined']

# Sample volume per location per day
PATIENTS_PER_DAY = 0.6
APPOINTMENTS_PER_DAY = 2.5
MAX_DAYS = 366


def _seed(start_date, end_date, locations) -> int:
    key = f"{start_date.isoformat()}:{end_date.isoformat()}:{','.join(k for k, _ in locations)}"
    return zlib.crc32(key.encode('utf-8'))


def _locations_for(location):
    if location is None or location == 'all':
        return DEFAULT_LOCATIONS
    if isinstance(location, str):
        return [(slugify(location) or location, location)]
    name = getattr(location, 'name', None) or str(location)
    return [(slugify(name) or str(getattr(location, 'pk', name)), name)]


def _timestamp(rng, start_date, days) -> str:
    day = start_date + timedelta(days=rng.randrange(days))
    moment = datetime.combine(day, time(hour=rng.randint(8, 17), minute=rng.choice([0, 15, 30, 45])))
    return moment.isoformat()


def build_fallback_payload(start_date=None, end_date=None, location=None) -> dict:
    """
    Build a plausible canonical payload for [start_date, end_date].

    Shape matches GreyfinchClient.fetch_analytics_payload.
    """
    if end_date is None:
        end_date = date.today()
    if start_date is None:
        start_date = end_date - timedelta(days=30)
    if start_date > end_date:
        start_date, end_date = end_date, start_date

    locations = _locations_for(location)
    rng = random.Random(_seed(start_date, end_date, locations))
    days = min((end_date - start_date).days + 1, MAX_DAYS)

    payload = {
        'locations': {},
        'patients': [],
        'appointments': [],
        'leads': [],
        'appointmentBookings': [],
        'revenue': [],
        'production': [],
    }

    for loc_index, (key, name) in enumerate(locations):
        location_id = getattr(location, 'external_id', None) or f"sample-{key}"
        ref = {'id': location_id, 'name': name}
        payload['locations'][key] = {'id': location_id, 'name': name}

        patient_total = max(3, int(days * PATIENTS_PER_DAY * rng.uniform(0.8, 1.2)))
        for n in range(patient_total):
            patient_id = f"{key}-p{n}"
            source = rng.choice(REFERRAL_SOURCES)
            created_at = _timestamp(rng, start_date, days)
            treatment = rng.choice(TREATMENT_STATUSES)
            payload['patients'].append({
                'id': patient_id,
                'createdAt': created_at,
                'referralSource': source,
                'primaryLocation': ref,
                'treatments': [{'id': f"{patient_id}-t0", 'status': treatment}],
            })
            payload['leads'].append({
                'id': f"{key}-l{n}",
                'source': source,
                'status': 'converted' if treatment in ('active', 'in_progress', 'completed') else 'open',
                'createdAt': created_at,
                'patientId': patient_id,
                'location': ref,
            })
            if rng.random() < 0.5:
                payload['appointmentBookings'].append({
                    'id': f"{key}-b{n}",
                    'startTime': _timestamp(rng, start_date, days),
                    'status': 'scheduled',
                    'appointment': {'id': f"{key}-a{n}", 'patientId': patient_id, 'location': ref},
                })

        appointment_total = max(5, int(days * APPOINTMENTS_PER_DAY * rng.uniform(0.8, 1.2)))
        for n in range(appointment_total):
            production = round(rng.uniform(250, 1800), 2)
            payload['appointments'].append({
                'id': f"{key}-appt{n}",
                'patientId': f"{key}-p{rng.randrange(patient_total)}",
                'location': ref,
                'status': rng.choice(APPOINTMENT_STATUSES),
                'scheduledDate': _timestamp(rng, start_date, days),
                'production': production,
                'revenue': round(production * rng.uniform(0.75, 0.95), 2),
                'cost': round(production * rng.uniform(0.15, 0.3), 2),
            })

        # One collections line per week of the range
        for week_start in range(0, days, 7):
            line_date = start_date + timedelta(days=week_start)
            payload['revenue'].append({
                'id': f"{key}-rev{week_start}",
                'date': line_date.isoformat(),
                'amount': round(rng.uniform(2000, 6000) * (1 + loc_index * 0.1), 2),
                'location': ref,
            })
            payload['production'].append({
                'id': f"{key}-prod{week_start}",
                'date': line_date.isoformat(),
                'productionAmount': round(rng.uniform(2500, 7000), 2),
                'location': ref,
            })

    return payload
