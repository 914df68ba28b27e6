"""
Typed records parsed from the raw Greyfinch payload.

Upstream field names drift between schema releases, so every record field is
read through FIELD_MAP, a list of candidate names tried in order (dotted
names reach into nested objects). A field that is missing or unparseable
falls back to its default in the parser below: 0 for amounts, None for
timestamps and location references, '' for strings.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

FIELD_MAP = {
    'patient': {
        'id': ('id', 'patientId'),
        'timestamp': ('createdAt', 'created_at', 'firstVisitDate'),
        'location': ('primaryLocation', 'location', 'locationId'),
        'referral_source': ('referralSource', 'referral_source', 'source', 'leadSource'),
        'treatments': ('treatments', 'activeTreatments'),
    },
    'appointment': {
        'id': ('id', 'appointmentId'),
        'timestamp': ('scheduledDate', 'startTime', 'date', 'createdAt'),
        'location': ('location', 'locationId', 'primaryLocation'),
        'patient_id': ('patientId', 'patient.id'),
        'status': ('status', 'state'),
        'production': ('production', 'productionAmount', 'value', 'amount'),
        'revenue': ('revenue', 'fee', 'amount'),
        'cost': ('cost',),
    },
    'lead': {
        'id': ('id', 'leadId'),
        'timestamp': ('createdAt', 'created_at', 'date'),
        'location': ('location', 'locationId', 'primaryLocation'),
        'source': ('source', 'referralSource', 'leadSource'),
        'status': ('status',),
        'patient_id': ('patientId', 'patient.id'),
        'treatments': ('treatments',),
    },
    'booking': {
        'id': ('id', 'bookingId'),
        'timestamp': ('startTime', 'scheduledDate', 'createdAt'),
        'location': ('appointment.location', 'location', 'locationId', 'appointment.locationId'),
        'appointment_id': ('appointmentId', 'appointment.id'),
        'patient_id': ('patientId', 'appointment.patientId', 'leadId'),
        'status': ('status', 'appointment.status'),
    },
    'revenue': {
        'id': ('id',),
        'timestamp': ('date', 'createdAt', 'postedAt'),
        'location': ('location', 'locationId'),
        'amount': ('amount', 'revenue'),
    },
    'production': {
        'id': ('id',),
        'timestamp': ('date', 'createdAt'),
        'location': ('location', 'locationId'),
        'amount': ('productionAmount', 'amount', 'production'),
    },
}

# Canonical payload key -> record kind
COLLECTIONS = {
    'patients': 'patient',
    'appointments': 'appointment',
    'leads': 'lead',
    'appointmentBookings': 'booking',
    'revenue': 'revenue',
    'production': 'production',
}


@dataclass(frozen=True)
class LocationRef:
    id: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class PatientRecord:
    id: str
    timestamp: Optional[datetime] = None
    location_ref: Optional[LocationRef] = None
    referral_source: str = ''
    treatment_statuses: Tuple[str, ...] = ()
    kind: str = 'patient'


@dataclass(frozen=True)
class AppointmentRecord:
    id: str
    timestamp: Optional[datetime] = None
    location_ref: Optional[LocationRef] = None
    patient_id: str = ''
    status: str = ''
    production: Decimal = Decimal('0')
    revenue: Decimal = Decimal('0')
    cost: Decimal = Decimal('0')
    kind: str = 'appointment'


@dataclass(frozen=True)
class LeadRecord:
    id: str
    timestamp: Optional[datetime] = None
    location_ref: Optional[LocationRef] = None
    source: str = ''
    status: str = ''
    patient_id: str = ''
    treatment_statuses: Tuple[str, ...] = ()
    kind: str = 'lead'


@dataclass(frozen=True)
class BookingRecord:
    id: str
    timestamp: Optional[datetime] = None
    location_ref: Optional[LocationRef] = None
    appointment_id: str = ''
    patient_id: str = ''
    status: str = ''
    kind: str = 'booking'


@dataclass(frozen=True)
class RevenueLine:
    id: str
    timestamp: Optional[datetime] = None
    location_ref: Optional[LocationRef] = None
    amount: Decimal = Decimal('0')
    kind: str = 'revenue'


@dataclass(frozen=True)
class ProductionLine:
    id: str
    timestamp: Optional[datetime] = None
    location_ref: Optional[LocationRef] = None
    amount: Decimal = Decimal('0')
    kind: str = 'production'


@dataclass
class RawPayload:
    patients: List[PatientRecord] = field(default_factory=list)
    appointments: List[AppointmentRecord] = field(default_factory=list)
    leads: List[LeadRecord] = field(default_factory=list)
    bookings: List[BookingRecord] = field(default_factory=list)
    revenue: List[RevenueLine] = field(default_factory=list)
    production: List[ProductionLine] = field(default_factory=list)

    def collections(self):
        return (self.patients, self.appointments, self.leads,
                self.bookings, self.revenue, self.production)

    def record_count(self) -> int:
        return sum(len(items) for items in self.collections())


def _lookup(raw: dict, candidates):
    """First candidate field holding a value other than None or ''."""
    for name in candidates:
        value = raw
        for part in name.split('.'):
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(part)
        if value is not None and value != '':
            return value
    return None


def parse_amount(value) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal('0')
    try:
        amount = Decimal(str(value).replace(',', '').replace('$', '').strip())
    except (InvalidOperation, ValueError):
        return Decimal('0')
    if not amount.is_finite():
        return Decimal('0')
    return amount


def parse_timestamp(value) -> Optional[datetime]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, (int, float)):
        # Epoch seconds or milliseconds
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.combine(date.fromisoformat(text[:10]), time.min)
        except ValueError:
            return None
    return None


def parse_location_ref(value) -> Optional[LocationRef]:
    if value is None:
        return None
    if isinstance(value, dict):
        loc_id = value.get('id')
        name = value.get('name')
        if loc_id in (None, '') and not name:
            return None
        return LocationRef(
            id=str(loc_id) if loc_id not in (None, '') else None,
            name=str(name) if name else None,
        )
    if isinstance(value, (str, int)):
        return LocationRef(id=str(value))
    return None


def _text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, dict):
        return str(value.get('name') or value.get('value') or '')
    return str(value)


def _statuses(value) -> Tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    statuses = []
    for item in value:
        if isinstance(item, dict):
            status = item.get('status')
            if status:
                statuses.append(str(status))
        elif isinstance(item, str):
            statuses.append(item)
    return tuple(statuses)


def _record_id(raw, fields, kind, index) -> str:
    value = _lookup(raw, fields['id'])
    if value is None:
        return f"{kind}-{index}"
    return str(value)


def parse_record(kind: str, raw: dict, index: int = 0):
    fields = FIELD_MAP[kind]
    common = {
        'id': _record_id(raw, fields, kind, index),
        'timestamp': parse_timestamp(_lookup(raw, fields['timestamp'])),
        'location_ref': parse_location_ref(_lookup(raw, fields['location'])),
    }

    if kind == 'patient':
        return PatientRecord(
            referral_source=_text(_lookup(raw, fields['referral_source'])),
            treatment_statuses=_statuses(_lookup(raw, fields['treatments'])),
            **common,
        )
    if kind == 'appointment':
        return AppointmentRecord(
            patient_id=_text(_lookup(raw, fields['patient_id'])),
            status=_text(_lookup(raw, fields['status'])),
            production=parse_amount(_lookup(raw, fields['production'])),
            revenue=parse_amount(_lookup(raw, fields['revenue'])),
            cost=parse_amount(_lookup(raw, fields['cost'])),
            **common,
        )
    if kind == 'lead':
        return LeadRecord(
            source=_text(_lookup(raw, fields['source'])),
            status=_text(_lookup(raw, fields['status'])),
            patient_id=_text(_lookup(raw, fields['patient_id'])),
            treatment_statuses=_statuses(_lookup(raw, fields['treatments'])),
            **common,
        )
    if kind == 'booking':
        return BookingRecord(
            appointment_id=_text(_lookup(raw, fields['appointment_id'])),
            patient_id=_text(_lookup(raw, fields['patient_id'])),
            status=_text(_lookup(raw, fields['status'])),
            **common,
        )
    if kind == 'revenue':
        return RevenueLine(amount=parse_amount(_lookup(raw, fields['amount'])), **common)
    if kind == 'production':
        return ProductionLine(amount=parse_amount(_lookup(raw, fields['amount'])), **common)
    raise ValueError(f"Unknown record kind: {kind}")


def _items(value) -> list:
    if isinstance(value, list):
        return value
    # {data: [...]} wrappers show up in some schema versions
    if isinstance(value, dict) and isinstance(value.get('data'), list):
        return value['data']
    return []


def parse_payload(raw_data) -> RawPayload:
    """Parse every known collection; unknown shapes become empty lists."""
    if not isinstance(raw_data, dict):
        return RawPayload()

    parsed = {}
    for key, kind in COLLECTIONS.items():
        records = []
        skipped = 0
        for index, item in enumerate(_items(raw_data.get(key))):
            if not isinstance(item, dict):
                skipped += 1
                continue
            records.append(parse_record(kind, item, index))
        if skipped:
            logger.warning(f"Skipped {skipped} malformed {key} entries")
        parsed[key] = records

    return RawPayload(
        patients=parsed['patients'],
        appointments=parsed['appointments'],
        leads=parsed['leads'],
        bookings=parsed['appointmentBookings'],
        revenue=parsed['revenue'],
        production=parsed['production'],
    )
