"""
Greyfinch GraphQL query surface.

The Greyfinch schema is still in beta and field names change between
releases. Everything that depends on upstream naming lives here so a schema
change means bumping SCHEMA_VERSION and editing this module only.
Record-level field names are mapped in analytics.records.FIELD_MAP.
"""

SCHEMA_VERSION = '2025-03'

# Upstream root field -> canonical payload key used by the analytics processor
COLLECTION_MAP = {
    'locations': 'locations',
    'patients': 'patients',
    'appointments': 'appointments',
    'leads': 'leads',
    'appointmentBookings': 'appointmentBookings',
    'revenueLines': 'revenue',
    'productionLines': 'production',
}

ANALYTICS_QUERY = """
    query GetAnalyticsData($startDate: timestamp, $endDate: timestamp) {
      locations {
        id
        name
        address
        isActive
      }
      patients(where: {createdAt: {_gte: $startDate, _lte: $endDate}}) {
        id
        createdAt
        referralSource
        primaryLocation {
          id
          name
        }
        treatments {
          id
          status
        }
      }
      appointments(where: {scheduledDate: {_gte: $startDate, _lte: $endDate}}) {
        id
        patientId
        locationId
        status
        scheduledDate
        production
        revenue
        cost
      }
      leads(where: {createdAt: {_gte: $startDate, _lte: $endDate}}) {
        id
        source
        status
        createdAt
        patientId
        location {
          id
          name
        }
      }
      appointmentBookings(where: {startTime: {_gte: $startDate, _lte: $endDate}}) {
        id
        startTime
        status
        appointment {
          id
          patientId
          location {
            id
            name
          }
        }
      }
      revenueLines(where: {date: {_gte: $startDate, _lte: $endDate}}) {
        id
        date
        amount
        locationId
      }
      productionLines(where: {date: {_gte: $startDate, _lte: $endDate}}) {
        id
        date
        productionAmount
        locationId
      }
    }
"""

LOCATIONS_QUERY = """
    query GetLocations {
      locations {
        id
        name
        address
        isActive
        patients_aggregate {
          aggregate {
            count
          }
        }
      }
    }
"""

INTROSPECTION_QUERY = """
    query IntrospectSchema {
      __schema {
        queryType {
          fields {
            name
            type {
              name
              kind
              ofType {
                name
                kind
              }
            }
          }
        }
      }
    }
"""


def normalize_payload(data):
    """
    Rename upstream collections to canonical keys.

    Collections missing from the response come back as empty lists, and
    unmapped root fields are dropped.
    """
    data = data or {}
    payload = {}
    for upstream_name, key in COLLECTION_MAP.items():
        value = data.get(upstream_name)
        if key == 'locations' and isinstance(value, dict):
            payload[key] = value
        else:
            payload[key] = value if isinstance(value, list) else []
    return payload
