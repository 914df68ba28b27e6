"""
Views for core app - location management API.
"""

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods, require_POST

from .decorators import json_api, parse_json_body
from .models import Location
from .services import create_location, deactivate_location, serialize_location


@login_required
@json_api
@require_http_methods(['GET', 'POST'])
def location_list(request):
    """GET: list locations. POST: create one manually."""
    if request.method == 'POST':
        body = parse_json_body(request)
        location = create_location(
            name=body.get('name'),
            address=body.get('address', ''),
            external_id=body.get('externalId'),
        )
        return JsonResponse(serialize_location(location), status=201)

    locations = Location.objects.all()
    if request.GET.get('active') == 'true':
        locations = locations.filter(is_active=True)
    return JsonResponse({'locations': [serialize_location(loc) for loc in locations]})


@login_required
@json_api
@require_POST
def location_deactivate(request, pk):
    """Soft-deactivate a location."""
    location = deactivate_location(pk)
    return JsonResponse(serialize_location(location))
