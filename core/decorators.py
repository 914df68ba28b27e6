"""
View helpers for the JSON API.
"""

import json
import logging
from functools import wraps

from django.http import JsonResponse

from .exceptions import OrthoInsightError, ValidationError

logger = logging.getLogger(__name__)


def json_api(view_func):
    """
    Turn application errors raised by a view into JSON error responses.

    Anything that is not an OrthoInsightError propagates to Django.
    """
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except OrthoInsightError as e:
            if e.status_code >= 500:
                logger.error(f"{request.method} {request.path} failed: {e.message}")
            else:
                logger.info(f"{request.method} {request.path} rejected: {e.message}")
            return JsonResponse(e.to_dict(), status=e.status_code)
    return wrapper


def parse_json_body(request) -> dict:
    """Decode a JSON request body, raising ValidationError when it is not an object."""
    if not request.body:
        return {}
    try:
        body = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body
