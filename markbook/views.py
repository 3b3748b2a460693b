import dataclasses
import logging
from functools import wraps

from django.http import JsonResponse
from django.views.decorators.http import require_GET

from core.errors import MarkbookError
from .analytics import analytics_class_open, analytics_filter_options, analytics_student_open
from .calculations import compute_mark_set_summary
from .filters import parse_summary_filters
from .scope import parse_student_scope

logger = logging.getLogger(__name__)


def json_api(view_func):
    """
    Wrap a view returning plain data into {'ok': True, 'result': ...}.

    MarkbookError is rendered as {'ok': False, 'error': {code, message,
    details?}} with the error's HTTP status.
    """
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            result = view_func(request, *args, **kwargs)
        except MarkbookError as e:
            if e.http_status >= 500:
                logger.error(f"{view_func.__name__} failed: {e}")
            else:
                logger.info(f"{view_func.__name__} rejected: {e}")
            return JsonResponse({'ok': False, 'error': e.as_dict()}, status=e.http_status)
        return JsonResponse({'ok': True, 'result': result})
    return wrapper


def _request_filters(request):
    """Read ?filters=<json> and ?studentScope=... into SummaryFilters."""
    filters = parse_summary_filters(request.GET.get('filters'))
    scope = request.GET.get('studentScope')
    if scope is not None:
        filters = dataclasses.replace(filters, student_scope=parse_student_scope(scope))
    return filters


@require_GET
@json_api
def mark_set_summary(request, class_id, mark_set_id):
    """Summary with per-assessment, per-category and per-student results."""
    return compute_mark_set_summary(class_id, mark_set_id, _request_filters(request))


@require_GET
@json_api
def class_analytics(request, class_id, mark_set_id):
    return analytics_class_open(class_id, mark_set_id, _request_filters(request))


@require_GET
@json_api
def student_analytics(request, class_id, mark_set_id, student_id):
    return analytics_student_open(class_id, mark_set_id, student_id, _request_filters(request))


@require_GET
@json_api
def filter_options(request, class_id, mark_set_id):
    return analytics_filter_options(class_id, mark_set_id)
