"""
Celery tasks for the markbook app.
"""
import logging

from celery import shared_task

from core.errors import MarkbookError
from . import config
from .calculations import compute_mark_set_summary
from .filters import parse_summary_filters

logger = logging.getLogger(__name__)


@shared_task(
    soft_time_limit=config.TASK_SOFT_TIME_LIMIT,
    time_limit=config.TASK_TIME_LIMIT,
)
def compute_summary_task(class_id, mark_set_id, filters=None):
    """
    Compute a mark set summary in the background.

    Args:
        class_id: Class primary key
        mark_set_id: Mark set primary key
        filters: Filters payload (dict or JSON string), validated here

    Returns:
        dict: {'ok': True, 'result': summary} or {'ok': False, 'error': {...}}
    """
    try:
        summary = compute_mark_set_summary(class_id, mark_set_id, parse_summary_filters(filters))
    except MarkbookError as e:
        logger.warning(f"Summary task for mark set {mark_set_id} failed: {e}")
        return {'ok': False, 'error': e.as_dict()}

    logger.info(
        f"Summary computed for mark set {mark_set_id}: "
        f"{len(summary['perStudent'])} students, {len(summary['assessments'])} assessments"
    )
    return {'ok': True, 'result': summary}
