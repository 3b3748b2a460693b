"""
Celery tasks for the legacy import app.
"""
import logging

from celery import shared_task

from core.errors import MarkbookError
from . import config
from .importer import import_legacy_class

logger = logging.getLogger(__name__)


@shared_task(
    soft_time_limit=config.TASK_SOFT_TIME_LIMIT,
    time_limit=config.TASK_TIME_LIMIT,
)
def import_legacy_class_task(folder):
    """
    Import a legacy class folder in the background.

    A failed import has already been rolled back; the structured error is
    returned to the caller rather than retried.

    Returns:
        dict: {'ok': True, 'result': {...}} or {'ok': False, 'error': {...}}
    """
    try:
        result = import_legacy_class(folder)
    except MarkbookError as e:
        return {'ok': False, 'error': e.as_dict()}
    return {'ok': True, 'result': result}
