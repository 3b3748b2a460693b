"""
Student validity and scope filtering.

A student's enrollment mask is an opaque per-mark-set code string. The only
encodings confirmed by legacy class files are 'TBA' (enrolled everywhere)
and a string of '0'/'1' flags indexed by the mark set's sort order. Anything
else is treated as enrolled rather than guessed at.
"""
import logging

from core.errors import BadParams
from . import config

logger = logging.getLogger(__name__)

SCOPE_ALL = 'all'
SCOPE_ACTIVE = 'active'
SCOPE_VALID = 'valid'
STUDENT_SCOPES = (SCOPE_ALL, SCOPE_ACTIVE, SCOPE_VALID)


def is_valid_kid(active, mark_set_mask, mark_set_sort_order):
    """
    Decide whether a student counts as enrolled in a mark set.

    Args:
        active: Student's active flag
        mark_set_mask: 'TBA', a 0/1 flag string, or anything else
        mark_set_sort_order: The mark set's position among the class mark sets

    Returns:
        bool: False for inactive students, otherwise the mask flag at the
        mark set position (True when the mask does not decide).
    """
    if not active:
        return False
    mask = (mark_set_mask or '').strip()
    if not mask or mask.upper() == 'TBA':
        return True
    if mark_set_sort_order is None or mark_set_sort_order < 0:
        return True
    if any(ch not in '01' for ch in mask):
        return True
    if mark_set_sort_order >= len(mask):
        return True
    return mask[mark_set_sort_order] == '1'


def parse_student_scope(value):
    """Normalize a studentScope request value; None means 'all'."""
    if value is None:
        return SCOPE_ALL
    if isinstance(value, str) and value.strip().lower() in STUDENT_SCOPES:
        return value.strip().lower()
    raise BadParams(
        'studentScope must be one of: all, active, valid',
        details={'studentScope': value}
    )


def student_in_scope(scope, active, mark_set_mask, mark_set_sort_order, validity=is_valid_kid):
    if scope == SCOPE_ALL:
        return True
    if scope == SCOPE_ACTIVE:
        return bool(active)
    return validity(active, mark_set_mask, mark_set_sort_order)


def scoped_student_ids(students, scope, mark_set_sort_order, validity=is_valid_kid):
    """
    Return the set of student ids kept by a scope, or None for 'all'.

    students is any iterable of objects with id, active and mark_set_mask.
    The validity predicate is injectable so other mask encodings can be
    plugged in and tested in isolation.
    """
    if scope == SCOPE_ALL:
        return None
    default_mask = config.DEFAULT_STUDENT_MASK
    keep = set()
    for student in students:
        mask = student.mark_set_mask if student.mark_set_mask is not None else default_mask
        if student_in_scope(scope, student.active, mask, mark_set_sort_order, validity):
            keep.add(str(student.id))
    return keep


def apply_scope(summary, allowed_ids):
    """
    Drop out-of-scope students from a computed summary.

    Only the per-student lists are narrowed; assessment and category
    statistics are left exactly as aggregated.
    """
    if allowed_ids is not None:
        summary['perStudent'] = [
            row for row in summary['perStudent'] if row['studentId'] in allowed_ids
        ]
        if summary.get('perStudentCategories') is not None:
            summary['perStudentCategories'] = [
                row for row in summary['perStudentCategories'] if row['studentId'] in allowed_ids
            ]
    return list(summary['perStudent'])
