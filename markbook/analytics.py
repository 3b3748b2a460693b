"""
Dashboard analytics built on top of a mark set summary.

The pure helpers (class_kpis, distribution_bins, top_bottom) take the
per-student rows of an already scoped summary, so they can be reused by
reports and tested without a database. The *_open functions load the
summary, apply the student scope and assemble the JSON payloads.
"""
import dataclasses
import logging

from django.db import DatabaseError

from core.errors import NotFound, StoreError
from . import config
from .calculations import compute_mark_set_summary, parse_id
from .filters import ASSESSMENT_TYPES, SummaryFilters
from .scope import STUDENT_SCOPES, parse_student_scope
from .scores import from_stored
from .utils import mean, median, round_off_1_decimal

logger = logging.getLogger(__name__)

# (label, min, max), bounds inclusive
DISTRIBUTION_BINS = [
    ('0-49', 0.0, 49.9),
    ('50-59', 50.0, 59.9),
    ('60-69', 60.0, 69.9),
    ('70-79', 70.0, 79.9),
    ('80-89', 80.0, 89.9),
    ('90-100', 90.0, 100.0),
]


def _final_marks(rows):
    return [r['finalMark'] for r in rows if r['finalMark'] is not None]


def class_kpis(rows):
    """
    Headline numbers for a list of per-student rows.

    Rates divide by every no-mark, zero and scored entry across the rows,
    and are 0 when there are no entries at all.
    """
    finals = _final_marks(rows)
    no_mark = sum(r['noMarkCount'] for r in rows)
    zero = sum(r['zeroCount'] for r in rows)
    total = no_mark + zero + sum(r['scoredCount'] for r in rows)
    return {
        'classAverage': mean(finals),
        'classMedian': median(finals),
        'studentCount': len(rows),
        'finalMarkCount': len(finals),
        'noMarkRate': no_mark / total if total else 0.0,
        'zeroRate': zero / total if total else 0.0,
    }


def _bin_index(value):
    """Band for a final mark; marks are clamped to 0..100 and bands run up to the next lower bound."""
    clamped = min(max(value, 0.0), 100.0)
    index = 0
    for i, (_label, low, _high) in enumerate(DISTRIBUTION_BINS):
        if clamped >= low:
            index = i
    return index


def distribution_bins(rows):
    """Count present final marks per grade band, plus the students without one."""
    counts = [0] * len(DISTRIBUTION_BINS)
    for value in _final_marks(rows):
        counts[_bin_index(value)] += 1
    return {
        'bins': [
            {'label': label, 'min': low, 'max': high, 'count': count}
            for (label, low, high), count in zip(DISTRIBUTION_BINS, counts)
        ],
        'noFinalMarkCount': sum(1 for r in rows if r['finalMark'] is None),
    }


def top_bottom(rows, limit=None):
    """
    Best and worst students by final mark.

    Rows are ranked once (mark descending, then roster order ascending) and
    the bottom list is the reversed ranking, so both lists agree on ties.
    """
    if limit is None:
        limit = config.TOP_BOTTOM_LIMIT
    ranked = sorted(
        (r for r in rows if r['finalMark'] is not None),
        key=lambda r: (-r['finalMark'], r['sortOrder'])
    )
    return {
        'top': ranked[:limit],
        'bottom': list(reversed(ranked))[:limit],
    }


def _scoped_filters(filters, student_scope):
    filters = filters or SummaryFilters()
    if student_scope is not None:
        filters = dataclasses.replace(filters, student_scope=parse_student_scope(student_scope))
    return filters


# ========== Class analytics ==========

def analytics_class_open(class_id, mark_set_id, filters=None, student_scope=None):
    """
    Class dashboard for one mark set.

    Args:
        class_id: Class primary key
        mark_set_id: Mark set primary key
        filters: SummaryFilters
        student_scope: 'all', 'active' or 'valid'; overrides filters.student_scope

    Returns:
        dict with kpis, distributions, topBottom, rows and the summary context
    """
    filters = _scoped_filters(filters, student_scope)
    summary = compute_mark_set_summary(class_id, mark_set_id, filters)
    rows = summary['perStudent']

    return {
        'class': summary['class'],
        'markSet': summary['markSet'],
        'settings': summary['settings'],
        'settingsApplied': summary['settingsApplied'],
        'filters': summary['filters'],
        'studentScope': summary['studentScope'],
        'kpis': class_kpis(rows),
        'distributions': distribution_bins(rows),
        'perAssessment': summary['perAssessment'],
        'perCategory': summary['perCategory'],
        'topBottom': top_bottom(rows),
        'rows': rows,
    }


# ========== Student analytics ==========

def _attendance_summary(class_id, student_id):
    from .models import AttendanceStudentMonth

    try:
        day_codes = list(
            AttendanceStudentMonth.objects.filter(
                school_class_id=class_id, student_id=student_id
            ).values_list('day_codes', flat=True)
        )
    except DatabaseError as e:
        raise StoreError.wrap(e, table='attendance_student_months')
    if not day_codes:
        return None
    return {
        'monthsWithData': len(day_codes),
        'codedDays': sum(sum(1 for ch in codes if not ch.isspace()) for codes in day_codes),
    }


def _student_scores(student_id, assessment_ids):
    from .models import Score

    try:
        rows = Score.objects.filter(
            student_id=student_id, assessment_id__in=assessment_ids
        ).values_list('assessment_id', 'status', 'raw_value')
        return {str(a_id): from_stored(status, raw) for a_id, status, raw in rows}
    except DatabaseError as e:
        raise StoreError.wrap(e, table='scores')


def analytics_student_open(class_id, mark_set_id, student_id, filters=None, student_scope=None):
    """
    One student's view of a mark set: final mark, counts, category breakdown,
    assessment trail against class averages and an attendance summary.

    Raises:
        NotFound: the student is not part of the (scoped) mark set
    """
    filters = _scoped_filters(filters, student_scope)
    summary = compute_mark_set_summary(class_id, mark_set_id, filters)

    student_id = str(student_id)
    student = next((r for r in summary['perStudent'] if r['studentId'] == student_id), None)
    if student is None:
        raise NotFound('student not found in mark set', details={'studentId': student_id})

    breakdown = next(
        (r['categories'] for r in summary['perStudentCategories'] if r['studentId'] == student_id),
        []
    )
    class_stats = {s['assessmentId']: s for s in summary['perAssessment']}
    scores = _student_scores(student_id, [a['assessmentId'] for a in summary['assessments']])

    trail = []
    for a in summary['assessments']:
        state = scores.get(a['assessmentId'])
        score = state.points if state is not None else None
        percent = None
        if score is not None:
            percent = round_off_1_decimal(100.0 * score / a['outOf']) if a['outOf'] > 0 else 0.0
        stats = class_stats.get(a['assessmentId'])
        trail.append({
            **a,
            'status': state.status if state is not None else 'no_mark',
            'score': score,
            'percent': percent,
            'classAvgRaw': stats['avgRaw'] if stats else None,
            'classAvgPercent': stats['avgPercent'] if stats else None,
        })

    payload = {
        'class': summary['class'],
        'markSet': summary['markSet'],
        'settings': summary['settings'],
        'filters': summary['filters'],
        'studentScope': summary['studentScope'],
        'student': student,
        'finalMark': student['finalMark'],
        'counts': {
            'noMark': student['noMarkCount'],
            'zero': student['zeroCount'],
            'scored': student['scoredCount'],
        },
        'categoryBreakdown': breakdown,
        'assessmentTrail': trail,
    }
    attendance = _attendance_summary(summary['class']['id'], student_id)
    if attendance is not None:
        payload['attendanceSummary'] = attendance
    return payload


# ========== Filter options ==========

def analytics_filter_options(class_id, mark_set_id):
    """Terms and categories present on a mark set, plus the assessment types and scopes."""
    from .models import Assessment, MarkSet

    class_id = parse_id(class_id, 'classId', 'class')
    mark_set_id = parse_id(mark_set_id, 'markSetId', 'mark set')
    try:
        if not MarkSet.objects.filter(pk=mark_set_id, school_class_id=class_id).exists():
            raise NotFound('mark set not found', details={'markSetId': str(mark_set_id)})
        rows = Assessment.objects.filter(mark_set_id=mark_set_id).values_list('term', 'category_name')
        terms = set()
        categories = set()
        for term, category_name in rows:
            if term is not None:
                terms.add(term)
            if category_name and category_name.strip():
                categories.add(category_name.strip())
    except DatabaseError as e:
        raise StoreError.wrap(e, table='assessments')

    return {
        'terms': sorted(terms),
        'categories': sorted(categories),
        'types': ASSESSMENT_TYPES,
        'studentScopes': list(STUDENT_SCOPES),
    }
