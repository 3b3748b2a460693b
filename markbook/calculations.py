"""
Mark set aggregation engine.

Reads one consistent snapshot of a mark set (class, roster, categories,
assessments, scores) and builds the summary consumed by views, tasks and
analytics: per-assessment statistics, per-category rollups and per-student
final marks. Final marks are delegated to the strategy tables in
markbook.methods.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from django.db import DatabaseError, transaction

from core.errors import BadParams, NotFound, StoreError
from . import config
from .filters import SummaryFilters
from .methods import (
    BLENDED_METHODS, WEIGHT_CATEGORY, Entry, build_context, clamp_calc_method,
    final_mark,
)
from .scope import SCOPE_ACTIVE, SCOPE_ALL, apply_scope, scoped_student_ids
from .scores import NoMark, ScoreState, from_stored, parse_state, to_stored
from .utils import median, round_off_1_decimal

logger = logging.getLogger(__name__)


@dataclass
class MarkSetSnapshot:
    """Everything a summary needs, read once."""
    school_class: object
    mark_set: object
    students: List[object]
    categories: List[object]
    assessments: List[object]
    scores: Dict[Tuple[str, str], ScoreState]

    def state(self, assessment, student):
        return self.scores.get((str(assessment.id), str(student.id)), NoMark)


# ========== Loading ==========

def parse_id(value, key, label):
    """Coerce a primary key to a UUID; malformed ids are NotFound under details[key]."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFound(f'{label} not found', details={key: str(value)})


def load_snapshot(class_id, mark_set_id):
    """
    Load a mark set and its class from the store.

    Raises:
        NotFound: class or mark set does not exist (or the id is malformed)
        StoreError: any database failure, surfaced as db_query_failed
    """
    from .models import Assessment, Category, MarkSet, SchoolClass, Score, Student

    class_id = parse_id(class_id, 'classId', 'class')
    mark_set_id = parse_id(mark_set_id, 'markSetId', 'mark set')
    try:
        with transaction.atomic():
            school_class = SchoolClass.objects.filter(pk=class_id).first()
            if school_class is None:
                raise NotFound('class not found', details={'classId': str(class_id)})
            mark_set = MarkSet.objects.filter(pk=mark_set_id, school_class=school_class).first()
            if mark_set is None:
                raise NotFound('mark set not found', details={'markSetId': str(mark_set_id)})

            students = list(Student.objects.filter(school_class=school_class).order_by('sort_order'))
            categories = list(Category.objects.filter(mark_set=mark_set).order_by('sort_order'))
            assessments = list(Assessment.objects.filter(mark_set=mark_set).order_by('idx'))
            rows = Score.objects.filter(
                assessment__mark_set=mark_set
            ).values_list('assessment_id', 'student_id', 'status', 'raw_value')
            scores = {
                (str(a_id), str(s_id)): from_stored(status, raw)
                for a_id, s_id, status, raw in rows
            }
    except DatabaseError as e:
        raise StoreError.wrap(e, table='mark_sets')

    return MarkSetSnapshot(school_class, mark_set, students, categories, assessments, scores)


# ========== Per-assessment statistics ==========

def _category_label(assessment):
    return assessment.category_name or config.UNCATEGORIZED_LABEL


def _stats_students(snapshot, stats_scope):
    allowed = scoped_student_ids(snapshot.students, stats_scope, snapshot.mark_set.sort_order)
    if allowed is None:
        return list(snapshot.students)
    return [s for s in snapshot.students if str(s.id) in allowed]


def assessment_stats(snapshot, assessment, students):
    """
    Averages for one assessment over the given students.

    NoMark is excluded from every average; Zero counts as 0. avgPercent is
    derived from the unrounded raw average and out_of.
    """
    scored = zero = no_mark = 0
    total = 0.0
    percents = []
    for student in students:
        state = snapshot.state(assessment, student)
        if state.is_no_mark:
            no_mark += 1
            continue
        if state.is_zero:
            zero += 1
        else:
            scored += 1
        total += state.points
        percents.append(state.percent_of(assessment.out_of))

    counted = scored + zero
    avg_raw = total / counted if counted else 0.0
    avg_percent = 100.0 * avg_raw / assessment.out_of if assessment.out_of > 0 else 0.0
    median_percent = median(percents)
    return {
        'assessmentId': str(assessment.id),
        'idx': assessment.idx,
        'date': assessment.date,
        'categoryName': assessment.category_name,
        'title': assessment.title,
        'outOf': assessment.out_of,
        'avgRaw': round_off_1_decimal(avg_raw),
        'avgPercent': round_off_1_decimal(avg_percent),
        'medianPercent': round_off_1_decimal(median_percent) if median_percent is not None else 0.0,
        'scoredCount': scored,
        'zeroCount': zero,
        'noMarkCount': no_mark,
    }


def _resolve_filters(filters, mark_set):
    if filters is None:
        filters = SummaryFilters()
    if not isinstance(filters, SummaryFilters):
        raise BadParams('filters must be a SummaryFilters value', details={'field': 'filters'})
    if clamp_calc_method(mark_set.calc_method) in BLENDED_METHODS:
        filters = filters.without_categories()
    return filters


def compute_assessment_stats(class_id, mark_set_id, filters=None, stats_scope=SCOPE_ACTIVE):
    """
    Per-assessment statistics only, without per-student finals.

    Args:
        class_id: Class primary key
        mark_set_id: Mark set primary key
        filters: SummaryFilters restricting the assessments
        stats_scope: Which students the averages run over (default 'active')

    Returns:
        list of per-assessment dicts in idx order
    """
    snapshot = load_snapshot(class_id, mark_set_id)
    filters = _resolve_filters(filters, snapshot.mark_set)
    students = _stats_students(snapshot, stats_scope)
    return [
        assessment_stats(snapshot, a, students)
        for a in snapshot.assessments if filters.matches(a)
    ]


# ========== Summary ==========

def _student_entries(snapshot, student, assessments):
    """Return (entries, counts) for one student over the selected assessments."""
    counts = {'no_mark': 0, 'zero': 0, 'scored': 0}
    entries = []
    for a in assessments:
        state = snapshot.state(a, student)
        counts[state.status] += 1
        if state.is_no_mark:
            continue
        # Zero-weight assessments are reported but never reach the final mark
        if a.weight is not None and a.weight <= 0:
            continue
        entries.append(Entry(
            percent=state.percent_of(a.out_of),
            weight=a.weight if a.weight is not None else 1.0,
            category=_category_label(a),
        ))
    return entries, counts


def _category_averages(entries):
    groups = {}
    for e in entries:
        total, weight, count = groups.get(e.category, (0.0, 0.0, 0))
        groups[e.category] = (total + e.percent * e.weight, weight + e.weight, count + 1)
    return {
        name: (total / weight, count)
        for name, (total, weight, count) in groups.items() if weight > 0
    }


def compute_mark_set_summary(class_id, mark_set_id, filters=None, stats_scope=SCOPE_ACTIVE):
    """
    Build the full summary for a mark set.

    Assessment and category statistics run over stats_scope (active students
    by default). A studentScope on the filters only narrows the per-student
    lists afterwards and never changes the statistics.

    Blended calc methods ignore any category filter and always combine
    categories by category weight.

    Raises:
        NotFound: unknown class or mark set
        BadParams: malformed filters
        StoreError: database failure
    """
    snapshot = load_snapshot(class_id, mark_set_id)
    mark_set = snapshot.mark_set
    filters = _resolve_filters(filters, mark_set)

    calc_method = clamp_calc_method(mark_set.calc_method)
    weight_method = WEIGHT_CATEGORY if calc_method in BLENDED_METHODS else mark_set.weight_method
    ctx = build_context(weight_method, snapshot.categories)

    selected = [a for a in snapshot.assessments if filters.matches(a)]
    stats_students = _stats_students(snapshot, stats_scope)
    stats_ids = {str(s.id) for s in stats_students}
    logger.debug(
        f"Summary for mark set {mark_set.code}: {len(selected)} assessments, "
        f"{len(snapshot.students)} students, calc={calc_method} weight={ctx.weight_method}"
    )

    per_assessment = [assessment_stats(snapshot, a, stats_students) for a in selected]

    category_sort = {c.name.lower(): c.sort_order for c in snapshot.categories}
    assessment_counts = {}
    for a in selected:
        label = _category_label(a)
        assessment_counts[label] = assessment_counts.get(label, 0) + 1

    per_student = []
    per_student_categories = []
    category_totals = {}
    for student in snapshot.students:
        entries, counts = _student_entries(snapshot, student, selected)
        cat_avgs = _category_averages(entries)
        per_student.append({
            'studentId': str(student.id),
            'displayName': student.display_name,
            'sortOrder': student.sort_order,
            'active': student.active,
            'finalMark': final_mark(entries, calc_method, ctx),
            'noMarkCount': counts['no_mark'],
            'zeroCount': counts['zero'],
            'scoredCount': counts['scored'],
        })
        per_student_categories.append({
            'studentId': str(student.id),
            'categories': [
                {
                    'name': name,
                    'weight': ctx.category_weight(name),
                    'averagePercent': round_off_1_decimal(avg),
                    'entryCount': count,
                }
                for name, (avg, count) in sorted(
                    cat_avgs.items(),
                    key=lambda item: category_sort.get(item[0].lower(), float('inf'))
                )
            ],
        })
        if str(student.id) in stats_ids:
            for name, (avg, _count) in cat_avgs.items():
                total, count = category_totals.get(name, (0.0, 0))
                category_totals[name] = (total + avg, count + 1)

    per_category = [
        {
            'name': name,
            'weight': ctx.category_weight(name),
            'sortOrder': category_sort.get(name.lower()),
            'classAvg': round_off_1_decimal(total / count) if count else 0.0,
            'studentCount': count,
            'assessmentCount': assessment_counts.get(name, 0),
        }
        for name, (total, count) in category_totals.items()
    ]
    per_category.sort(key=lambda c: c['sortOrder'] if c['sortOrder'] is not None else float('inf'))

    settings_applied = ctx.as_dict()
    settings_applied['calcMethodApplied'] = calc_method

    summary = {
        'class': {'id': str(snapshot.school_class.id), 'name': snapshot.school_class.name},
        'markSet': {
            'id': str(mark_set.id),
            'code': mark_set.code,
            'description': mark_set.description,
        },
        'settings': {
            'fullCode': mark_set.full_code,
            'room': mark_set.room,
            'day': mark_set.day,
            'period': mark_set.period,
            'weightMethod': mark_set.weight_method,
            'calcMethod': mark_set.calc_method,
        },
        'settingsApplied': settings_applied,
        'filters': filters.as_dict(),
        'categories': [
            {'name': c.name, 'weight': c.weight, 'sortOrder': c.sort_order}
            for c in snapshot.categories
        ],
        'assessments': [
            {
                'assessmentId': str(a.id),
                'idx': a.idx,
                'date': a.date,
                'categoryName': a.category_name,
                'title': a.title,
                'term': a.term,
                'legacyType': a.legacy_type,
                'weight': a.weight,
                'outOf': a.out_of,
            }
            for a in selected
        ],
        'perAssessment': per_assessment,
        'perCategory': per_category,
        'perStudent': per_student,
        'perStudentCategories': per_student_categories,
        'studentScope': filters.student_scope or SCOPE_ALL,
    }

    scope = filters.student_scope or SCOPE_ALL
    if scope != SCOPE_ALL:
        apply_scope(summary, scoped_student_ids(snapshot.students, scope, mark_set.sort_order))
    return summary


# ========== Score edits ==========

def set_score(assessment, student, state, value=None):
    """
    Persist one grid edit through the score codec.

    Args:
        assessment: Assessment instance
        student: Student instance on the same class as the assessment
        state: A ScoreState, or a status string ('no_mark', 'zero', 'scored')
        value: Raw value when state is the string 'scored'

    Returns:
        The saved Score

    Raises:
        BadParams: unknown status, Scored values <= 0, or a student from
            another class
        StoreError: the write failed
    """
    from .models import Score

    if not isinstance(state, ScoreState):
        state = parse_state(state, value)
    if student.school_class_id != assessment.mark_set.school_class_id:
        raise BadParams(
            'student does not belong to the assessment class',
            details={'studentId': str(student.id), 'assessmentId': str(assessment.id)}
        )

    status, raw_value = to_stored(state)
    try:
        with transaction.atomic():
            score, _created = Score.objects.update_or_create(
                assessment=assessment,
                student=student,
                defaults={'status': status, 'raw_value': raw_value},
            )
    except DatabaseError as e:
        raise StoreError.wrap(e, code='db_update_failed', table='scores')

    logger.info(f"Score set for {student.display_name} on {assessment.title}: {state}")
    return score
