import json
import uuid

from django.test import TestCase, Client, override_settings
from django.urls import reverse

from core.errors import BadParams, NotFound, StoreError
from .analytics import (
    analytics_class_open, analytics_filter_options, analytics_student_open,
    class_kpis, distribution_bins, top_bottom,
)
from .calculations import compute_assessment_stats, compute_mark_set_summary, set_score
from .filters import SummaryFilters, matches_types_mask, parse_summary_filters
from .methods import MethodContext, modal_midrange, weighted_median
from .models import (
    Assessment, AttendanceStudentMonth, Category, MarkSet, SchoolClass, Score, Student,
)
from .scope import is_valid_kid, parse_student_scope, scoped_student_ids
from .scores import (
    NoMark, ScoreState, Zero, decode_raw, encode_raw, from_stored, parse_state, to_stored,
)
from .tasks import compute_summary_task
from .utils import median, round_off_1_decimal


class MarkbookFixtureMixin:
    """Helpers for building small classes directly in the database."""

    def make_class(self, name='Grade 9 Math'):
        return SchoolClass.objects.create(name=name)

    def make_student(self, school_class, sort_order, last, first, active=True, mask='TBA'):
        return Student.objects.create(
            school_class=school_class,
            last_name=last,
            first_name=first,
            sort_order=sort_order,
            active=active,
            mark_set_mask=mask,
        )

    def make_mark_set(self, school_class, calc_method=0, weight_method=1, code='MAT1'):
        return MarkSet.objects.create(
            school_class=school_class,
            code=code,
            file_prefix=code,
            description='Mathematics',
            calc_method=calc_method,
            weight_method=weight_method,
        )

    def make_assessment(self, mark_set, idx, out_of=100.0, category=None, weight=1.0, term=None,
                        legacy_type=0):
        return Assessment.objects.create(
            mark_set=mark_set,
            idx=idx,
            title=f"Test {idx + 1}",
            category_name=category,
            out_of=out_of,
            weight=weight,
            term=term,
            legacy_type=legacy_type,
        )

    def make_score(self, assessment, student, raw):
        status, raw_value = to_stored(decode_raw(raw))
        return Score.objects.create(
            assessment=assessment, student=student, status=status, raw_value=raw_value
        )

    def final_for(self, summary, student):
        row = next(r for r in summary['perStudent'] if r['studentId'] == str(student.id))
        return row['finalMark']


# ============ Score codec ============

class ScoreCodecTest(TestCase):
    """Tests for the legacy sign-as-marker score codec."""

    def test_decode_sign_convention(self):
        """Test zero decodes to no mark, negatives to zero, positives to scored."""
        self.assertEqual(decode_raw(0), NoMark)
        self.assertEqual(decode_raw(-1), Zero)
        self.assertEqual(decode_raw(-37.5), Zero)
        self.assertEqual(decode_raw(5), ScoreState.scored(5))

    def test_encode_inverts_decode(self):
        """Test decoding an encoded state gives the same state back."""
        for raw in (0, -1, -12.0, 0.5, 7, 99.9):
            state = decode_raw(raw)
            self.assertEqual(decode_raw(encode_raw(state)), state)
        self.assertLess(encode_raw(Zero), 0)
        self.assertEqual(encode_raw(NoMark), 0.0)

    def test_stored_form(self):
        """Test Zero is stored as 0.0 and NoMark as NULL."""
        self.assertEqual(to_stored(Zero), ('zero', 0.0))
        self.assertEqual(to_stored(NoMark), ('no_mark', None))
        self.assertEqual(to_stored(ScoreState.scored(8)), ('scored', 8.0))
        self.assertEqual(from_stored('zero', 0.0), Zero)
        self.assertEqual(from_stored('no_mark', None), NoMark)

    def test_invalid_stored_rows_raise(self):
        """Test a scored row without a positive value or an unknown status is an error."""
        for status, raw in (('scored', None), ('scored', 0.0), ('scored', -3.0), ('legacy', 4.0)):
            with self.assertRaises(StoreError) as ctx:
                from_stored(status, raw)
            self.assertEqual(ctx.exception.code, 'db_query_failed')
            self.assertEqual(ctx.exception.details['table'], 'scores')

    def test_illegal_states_unrepresentable(self):
        """Test scored values must be positive and zero carries no value."""
        with self.assertRaises(ValueError):
            ScoreState('scored', 0.0)
        with self.assertRaises(ValueError):
            ScoreState('zero', 3.0)

    def test_parse_state_rejects_non_positive_scored(self):
        """Test the write boundary rejects scored values <= 0."""
        with self.assertRaises(BadParams):
            parse_state('scored', 0)
        with self.assertRaises(BadParams):
            parse_state('scored', -2)
        with self.assertRaises(BadParams):
            parse_state('excused')
        self.assertEqual(parse_state('zero'), Zero)

    def test_percent_of(self):
        """Test percent conversion handles zero and missing out_of."""
        self.assertIsNone(NoMark.percent_of(10))
        self.assertEqual(Zero.percent_of(10), 0.0)
        self.assertEqual(ScoreState.scored(5).percent_of(10), 50.0)
        self.assertEqual(ScoreState.scored(5).percent_of(0), 0.0)


class NumericHelpersTest(TestCase):
    """Tests for rounding and median helpers."""

    def test_round_half_up(self):
        """Test halves round up instead of to even."""
        self.assertEqual(round_off_1_decimal(2.25), 2.3)
        self.assertEqual(round_off_1_decimal(35.6818), 35.7)
        self.assertEqual(round_off_1_decimal(2.24), 2.2)

    def test_median(self):
        """Test odd, even and empty medians."""
        self.assertEqual(median([3, 1, 2]), 2)
        self.assertEqual(median([4, 1, 3, 2]), 2.5)
        self.assertIsNone(median([]))


# ============ Validity and filters ============

class ValidityTest(TestCase):
    """Tests for the enrollment mask predicate and student scopes."""

    def test_inactive_never_valid(self):
        """Test inactive students are never valid."""
        self.assertFalse(is_valid_kid(False, 'TBA', 0))

    def test_mask_flags(self):
        """Test 0/1 masks are read at the mark set position."""
        self.assertTrue(is_valid_kid(True, '101', 0))
        self.assertFalse(is_valid_kid(True, '101', 1))
        self.assertTrue(is_valid_kid(True, '101', 2))

    def test_undecidable_masks_are_valid(self):
        """Test TBA, empty, unknown encodings and short masks count as enrolled."""
        self.assertTrue(is_valid_kid(True, 'TBA', 3))
        self.assertTrue(is_valid_kid(True, '', 3))
        self.assertTrue(is_valid_kid(True, 'X7Q', 1))
        self.assertTrue(is_valid_kid(True, '10', 5))

    def test_parse_student_scope(self):
        """Test scope parsing is case-insensitive and rejects unknown values."""
        self.assertEqual(parse_student_scope(None), 'all')
        self.assertEqual(parse_student_scope('Valid'), 'valid')
        with self.assertRaises(BadParams) as ctx:
            parse_student_scope('everyone')
        self.assertEqual(ctx.exception.details, {'studentScope': 'everyone'})

    def test_validity_predicate_is_injectable(self):
        """Test a custom predicate replaces the mask rules."""
        class Row:
            def __init__(self, pk, mask):
                self.id = pk
                self.active = True
                self.mark_set_mask = mask

        rows = [Row('a', 'Y'), Row('b', 'N')]
        kept = scoped_student_ids(rows, 'valid', 0, validity=lambda active, mask, order: mask == 'Y')
        self.assertEqual(kept, {'a'})
        self.assertIsNone(scoped_student_ids(rows, 'all', 0))


class SummaryFiltersTest(TestCase):
    """Tests for filter parsing."""

    def test_empty_payloads(self):
        """Test missing filters mean no restriction."""
        self.assertEqual(parse_summary_filters(None), SummaryFilters())
        self.assertEqual(parse_summary_filters(''), SummaryFilters())
        self.assertEqual(parse_summary_filters({}), SummaryFilters())

    def test_parse_json_string(self):
        """Test a JSON string is accepted and normalized."""
        filters = parse_summary_filters('{"term": 2, "categoryName": "Tests", "typesMask": 3}')
        self.assertEqual(filters.term, 2)
        self.assertEqual(filters.categories, frozenset(['tests']))
        self.assertEqual(filters.types_mask, 3)

    def test_all_means_unrestricted(self):
        """Test 'ALL' for term and category clears the restriction."""
        filters = parse_summary_filters({'term': 'ALL', 'categoryName': 'all'})
        self.assertIsNone(filters.term)
        self.assertIsNone(filters.categories)

    def test_rejects_bad_fields(self):
        """Test malformed values name the offending field."""
        bad_payloads = [
            ({'term': 'first'}, 'term'),
            ({'term': True}, 'term'),
            ({'typesMask': 'x'}, 'typesMask'),
            ({'categories': 'Tests'}, 'categories'),
            ({'colour': 'red'}, 'colour'),
            ({'categoryName': 'A', 'categories': ['B']}, 'categories'),
        ]
        for payload, field in bad_payloads:
            with self.assertRaises(BadParams) as ctx:
                parse_summary_filters(payload)
            self.assertEqual(ctx.exception.details['field'], field)
        with self.assertRaises(BadParams):
            parse_summary_filters('[1, 2]')

    def test_types_mask(self):
        """Test type bits, untyped assessments and out-of-range types."""
        self.assertTrue(matches_types_mask(None, 4))
        self.assertTrue(matches_types_mask(0b1, None))
        self.assertFalse(matches_types_mask(0b10, 0))
        self.assertTrue(matches_types_mask(0b10, 1))
        self.assertFalse(matches_types_mask(0b1, -1))
        self.assertFalse(matches_types_mask(0b1, 70))


# ============ Strategy helpers ============

class MethodHelpersTest(TestCase):
    """Tests for the pure median and mode helpers."""

    def setUp(self):
        self.ctx = MethodContext(level_values=[0, 50, 60, 70, 80], active_levels=4, roff=False)

    def test_weighted_median_jump(self):
        """Test a heavy weight pulls the median to its value."""
        self.assertEqual(weighted_median([(20.0, 9.0), (90.0, 1.0)]), 20.0)

    def test_weighted_median_equal_weights_average_middle(self):
        """Test equal weights give the usual even-length median."""
        self.assertEqual(weighted_median([(20.0, 1.0), (90.0, 1.0)]), 55.0)
        self.assertIsNone(weighted_median([]))

    def test_modal_midrange(self):
        """Test the modal level's midrange is returned."""
        self.assertEqual(modal_midrange([(62.0, 1.0)], self.ctx), 65.0)
        self.assertEqual(modal_midrange([(95.0, 1.0)], self.ctx), 90.0)
        self.assertEqual(modal_midrange([(10.0, 1.0)], self.ctx), 25.0)

    def test_mode_tie_prefers_higher_level(self):
        """Test equal frequencies resolve to the higher level."""
        self.assertEqual(modal_midrange([(55.0, 1.0), (65.0, 1.0)], self.ctx), 65.0)


# ============ Aggregation ============

class MarkSetSummaryTest(MarkbookFixtureMixin, TestCase):
    """Tests for compute_mark_set_summary on the legacy scenario."""

    def setUp(self):
        self.school_class = self.make_class()
        self.s1 = self.make_student(self.school_class, 0, 'Adams', 'Ann')
        self.s2 = self.make_student(self.school_class, 1, 'Baker', 'Ben')
        self.s3 = self.make_student(self.school_class, 2, 'Clark', 'Cat', mask='01')
        self.mark_set = self.make_mark_set(self.school_class)
        self.a1 = self.make_assessment(self.mark_set, 0, out_of=10.0, term=1)
        self.a2 = self.make_assessment(self.mark_set, 1, out_of=10.0, term=2)
        for assessment, raws in ((self.a1, [0, -1, 5]), (self.a2, [5, 0, -1])):
            for student, raw in zip((self.s1, self.s2, self.s3), raws):
                self.make_score(assessment, student, raw)

    def test_assessment_averages_exclude_no_mark(self):
        """Test averages run over scored and zero students only."""
        summary = compute_mark_set_summary(self.school_class.id, self.mark_set.id)
        first = summary['perAssessment'][0]
        self.assertEqual(first['avgRaw'], 2.5)
        self.assertEqual(first['avgPercent'], 25.0)
        self.assertEqual(first['medianPercent'], 25.0)
        self.assertEqual(
            (first['scoredCount'], first['zeroCount'], first['noMarkCount']), (1, 1, 1)
        )

    def test_final_marks(self):
        """Test final marks use zero as 0 and skip no marks."""
        summary = compute_mark_set_summary(self.school_class.id, self.mark_set.id)
        self.assertEqual(self.final_for(summary, self.s1), 50.0)
        self.assertEqual(self.final_for(summary, self.s2), 0.0)
        self.assertEqual(self.final_for(summary, self.s3), 25.0)

    def test_counts_cover_every_selected_assessment(self):
        """Test per-student counts add up to the number of assessments considered."""
        summary = compute_mark_set_summary(
            self.school_class.id, self.mark_set.id, parse_summary_filters({'term': 1})
        )
        self.assertEqual(len(summary['assessments']), 1)
        for row in summary['perStudent']:
            self.assertEqual(row['noMarkCount'] + row['zeroCount'] + row['scoredCount'], 1)

    def test_pure_no_mark_history_has_no_final(self):
        """Test a student with only no marks gets no final mark."""
        summary = compute_mark_set_summary(
            self.school_class.id, self.mark_set.id, parse_summary_filters({'term': 1})
        )
        self.assertIsNone(self.final_for(summary, self.s1))

    def test_valid_scope_trims_rows_not_statistics(self):
        """Test scoping removes excluded students after aggregation."""
        summary = compute_mark_set_summary(
            self.school_class.id, self.mark_set.id,
            parse_summary_filters({'studentScope': 'valid'})
        )
        ids = [r['studentId'] for r in summary['perStudent']]
        self.assertNotIn(str(self.s3.id), ids)
        self.assertEqual(len(ids), 2)
        self.assertEqual(summary['perAssessment'][0]['avgRaw'], 2.5)
        self.assertEqual(summary['perAssessment'][0]['scoredCount'], 1)
        self.assertEqual(summary['studentScope'], 'valid')

    def test_inactive_students_left_out_of_statistics(self):
        """Test statistics default to active students and can be widened."""
        self.s2.active = False
        self.s2.save()
        summary = compute_mark_set_summary(self.school_class.id, self.mark_set.id)
        self.assertEqual(summary['perAssessment'][0]['avgRaw'], 5.0)
        self.assertEqual(len(summary['perStudent']), 3)

        stats = compute_assessment_stats(self.school_class.id, self.mark_set.id, stats_scope='all')
        self.assertEqual(stats[0]['avgRaw'], 2.5)

    def test_summary_shape(self):
        """Test the summary exposes the documented top-level fields."""
        summary = compute_mark_set_summary(self.school_class.id, self.mark_set.id)
        for key in ('class', 'markSet', 'settings', 'settingsApplied', 'filters', 'categories',
                    'assessments', 'perAssessment', 'perCategory', 'perStudent',
                    'perStudentCategories'):
            self.assertIn(key, summary)
        self.assertEqual(summary['perStudent'][0]['displayName'], 'Adams, Ann')
        self.assertEqual(summary['perCategory'][0]['name'], 'Uncategorized')

    def test_unknown_ids_are_not_found(self):
        """Test missing or malformed ids raise NotFound."""
        with self.assertRaises(NotFound):
            compute_mark_set_summary(uuid.uuid4(), self.mark_set.id)
        with self.assertRaises(NotFound):
            compute_mark_set_summary(self.school_class.id, uuid.uuid4())
        with self.assertRaises(NotFound):
            compute_mark_set_summary('not-a-uuid', self.mark_set.id)

    def test_malformed_ids_name_the_field(self):
        """Test a malformed id is NotFound with the offending field in details."""
        with self.assertRaises(NotFound) as ctx:
            compute_mark_set_summary('not-a-uuid', self.mark_set.id)
        self.assertEqual(ctx.exception.details, {'classId': 'not-a-uuid'})
        with self.assertRaises(NotFound) as ctx:
            compute_mark_set_summary(str(self.school_class.id), 'bad-id')
        self.assertEqual(ctx.exception.details, {'markSetId': 'bad-id'})
        with self.assertRaises(NotFound):
            analytics_filter_options(self.school_class.id, 'bad-id')

    def test_invalid_score_row_is_a_store_error(self):
        """Test a corrupt score row surfaces as a store error, not as not-found or no mark."""
        Score.objects.filter(assessment=self.a1, student=self.s3).update(raw_value=None)
        with self.assertRaises(StoreError) as ctx:
            compute_mark_set_summary(self.school_class.id, self.mark_set.id)
        self.assertEqual(ctx.exception.code, 'db_query_failed')
        self.assertEqual(ctx.exception.details['status'], 'scored')


class WeightMethodTest(MarkbookFixtureMixin, TestCase):
    """Tests for category weighting and the bonus category."""

    def setUp(self):
        self.school_class = self.make_class()
        self.student = self.make_student(self.school_class, 0, 'Student', 'One')
        self.mark_set = self.make_mark_set(self.school_class, calc_method=0, weight_method=1)

    def test_zero_weight_category_excluded(self):
        """Test a category with weight 0 never moves the final mark."""
        Category.objects.create(mark_set=self.mark_set, name='CatA', weight=100, sort_order=0)
        Category.objects.create(mark_set=self.mark_set, name='CatB', weight=0, sort_order=1)
        a1 = self.make_assessment(self.mark_set, 0, out_of=10, category='CatA')
        a2 = self.make_assessment(self.mark_set, 1, out_of=10, category='CatB')
        self.make_score(a1, self.student, 10)
        self.make_score(a2, self.student, 5)
        summary = compute_mark_set_summary(self.school_class.id, self.mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 100.0)

    def test_bonus_added_outside_denominator(self):
        """Test the bonus category is added on top of the base average."""
        Category.objects.create(mark_set=self.mark_set, name='Main', weight=100, sort_order=0)
        Category.objects.create(mark_set=self.mark_set, name='BONUS', weight=10, sort_order=1)
        main = self.make_assessment(self.mark_set, 0, out_of=10, category='Main')
        bonus = self.make_assessment(self.mark_set, 1, out_of=10, category='BONUS')
        self.make_score(main, self.student, 5)
        self.make_score(bonus, self.student, 10)
        summary = compute_mark_set_summary(self.school_class.id, self.mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 60.0)

    def test_bonus_inflated_final_is_bucketed(self):
        """Test a final mark pushed past 100 by the bonus still counts in the distribution."""
        other = self.make_student(self.school_class, 1, 'Student', 'Two')
        Category.objects.create(mark_set=self.mark_set, name='Tests', weight=100, sort_order=0)
        Category.objects.create(mark_set=self.mark_set, name='BONUS', weight=20, sort_order=1)
        tests = self.make_assessment(self.mark_set, 0, out_of=10, category='Tests')
        bonus = self.make_assessment(self.mark_set, 1, out_of=10, category='BONUS')
        self.make_score(tests, self.student, 9.5)
        self.make_score(bonus, self.student, 10)
        self.make_score(tests, other, 7)
        result = analytics_class_open(self.school_class.id, self.mark_set.id)
        finals = sorted(r['finalMark'] for r in result['rows'])
        self.assertEqual(finals, [70.0, 115.0])
        dist = result['distributions']
        counts = {b['label']: b['count'] for b in dist['bins']}
        self.assertEqual(counts['90-100'], 1)
        self.assertEqual(counts['70-79'], 1)
        self.assertEqual(sum(counts.values()) + dist['noFinalMarkCount'], len(result['rows']))

    def test_zero_weight_assessment_reported_but_not_counted(self):
        """Test an assessment with weight 0 stays in counts but not in the final mark."""
        a1 = self.make_assessment(self.mark_set, 0, out_of=10)
        a2 = self.make_assessment(self.mark_set, 1, out_of=10, weight=0)
        self.make_score(a1, self.student, 8)
        self.make_score(a2, self.student, 2)
        summary = compute_mark_set_summary(self.school_class.id, self.mark_set.id)
        row = summary['perStudent'][0]
        self.assertEqual(row['finalMark'], 80.0)
        self.assertEqual(row['scoredCount'], 2)

    def test_entry_weighting(self):
        """Test entry weighting uses assessment weights."""
        self.mark_set.weight_method = 0
        self.mark_set.save()
        a1 = self.make_assessment(self.mark_set, 0, out_of=100, weight=3)
        a2 = self.make_assessment(self.mark_set, 1, out_of=100, weight=1)
        self.make_score(a1, self.student, 80)
        self.make_score(a2, self.student, 40)
        summary = compute_mark_set_summary(self.school_class.id, self.mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 70.0)


class CalcMethodTest(MarkbookFixtureMixin, TestCase):
    """Tests for median, mode and blended calc methods."""

    def setUp(self):
        self.school_class = self.make_class()
        self.student = self.make_student(self.school_class, 0, 'Student', 'One')

    def _single_entry_mode(self, percent):
        mark_set = self.make_mark_set(self.school_class, calc_method=2, weight_method=0)
        assessment = self.make_assessment(mark_set, 0, out_of=100)
        self.make_score(assessment, self.student, percent)
        return mark_set

    def test_median_ignores_bonus(self):
        """Test the bonus category is an ordinary entry for the median."""
        mark_set = self.make_mark_set(self.school_class, calc_method=1, weight_method=1)
        Category.objects.create(mark_set=mark_set, name='A', weight=80, sort_order=0)
        Category.objects.create(mark_set=mark_set, name='BONUS', weight=20, sort_order=1)
        a1 = self.make_assessment(mark_set, 0, category='A')
        a2 = self.make_assessment(mark_set, 1, category='BONUS')
        self.make_score(a1, self.student, 80)
        self.make_score(a2, self.student, 100)
        summary = compute_mark_set_summary(self.school_class.id, mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 90.0)

    def test_average_adds_bonus(self):
        """Test the same data under the average method adds the bonus."""
        mark_set = self.make_mark_set(self.school_class, calc_method=0, weight_method=1)
        Category.objects.create(mark_set=mark_set, name='A', weight=80, sort_order=0)
        Category.objects.create(mark_set=mark_set, name='BONUS', weight=20, sort_order=1)
        a1 = self.make_assessment(mark_set, 0, category='A')
        a2 = self.make_assessment(mark_set, 1, category='BONUS')
        self.make_score(a1, self.student, 80)
        self.make_score(a2, self.student, 100)
        summary = compute_mark_set_summary(self.school_class.id, mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 100.0)

    def test_weighted_median_uses_entry_weights(self):
        """Test entry weights steer the median under entry weighting."""
        mark_set = self.make_mark_set(self.school_class, calc_method=1, weight_method=0)
        a1 = self.make_assessment(mark_set, 0, weight=9)
        a2 = self.make_assessment(mark_set, 1, weight=1)
        self.make_score(a1, self.student, 20)
        self.make_score(a2, self.student, 90)
        summary = compute_mark_set_summary(self.school_class.id, mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 20.0)

    def test_mode_default_levels(self):
        """Test 62% lands in the 60-70 level."""
        mark_set = self._single_entry_mode(62)
        summary = compute_mark_set_summary(self.school_class.id, mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 65.0)
        self.assertEqual(summary['settingsApplied']['modeLevelVals'], [0, 50, 60, 70, 80])

    @override_settings(MARKBOOK_MODE_LEVEL_VALUES=[0, 50, 70, 80, 90], MARKBOOK_ROUND_OFF=False)
    def test_mode_level_override(self):
        """Test configured level floors change the mode result."""
        mark_set = self._single_entry_mode(62)
        summary = compute_mark_set_summary(self.school_class.id, mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 60.0)

    @override_settings(MARKBOOK_MODE_ACTIVE_LEVELS=1, MARKBOOK_MODE_LEVEL_VALUES=[0, 0, 0, 0, 0])
    def test_single_active_level(self):
        """Test one active level maps everything to the 0-100 midrange."""
        mark_set = self._single_entry_mode(62)
        summary = compute_mark_set_summary(self.school_class.id, mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 50.0)

    @override_settings(MARKBOOK_ROUND_OFF=False)
    def test_mode_boundary_without_rounding(self):
        """Test 59.96% stays below the 60 floor without rounding."""
        mark_set = self._single_entry_mode(59.96)
        summary = compute_mark_set_summary(self.school_class.id, mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 55.0)

    @override_settings(MARKBOOK_ROUND_OFF=True)
    def test_mode_boundary_with_rounding(self):
        """Test 59.96% rounds up to 60 and changes level."""
        mark_set = self._single_entry_mode(59.96)
        summary = compute_mark_set_summary(self.school_class.id, mark_set.id)
        self.assertEqual(self.final_for(summary, self.student), 65.0)

    def test_blended_median_forces_category_weighting(self):
        """Test blended median ignores the category filter and combines categories."""
        mark_set = self.make_mark_set(self.school_class, calc_method=4, weight_method=0)
        Category.objects.create(mark_set=mark_set, name='A', weight=50, sort_order=0)
        Category.objects.create(mark_set=mark_set, name='B', weight=50, sort_order=1)
        a1 = self.make_assessment(mark_set, 0, category='A')
        a2 = self.make_assessment(mark_set, 1, category='B')
        self.make_score(a1, self.student, 40)
        self.make_score(a2, self.student, 80)
        summary = compute_mark_set_summary(
            self.school_class.id, mark_set.id, parse_summary_filters({'categoryName': 'A'})
        )
        self.assertEqual(self.final_for(summary, self.student), 60.0)
        self.assertIsNone(summary['filters']['categoryName'])
        self.assertEqual(summary['settingsApplied']['weightMethodApplied'], 1)
        self.assertEqual(summary['settingsApplied']['calcMethodApplied'], 4)
        self.assertEqual(len(summary['assessments']), 2)


# ============ Analytics ============

class AnalyticsHelpersTest(TestCase):
    """Tests for KPI, distribution and ranking helpers."""

    def row(self, order, mark, no_mark=0, zero=0, scored=1):
        return {
            'studentId': str(order), 'sortOrder': order, 'finalMark': mark,
            'noMarkCount': no_mark, 'zeroCount': zero, 'scoredCount': scored,
        }

    def test_kpis(self):
        """Test averages, medians and rates."""
        rows = [self.row(0, 80.0), self.row(1, 60.0, zero=1), self.row(2, None, no_mark=2, scored=0)]
        kpis = class_kpis(rows)
        self.assertEqual(kpis['classAverage'], 70.0)
        self.assertEqual(kpis['classMedian'], 70.0)
        self.assertEqual(kpis['finalMarkCount'], 2)
        self.assertEqual(kpis['noMarkRate'], 2 / 5)
        self.assertEqual(kpis['zeroRate'], 1 / 5)

    def test_kpis_without_entries(self):
        """Test empty input gives no average and zero rates."""
        kpis = class_kpis([])
        self.assertIsNone(kpis['classAverage'])
        self.assertEqual(kpis['noMarkRate'], 0.0)

    def test_distribution_is_exhaustive(self):
        """Test bucket counts plus no-final count equal the student count."""
        rows = [self.row(i, m) for i, m in enumerate([0.0, 49.9, 50.0, 69.9, 89.9, 90.0, 100.0, None])]
        dist = distribution_bins(rows)
        counts = {b['label']: b['count'] for b in dist['bins']}
        self.assertEqual(counts, {
            '0-49': 2, '50-59': 1, '60-69': 1, '70-79': 0, '80-89': 1, '90-100': 2,
        })
        self.assertEqual(dist['noFinalMarkCount'], 1)
        self.assertEqual(sum(counts.values()) + dist['noFinalMarkCount'], len(rows))

    def test_distribution_clamps_out_of_range_marks(self):
        """Test marks above 100, below 0 and between band bounds still land in a band."""
        rows = [self.row(i, m) for i, m in enumerate([115.0, -2.0, 49.95, 89.96])]
        dist = distribution_bins(rows)
        counts = {b['label']: b['count'] for b in dist['bins']}
        self.assertEqual(counts['90-100'], 1)
        self.assertEqual(counts['0-49'], 2)
        self.assertEqual(counts['80-89'], 1)
        self.assertEqual(sum(counts.values()), len(rows))

    def test_top_bottom_are_reverses(self):
        """Test ties break by roster order and bottom is the reversed ranking."""
        rows = [self.row(0, 70.0), self.row(1, 90.0), self.row(2, 70.0), self.row(3, None)]
        ranked = top_bottom(rows)
        self.assertEqual([r['sortOrder'] for r in ranked['top']], [1, 0, 2])
        self.assertEqual([r['sortOrder'] for r in ranked['bottom']], [2, 0, 1])


class AnalyticsOpenTest(MarkbookFixtureMixin, TestCase):
    """Tests for the class, student and filter option analytics."""

    def setUp(self):
        self.school_class = self.make_class()
        self.s1 = self.make_student(self.school_class, 0, 'Adams', 'Ann')
        self.s2 = self.make_student(self.school_class, 1, 'Baker', 'Ben')
        self.s3 = self.make_student(self.school_class, 2, 'Clark', 'Cat', mask='01')
        self.mark_set = self.make_mark_set(self.school_class)
        self.a1 = self.make_assessment(self.mark_set, 0, out_of=10.0, term=1, category='Tests')
        self.a2 = self.make_assessment(self.mark_set, 1, out_of=10.0, term=2, category='Quizzes')
        for assessment, raws in ((self.a1, [0, -1, 5]), (self.a2, [5, 0, -1])):
            for student, raw in zip((self.s1, self.s2, self.s3), raws):
                self.make_score(assessment, student, raw)

    def test_class_open(self):
        """Test KPIs and rankings for the whole class."""
        result = analytics_class_open(self.school_class.id, self.mark_set.id)
        self.assertEqual(result['kpis']['studentCount'], 3)
        self.assertEqual(result['kpis']['noMarkRate'], 2 / 6)
        self.assertEqual(result['kpis']['zeroRate'], 2 / 6)
        top = [r['studentId'] for r in result['topBottom']['top']]
        self.assertEqual(top[0], str(self.s1.id))
        self.assertEqual(result['studentScope'], 'all')

    def test_class_open_with_scope(self):
        """Test the valid scope narrows rows and KPIs."""
        result = analytics_class_open(self.school_class.id, self.mark_set.id, student_scope='valid')
        self.assertEqual(result['kpis']['studentCount'], 2)
        self.assertEqual(result['studentScope'], 'valid')

    def test_student_open(self):
        """Test the assessment trail and attendance summary."""
        AttendanceStudentMonth.objects.create(
            school_class=self.school_class, student=self.s1, month=1, day_codes='P A '
        )
        result = analytics_student_open(self.school_class.id, self.mark_set.id, self.s1.id)
        first, second = result['assessmentTrail']
        self.assertEqual(first['status'], 'no_mark')
        self.assertIsNone(first['score'])
        self.assertEqual(first['classAvgRaw'], 2.5)
        self.assertEqual(second['status'], 'scored')
        self.assertEqual(second['percent'], 50.0)
        self.assertEqual(result['counts'], {'noMark': 1, 'zero': 0, 'scored': 1})
        self.assertEqual(result['attendanceSummary'], {'monthsWithData': 1, 'codedDays': 2})

    def test_student_open_without_attendance(self):
        """Test the attendance summary is omitted when there is no data."""
        result = analytics_student_open(self.school_class.id, self.mark_set.id, self.s2.id)
        self.assertNotIn('attendanceSummary', result)
        self.assertEqual(result['finalMark'], 0.0)

    def test_student_out_of_scope(self):
        """Test a student excluded by scope is not found."""
        with self.assertRaises(NotFound):
            analytics_student_open(
                self.school_class.id, self.mark_set.id, self.s3.id, student_scope='valid'
            )

    def test_filter_options(self):
        """Test terms, categories and types are listed."""
        options = analytics_filter_options(self.school_class.id, self.mark_set.id)
        self.assertEqual(options['terms'], [1, 2])
        self.assertEqual(options['categories'], ['Quizzes', 'Tests'])
        self.assertEqual(len(options['types']), 5)
        self.assertEqual(options['studentScopes'], ['all', 'active', 'valid'])


# ============ Score edits ============

class SetScoreTest(MarkbookFixtureMixin, TestCase):
    """Tests for the score write boundary."""

    def setUp(self):
        self.school_class = self.make_class()
        self.student = self.make_student(self.school_class, 0, 'Student', 'One')
        self.mark_set = self.make_mark_set(self.school_class)
        self.assessment = self.make_assessment(self.mark_set, 0, out_of=10)

    def test_set_zero(self):
        """Test zero is persisted as 0.0 with the zero status."""
        score = set_score(self.assessment, self.student, Zero)
        self.assertEqual((score.status, score.raw_value), ('zero', 0.0))

    def test_set_scored_updates_in_place(self):
        """Test repeated edits update the same row."""
        set_score(self.assessment, self.student, 'scored', 4)
        score = set_score(self.assessment, self.student, 'scored', 7)
        self.assertEqual(score.raw_value, 7.0)
        self.assertEqual(Score.objects.filter(assessment=self.assessment).count(), 1)
        self.assertEqual(score.state, ScoreState.scored(7))

    def test_rejects_non_positive_scored(self):
        """Test scored values <= 0 are rejected, not coerced."""
        with self.assertRaises(BadParams):
            set_score(self.assessment, self.student, 'scored', 0)
        self.assertFalse(Score.objects.exists())

    def test_rejects_student_from_other_class(self):
        """Test students must belong to the assessment's class."""
        other = self.make_student(self.make_class('Other'), 0, 'Else', 'Some')
        with self.assertRaises(BadParams):
            set_score(self.assessment, other, Zero)


# ============ Views and tasks ============

class MarkbookViewsTest(MarkbookFixtureMixin, TestCase):
    """Tests for the JSON endpoints."""

    def setUp(self):
        self.client = Client()
        self.school_class = self.make_class()
        self.student = self.make_student(self.school_class, 0, 'Student', 'One')
        self.mark_set = self.make_mark_set(self.school_class)
        assessment = self.make_assessment(self.mark_set, 0, out_of=10, term=1)
        self.make_score(assessment, self.student, 9)

    def url(self, name):
        return reverse(f'markbook:{name}', args=[self.school_class.id, self.mark_set.id])

    def test_summary_ok(self):
        """Test the summary endpoint returns the computed summary."""
        response = self.client.get(self.url('mark_set_summary'), {'filters': json.dumps({'term': 1})})
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data['ok'])
        self.assertEqual(data['result']['perStudent'][0]['finalMark'], 90.0)

    def test_bad_filters_are_400(self):
        """Test malformed filters produce a bad_params error."""
        response = self.client.get(self.url('mark_set_summary'), {'filters': '{"bogus": 1}'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error']['code'], 'bad_params')

    def test_bad_scope_is_400(self):
        """Test an unknown studentScope is rejected."""
        response = self.client.get(self.url('class_analytics'), {'studentScope': 'some'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error']['details'], {'studentScope': 'some'})

    def test_unknown_mark_set_is_404(self):
        """Test unknown ids produce a not_found error."""
        url = reverse('markbook:mark_set_summary', args=[self.school_class.id, uuid.uuid4()])
        response = self.client.get(url)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error']['code'], 'not_found')

    def test_student_analytics_and_options(self):
        """Test the student and filter option endpoints."""
        url = reverse(
            'markbook:student_analytics',
            args=[self.school_class.id, self.mark_set.id, self.student.id]
        )
        self.assertEqual(self.client.get(url).json()['result']['finalMark'], 90.0)
        options = self.client.get(self.url('filter_options')).json()['result']
        self.assertEqual(options['terms'], [1])

    def test_post_not_allowed(self):
        """Test the read endpoints reject POST."""
        response = self.client.post(self.url('mark_set_summary'))
        self.assertEqual(response.status_code, 405)


class ComputeSummaryTaskTest(MarkbookFixtureMixin, TestCase):
    """Tests for the summary celery task run eagerly."""

    def setUp(self):
        self.school_class = self.make_class()
        self.mark_set = self.make_mark_set(self.school_class)

    def test_task_returns_summary(self):
        """Test the task wraps the summary in an ok envelope."""
        result = compute_summary_task(str(self.school_class.id), str(self.mark_set.id), {})
        self.assertTrue(result['ok'])
        self.assertEqual(result['result']['markSet']['code'], 'MAT1')

    def test_task_reports_errors(self):
        """Test structured errors are returned, not raised."""
        result = compute_summary_task(str(self.school_class.id), str(uuid.uuid4()))
        self.assertFalse(result['ok'])
        self.assertEqual(result['error']['code'], 'not_found')
