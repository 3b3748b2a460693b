import uuid
from django.db import models
from django.utils.translation import gettext_lazy as _


class SchoolClass(models.Model):
    """A class (homeroom or course section) owning students and mark sets."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200, help_text='Display name of the class')
    source_folder = models.CharField(
        max_length=500,
        blank=True,
        help_text='Legacy folder this class was imported from, if any'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'markbook_class'
        verbose_name = 'Class'
        verbose_name_plural = 'Classes'
        ordering = ['name']

    def __str__(self):
        return self.name


class Student(models.Model):
    """A student on a class roster, kept in legacy roster order."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    school_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.CASCADE,
        related_name='students'
    )
    last_name = models.CharField(max_length=100)
    first_name = models.CharField(max_length=100)
    student_no = models.CharField(max_length=50, blank=True, null=True)
    birth_date = models.CharField(
        max_length=20,
        blank=True,
        null=True,
        help_text='Birth date exactly as recorded in the legacy roster'
    )
    active = models.BooleanField(default=True)
    sort_order = models.PositiveIntegerField(
        help_text='0-based roster position; matches the legacy per-student column'
    )
    mark_set_mask = models.CharField(
        max_length=64,
        blank=True,
        null=True,
        help_text="Per-mark-set enrollment mask ('TBA' or a string of 0/1 flags)"
    )
    raw_line = models.TextField(
        blank=True,
        help_text='Original roster line, kept for legacy parity and debugging'
    )

    class Meta:
        db_table = 'markbook_student'
        ordering = ['school_class', 'sort_order']
        unique_together = ['school_class', 'sort_order']

    def __str__(self):
        return self.display_name

    @property
    def display_name(self):
        return f"{self.last_name}, {self.first_name}"


class StudentNote(models.Model):
    """Free-form teacher note attached to a student (legacy NOTE.TXT)."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    school_class = models.ForeignKey(SchoolClass, on_delete=models.CASCADE, related_name='notes')
    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='notes')
    note = models.TextField()

    class Meta:
        db_table = 'markbook_student_note'
        unique_together = ['school_class', 'student']


class MarkSet(models.Model):
    """
    One gradebook column group (a term or subject) within a class.

    weight_method and calc_method keep the legacy numeric codes so imported
    mark sets calculate exactly as they did in the original program.
    """

    class WeightMethod(models.IntegerChoices):
        ENTRY = 0, _('Entry weighting')
        CATEGORY = 1, _('Category weighting')
        EQUAL = 2, _('Equal weighting')

    class CalcMethod(models.IntegerChoices):
        AVERAGE = 0, _('Average')
        MEDIAN = 1, _('Median')
        MODE = 2, _('Mode')
        BLENDED_MODE = 3, _('Blended mode')
        BLENDED_MEDIAN = 4, _('Blended median')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    school_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.CASCADE,
        related_name='mark_sets'
    )
    code = models.CharField(max_length=50, help_text='Short mark set code (e.g., MAT1)')
    file_prefix = models.CharField(max_length=50, blank=True)
    description = models.CharField(max_length=255, blank=True)
    weight = models.FloatField(default=0)
    source_filename = models.CharField(max_length=255, blank=True)
    sort_order = models.PositiveIntegerField(
        default=0,
        help_text='Position among the class mark sets; indexes the student enrollment mask'
    )

    full_code = models.CharField(max_length=100, blank=True, null=True)
    room = models.CharField(max_length=50, blank=True, null=True)
    day = models.CharField(max_length=50, blank=True, null=True)
    period = models.CharField(max_length=50, blank=True, null=True)

    weight_method = models.SmallIntegerField(
        choices=WeightMethod.choices,
        default=WeightMethod.CATEGORY,
        help_text='How assessment and category weights combine into a final mark'
    )
    calc_method = models.SmallIntegerField(
        choices=CalcMethod.choices,
        default=CalcMethod.AVERAGE,
        help_text='Central tendency used for final marks'
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'markbook_mark_set'
        ordering = ['school_class', 'sort_order']
        indexes = [
            models.Index(fields=['school_class', 'sort_order'], name='markbook_ms_class_sort_idx'),
        ]

    def __str__(self):
        return f"{self.code} - {self.description}" if self.description else self.code


class Category(models.Model):
    """Weighted assessment category within a mark set."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    mark_set = models.ForeignKey(MarkSet, on_delete=models.CASCADE, related_name='categories')
    name = models.CharField(max_length=100)
    weight = models.FloatField(default=0, help_text='Relative weight used by category weighting')
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'markbook_category'
        ordering = ['mark_set', 'sort_order']
        verbose_name_plural = 'Categories'

    def __str__(self):
        return f"{self.name} ({self.weight:g})"


class Assessment(models.Model):
    """
    A single assessment column. idx is the dense 0-based legacy position.

    Assessments reference their category by name, as legacy mark files do.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    mark_set = models.ForeignKey(MarkSet, on_delete=models.CASCADE, related_name='assessments')
    idx = models.PositiveIntegerField(help_text='0-based position within the mark set')
    date = models.CharField(max_length=10, blank=True, null=True, help_text='YYYY-MM-DD')
    category_name = models.CharField(max_length=100, blank=True, null=True)
    title = models.CharField(max_length=255)
    term = models.IntegerField(blank=True, null=True)
    legacy_kind = models.IntegerField(default=0)
    legacy_type = models.IntegerField(
        blank=True,
        null=True,
        help_text='Assessment type bit (0 summative, 1 formative, 2 diagnostic, 3 self, 4 peer)'
    )
    weight = models.FloatField(default=1)
    out_of = models.FloatField(default=0)
    avg_percent = models.FloatField(default=0, help_text='Average as stored by the legacy program')
    avg_raw = models.FloatField(default=0, help_text='Raw average as stored by the legacy program')

    class Meta:
        db_table = 'markbook_assessment'
        ordering = ['mark_set', 'idx']
        unique_together = ['mark_set', 'idx']

    def __str__(self):
        return f"{self.idx}: {self.title}"


class Score(models.Model):
    """
    One student's mark on one assessment.

    status holds the tri-state; raw_value is NULL for no_mark and 0.0 for zero.
    Use markbook.scores to convert between rows and ScoreState values.
    """

    class Status(models.TextChoices):
        NO_MARK = 'no_mark', _('No mark')
        ZERO = 'zero', _('Zero')
        SCORED = 'scored', _('Scored')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    assessment = models.ForeignKey(Assessment, on_delete=models.CASCADE, related_name='scores')
    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='scores')
    raw_value = models.FloatField(blank=True, null=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.NO_MARK)
    remark = models.TextField(blank=True)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'markbook_score'
        unique_together = ['assessment', 'student']
        indexes = [
            models.Index(fields=['student', 'assessment'], name='markbook_score_stu_asm_idx'),
        ]

    def __str__(self):
        return f"{self.student} - {self.assessment}: {self.status}"

    @property
    def state(self):
        from .scores import from_stored
        return from_stored(self.status, self.raw_value)


# ============ Attendance ============

class AttendanceSettings(models.Model):
    school_class = models.OneToOneField(
        SchoolClass,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='attendance_settings'
    )
    school_year_start_month = models.PositiveSmallIntegerField(default=9)

    class Meta:
        db_table = 'markbook_attendance_settings'


class AttendanceMonth(models.Model):
    """Class-wide type-of-day codes for one month (one character per day)."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    school_class = models.ForeignKey(SchoolClass, on_delete=models.CASCADE, related_name='attendance_months')
    month = models.PositiveSmallIntegerField(help_text='1-12, counted from the school year start')
    type_of_day_codes = models.CharField(max_length=64, blank=True)

    class Meta:
        db_table = 'markbook_attendance_month'
        unique_together = ['school_class', 'month']
        ordering = ['school_class', 'month']


class AttendanceStudentMonth(models.Model):
    """A student's day codes for one month (one character per day)."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    school_class = models.ForeignKey(SchoolClass, on_delete=models.CASCADE, related_name='attendance_student_months')
    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='attendance_months')
    month = models.PositiveSmallIntegerField()
    day_codes = models.CharField(max_length=64, blank=True)

    class Meta:
        db_table = 'markbook_attendance_student_month'
        unique_together = ['school_class', 'student', 'month']


# ============ Seating ============

class SeatingPlan(models.Model):
    school_class = models.OneToOneField(
        SchoolClass,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='seating_plan'
    )
    rows = models.PositiveSmallIntegerField()
    seats_per_row = models.PositiveSmallIntegerField()
    blocked_mask = models.CharField(
        max_length=500,
        blank=True,
        help_text="One '1' (blocked) or '0' (open) per seat"
    )

    class Meta:
        db_table = 'markbook_seating_plan'


class SeatingAssignment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    school_class = models.ForeignKey(SchoolClass, on_delete=models.CASCADE, related_name='seating_assignments')
    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='seating_assignments')
    seat_code = models.PositiveIntegerField()

    class Meta:
        db_table = 'markbook_seating_assignment'
        unique_together = ['school_class', 'student']


class StudentDeviceMap(models.Model):
    """Primary device/class code for a student, from the legacy ICC matrix."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    school_class = models.ForeignKey(SchoolClass, on_delete=models.CASCADE, related_name='device_mappings')
    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='device_mappings')
    device_code = models.CharField(max_length=100, blank=True)
    raw_line = models.TextField(blank=True, help_text='JSON copy of the full legacy code row')

    class Meta:
        db_table = 'markbook_student_device_map'
        unique_together = ['school_class', 'student']


# ============ Comments ============

class CommentBank(models.Model):
    """A reusable bank of report card comments (legacy .BNK file)."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    short_name = models.CharField(max_length=100, unique=True)
    is_default = models.BooleanField(default=False)
    fit_profile = models.CharField(max_length=255, blank=True, null=True)
    source_path = models.CharField(max_length=500, blank=True)

    class Meta:
        db_table = 'markbook_comment_bank'
        ordering = ['short_name']

    def __str__(self):
        return self.short_name


class CommentBankEntry(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    bank = models.ForeignKey(CommentBank, on_delete=models.CASCADE, related_name='entries')
    sort_order = models.PositiveIntegerField(default=0)
    type_code = models.CharField(max_length=50, blank=True)
    level_code = models.CharField(max_length=50, blank=True)
    text = models.TextField()

    class Meta:
        db_table = 'markbook_comment_bank_entry'
        ordering = ['bank', 'sort_order']


class CommentSetIndex(models.Model):
    """A numbered report-comment set attached to a mark set (legacy .IDX)."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    school_class = models.ForeignKey(SchoolClass, on_delete=models.CASCADE, related_name='comment_sets')
    mark_set = models.ForeignKey(MarkSet, on_delete=models.CASCADE, related_name='comment_sets')
    set_number = models.PositiveIntegerField()
    title = models.CharField(max_length=255)
    fit_mode = models.IntegerField(default=0)
    fit_font_size = models.IntegerField(default=8)
    fit_width = models.IntegerField(default=50)
    fit_lines = models.IntegerField(default=1)
    fit_subj = models.CharField(max_length=255, blank=True)
    max_chars = models.IntegerField(default=100)
    is_default = models.BooleanField(default=False)
    bank_short = models.CharField(max_length=100, blank=True, null=True)

    class Meta:
        db_table = 'markbook_comment_set_index'
        unique_together = ['mark_set', 'set_number']
        ordering = ['mark_set', 'set_number']


class CommentSetRemark(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    comment_set = models.ForeignKey(CommentSetIndex, on_delete=models.CASCADE, related_name='remarks')
    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='comment_remarks')
    remark = models.TextField()

    class Meta:
        db_table = 'markbook_comment_set_remark'
        unique_together = ['comment_set', 'student']


# ============ Loaned items ============

class LoanedItem(models.Model):
    """A textbook or item on loan to a student (legacy .TBK file)."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    school_class = models.ForeignKey(SchoolClass, on_delete=models.CASCADE, related_name='loaned_items')
    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='loaned_items')
    mark_set = models.ForeignKey(
        MarkSet,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='loaned_items'
    )
    item_name = models.CharField(max_length=255)
    quantity = models.FloatField(default=0, help_text='Legacy cost column')
    notes = models.TextField(blank=True, null=True)
    raw_line = models.TextField(blank=True)

    class Meta:
        db_table = 'markbook_loaned_item'
