import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='SchoolClass',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(help_text='Display name of the class', max_length=200)),
                ('source_folder', models.CharField(blank=True, help_text='Legacy folder this class was imported from, if any', max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Class',
                'verbose_name_plural': 'Classes',
                'db_table': 'markbook_class',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='CommentBank',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('short_name', models.CharField(max_length=100, unique=True)),
                ('is_default', models.BooleanField(default=False)),
                ('fit_profile', models.CharField(blank=True, max_length=255, null=True)),
                ('source_path', models.CharField(blank=True, max_length=500)),
            ],
            options={
                'db_table': 'markbook_comment_bank',
                'ordering': ['short_name'],
            },
        ),
        migrations.CreateModel(
            name='Student',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('last_name', models.CharField(max_length=100)),
                ('first_name', models.CharField(max_length=100)),
                ('student_no', models.CharField(blank=True, max_length=50, null=True)),
                ('birth_date', models.CharField(blank=True, help_text='Birth date exactly as recorded in the legacy roster', max_length=20, null=True)),
                ('active', models.BooleanField(default=True)),
                ('sort_order', models.PositiveIntegerField(help_text='0-based roster position; matches the legacy per-student column')),
                ('mark_set_mask', models.CharField(blank=True, help_text="Per-mark-set enrollment mask ('TBA' or a string of 0/1 flags)", max_length=64, null=True)),
                ('raw_line', models.TextField(blank=True, help_text='Original roster line, kept for legacy parity and debugging')),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='students', to='markbook.schoolclass')),
            ],
            options={
                'db_table': 'markbook_student',
                'ordering': ['school_class', 'sort_order'],
                'unique_together': {('school_class', 'sort_order')},
            },
        ),
        migrations.CreateModel(
            name='MarkSet',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('code', models.CharField(help_text='Short mark set code (e.g., MAT1)', max_length=50)),
                ('file_prefix', models.CharField(blank=True, max_length=50)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('weight', models.FloatField(default=0)),
                ('source_filename', models.CharField(blank=True, max_length=255)),
                ('sort_order', models.PositiveIntegerField(default=0, help_text='Position among the class mark sets; indexes the student enrollment mask')),
                ('full_code', models.CharField(blank=True, max_length=100, null=True)),
                ('room', models.CharField(blank=True, max_length=50, null=True)),
                ('day', models.CharField(blank=True, max_length=50, null=True)),
                ('period', models.CharField(blank=True, max_length=50, null=True)),
                ('weight_method', models.SmallIntegerField(choices=[(0, 'Entry weighting'), (1, 'Category weighting'), (2, 'Equal weighting')], default=1, help_text='How assessment and category weights combine into a final mark')),
                ('calc_method', models.SmallIntegerField(choices=[(0, 'Average'), (1, 'Median'), (2, 'Mode'), (3, 'Blended mode'), (4, 'Blended median')], default=0, help_text='Central tendency used for final marks')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='mark_sets', to='markbook.schoolclass')),
            ],
            options={
                'db_table': 'markbook_mark_set',
                'ordering': ['school_class', 'sort_order'],
                'indexes': [models.Index(fields=['school_class', 'sort_order'], name='markbook_ms_class_sort_idx')],
            },
        ),
        migrations.CreateModel(
            name='Category',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=100)),
                ('weight', models.FloatField(default=0, help_text='Relative weight used by category weighting')),
                ('sort_order', models.PositiveIntegerField(default=0)),
                ('mark_set', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='categories', to='markbook.markset')),
            ],
            options={
                'verbose_name_plural': 'Categories',
                'db_table': 'markbook_category',
                'ordering': ['mark_set', 'sort_order'],
            },
        ),
        migrations.CreateModel(
            name='Assessment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('idx', models.PositiveIntegerField(help_text='0-based position within the mark set')),
                ('date', models.CharField(blank=True, help_text='YYYY-MM-DD', max_length=10, null=True)),
                ('category_name', models.CharField(blank=True, max_length=100, null=True)),
                ('title', models.CharField(max_length=255)),
                ('term', models.IntegerField(blank=True, null=True)),
                ('legacy_kind', models.IntegerField(default=0)),
                ('legacy_type', models.IntegerField(blank=True, help_text='Assessment type bit (0 summative, 1 formative, 2 diagnostic, 3 self, 4 peer)', null=True)),
                ('weight', models.FloatField(default=1)),
                ('out_of', models.FloatField(default=0)),
                ('avg_percent', models.FloatField(default=0, help_text='Average as stored by the legacy program')),
                ('avg_raw', models.FloatField(default=0, help_text='Raw average as stored by the legacy program')),
                ('mark_set', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='assessments', to='markbook.markset')),
            ],
            options={
                'db_table': 'markbook_assessment',
                'ordering': ['mark_set', 'idx'],
                'unique_together': {('mark_set', 'idx')},
            },
        ),
        migrations.CreateModel(
            name='Score',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('raw_value', models.FloatField(blank=True, null=True)),
                ('status', models.CharField(choices=[('no_mark', 'No mark'), ('zero', 'Zero'), ('scored', 'Scored')], default='no_mark', max_length=10)),
                ('remark', models.TextField(blank=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('assessment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='scores', to='markbook.assessment')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='scores', to='markbook.student')),
            ],
            options={
                'db_table': 'markbook_score',
                'indexes': [models.Index(fields=['student', 'assessment'], name='markbook_score_stu_asm_idx')],
                'unique_together': {('assessment', 'student')},
            },
        ),
        migrations.CreateModel(
            name='StudentNote',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('note', models.TextField()),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='notes', to='markbook.schoolclass')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='notes', to='markbook.student')),
            ],
            options={
                'db_table': 'markbook_student_note',
                'unique_together': {('school_class', 'student')},
            },
        ),
        migrations.CreateModel(
            name='AttendanceSettings',
            fields=[
                ('school_class', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='attendance_settings', serialize=False, to='markbook.schoolclass')),
                ('school_year_start_month', models.PositiveSmallIntegerField(default=9)),
            ],
            options={
                'db_table': 'markbook_attendance_settings',
            },
        ),
        migrations.CreateModel(
            name='AttendanceMonth',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('month', models.PositiveSmallIntegerField(help_text='1-12, counted from the school year start')),
                ('type_of_day_codes', models.CharField(blank=True, max_length=64)),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attendance_months', to='markbook.schoolclass')),
            ],
            options={
                'db_table': 'markbook_attendance_month',
                'ordering': ['school_class', 'month'],
                'unique_together': {('school_class', 'month')},
            },
        ),
        migrations.CreateModel(
            name='AttendanceStudentMonth',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('month', models.PositiveSmallIntegerField()),
                ('day_codes', models.CharField(blank=True, max_length=64)),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attendance_student_months', to='markbook.schoolclass')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attendance_months', to='markbook.student')),
            ],
            options={
                'db_table': 'markbook_attendance_student_month',
                'unique_together': {('school_class', 'student', 'month')},
            },
        ),
        migrations.CreateModel(
            name='SeatingPlan',
            fields=[
                ('school_class', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='seating_plan', serialize=False, to='markbook.schoolclass')),
                ('rows', models.PositiveSmallIntegerField()),
                ('seats_per_row', models.PositiveSmallIntegerField()),
                ('blocked_mask', models.CharField(blank=True, help_text="One '1' (blocked) or '0' (open) per seat", max_length=500)),
            ],
            options={
                'db_table': 'markbook_seating_plan',
            },
        ),
        migrations.CreateModel(
            name='SeatingAssignment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('seat_code', models.PositiveIntegerField()),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='seating_assignments', to='markbook.schoolclass')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='seating_assignments', to='markbook.student')),
            ],
            options={
                'db_table': 'markbook_seating_assignment',
                'unique_together': {('school_class', 'student')},
            },
        ),
        migrations.CreateModel(
            name='StudentDeviceMap',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('device_code', models.CharField(blank=True, max_length=100)),
                ('raw_line', models.TextField(blank=True, help_text='JSON copy of the full legacy code row')),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='device_mappings', to='markbook.schoolclass')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='device_mappings', to='markbook.student')),
            ],
            options={
                'db_table': 'markbook_student_device_map',
                'unique_together': {('school_class', 'student')},
            },
        ),
        migrations.CreateModel(
            name='CommentBankEntry',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('sort_order', models.PositiveIntegerField(default=0)),
                ('type_code', models.CharField(blank=True, max_length=50)),
                ('level_code', models.CharField(blank=True, max_length=50)),
                ('text', models.TextField()),
                ('bank', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='entries', to='markbook.commentbank')),
            ],
            options={
                'db_table': 'markbook_comment_bank_entry',
                'ordering': ['bank', 'sort_order'],
            },
        ),
        migrations.CreateModel(
            name='CommentSetIndex',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('set_number', models.PositiveIntegerField()),
                ('title', models.CharField(max_length=255)),
                ('fit_mode', models.IntegerField(default=0)),
                ('fit_font_size', models.IntegerField(default=8)),
                ('fit_width', models.IntegerField(default=50)),
                ('fit_lines', models.IntegerField(default=1)),
                ('fit_subj', models.CharField(blank=True, max_length=255)),
                ('max_chars', models.IntegerField(default=100)),
                ('is_default', models.BooleanField(default=False)),
                ('bank_short', models.CharField(blank=True, max_length=100, null=True)),
                ('mark_set', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='comment_sets', to='markbook.markset')),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='comment_sets', to='markbook.schoolclass')),
            ],
            options={
                'db_table': 'markbook_comment_set_index',
                'ordering': ['mark_set', 'set_number'],
                'unique_together': {('mark_set', 'set_number')},
            },
        ),
        migrations.CreateModel(
            name='CommentSetRemark',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('remark', models.TextField()),
                ('comment_set', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='remarks', to='markbook.commentsetindex')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='comment_remarks', to='markbook.student')),
            ],
            options={
                'db_table': 'markbook_comment_set_remark',
                'unique_together': {('comment_set', 'student')},
            },
        ),
        migrations.CreateModel(
            name='LoanedItem',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('item_name', models.CharField(max_length=255)),
                ('quantity', models.FloatField(default=0, help_text='Legacy cost column')),
                ('notes', models.TextField(blank=True, null=True)),
                ('raw_line', models.TextField(blank=True)),
                ('mark_set', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='loaned_items', to='markbook.markset')),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='loaned_items', to='markbook.schoolclass')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='loaned_items', to='markbook.student')),
            ],
            options={
                'db_table': 'markbook_loaned_item',
            },
        ),
    ]
