import json
import shutil
import tempfile
from pathlib import Path

from django.test import TestCase, Client, override_settings
from django.urls import reverse

from core.errors import LegacyNotFound, LegacyParseFailed, LegacyReadFailed
from markbook.calculations import compute_mark_set_summary
from markbook.models import (
    Assessment, AttendanceMonth, AttendanceSettings, AttendanceStudentMonth,
    CommentBank, CommentSetIndex, CommentSetRemark, LoanedItem, MarkSet,
    SchoolClass, Score, SeatingAssignment, SeatingPlan, Student,
    StudentDeviceMap, StudentNote,
)
from markbook.scores import NoMark, ScoreState, Zero, from_stored
from . import decoders, discovery
from .importer import import_legacy_class
from .records import BankEntry, CommentBankFile
from .tasks import import_legacy_class_task
from .text import LineCursor, parse_csv_fields, parse_date_ymd, strip_quotes


CL_FILE = """[General Information]
"555-1234"
"Central School"
"8D"
"Ms Rivera"
""
[Mark Sets created for this class]
2
"MAT18D&MAT1,Mathematics,50"
"SNC18D&SNC1,Science,50"
[Class List]
3
1,Smith,Ann,F,1001,x,x,x,x,2010-01-02,TBA
1,Jones,Bob,M,1002,TBA
0,Brown,Cy,M,,01
"""

MARK_FILE = """[Misc Info]
"MAT1-8D"
"101"
"Mon"
"2"
1
12345
0
""
[Categories]
2
"Tests,60"
"Quizzes,40"
[LastStudent]
3
[Marks]
2
2024 9 15
"Tests"
"Unit 1"
1
0,1,75,20,15
0,15
0,-1
0,0
2024 10 1
"Quizzes"
"Quiz 1"
1
1,1,80,10,8
0,8
"""

TYP_FILE = """[Last Entry]
2
0
1
"""

RMK_FILE = """[LastStudent - Last Entry]
3,1
"Unit 1"
""
"Great work"
""
"Absent"
"""

NOTE_FILE = """[Comments]
3
"Needs glasses"
"Line one
line two"
""
"""

SEATING_FILE = """[Number of Rows / Seats per Row]
5,6
[LastStudent]
3
"0110"
12
0
"""

ICC_FILE = """3,2
"","MATH","SCI"
"","A1",""
"","","B2"
"""

TBK_FILE = """[LastStudent]
3
[Loaned Items Data - DO NOT EDIT!!!]
0
"Algebra 1","Pearson",45.5
"B-101",""
"",""
"B-103","worn cover"
"""

IDX_FILE = """"This comment index file belongs to"
"C:\\MARKBOOK\\8D"
100
1
1
"Term 1 Comments"
"1,10,60,3"
"Math"
"GENERAL.BNK"
[Max Characters for each Comment Set]
250
"""

R1_FILE = """[Comments]
3
"Works hard"
""
"Shows growth"
"""

ALL_IDX_FILE = """2
1
"Report Card"
"Learning Skills"
"""

BNK_FILE = """"SK","1","Works well with others."
"SK","2","Shows ""great"" initiative."
"FIT","FIT","Please DO NOT EDIT or DELETE this line: 1,10,60,3"
"""

EXPORT_FILE = """Mark File: MAT18D.Y25
This file belongs to Folder: C:\\MARKBOOK\\8D
[LastStudent]
3
"Unit 1"
20,1
15
15
-1
0
"Quiz 1"
10
8
"""


def attendance_file(last_student=3, with_start=True):
    lines = ['[LastStudent]', str(last_student)]
    if with_start:
        lines += ['[School Year Starts]', '9']
    lines.append('[Attendance Data - DO NOT EDIT!!!]')
    for month in range(1, 13):
        lines.append(f'"Month {month}"')
        lines.append('"  SS     "' if month == 1 else '""')
        for s in range(last_student):
            lines.append('"PPA"' if month == 1 and s == 0 else '""')
    return '\n'.join(lines) + '\n'


class LegacyFolderMixin:
    """Builds a synthetic legacy class folder inside a temporary directory."""

    def setUp(self):
        self.root = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, self.root, ignore_errors=True)
        self.folder = self.root / '8D'
        self.folder.mkdir()

    def write(self, name, text, folder=None):
        path = (folder or self.folder) / name
        path.write_text(text, encoding='utf-8')
        return path

    def write_class(self):
        self.write('CL8D.Y25', CL_FILE)
        self.write('MAT18D.Y25', MARK_FILE)
        self.write('MAT18D.TYP', TYP_FILE)
        self.write('MAT18D.RMK', RMK_FILE)
        self.write('8DNOTE.TXT', NOTE_FILE)
        self.write('8D.ATN', attendance_file())
        self.write('8D.SPL', SEATING_FILE)

    def write_companions(self):
        self.write('8D.ICC', ICC_FILE)
        self.write('MAT18D.TBK', TBK_FILE)
        self.write('MAT18D.IDX', IDX_FILE)
        self.write('MAT18D.R1', R1_FILE)
        self.write('ALL!8D.IDX', ALL_IDX_FILE)
        self.write('GENERAL.BNK', BNK_FILE, folder=self.root)


# ============ Text helpers ============

class TextHelpersTest(TestCase):
    """Tests for the shared line and field helpers."""

    def test_strip_quotes(self):
        """Test one pair of surrounding quotes is removed and the value trimmed."""
        self.assertEqual(strip_quotes('  " hello "  '), 'hello')
        self.assertEqual(strip_quotes('""'), '')
        self.assertEqual(strip_quotes('"a"b"'), 'a"b')
        self.assertEqual(strip_quotes('plain'), 'plain')

    def test_parse_csv_fields_handles_quotes(self):
        """Test commas inside quotes stay in the field and doubled quotes unescape."""
        self.assertEqual(
            parse_csv_fields('"a, b", "say ""hi""" ,c'),
            ['a, b', 'say "hi"', 'c']
        )
        self.assertEqual(parse_csv_fields(''), [''])

    def test_parse_date_ymd(self):
        """Test legacy 'Y M D' dates are zero padded."""
        self.assertEqual(parse_date_ymd('2024 9 3'), '2024-09-03')
        self.assertIsNone(parse_date_ymd('2024 9'))
        self.assertIsNone(parse_date_ymd('2024 x 3'))

    def test_cursor_noise_and_keep_empty(self):
        """Test non-noise reads skip blank values while keep-empty reads do not."""
        cursor = LineCursor(['', '""', '"a"', '""', 'b'], 'f')
        self.assertEqual(cursor.next_non_noise(), 'a')
        self.assertEqual(cursor.next_keep_empty(), '')
        self.assertEqual(cursor.next_keep_empty(), 'b')
        self.assertIsNone(cursor.next_keep_empty())

    def test_quoted_block_unterminated(self):
        """Test an open quoted block at EOF is a parse failure."""
        cursor = LineCursor(['"never closed', 'more'], 'notes.txt')
        with self.assertRaises(LegacyParseFailed) as ctx:
            cursor.read_quoted_block()
        self.assertEqual(ctx.exception.details['path'], 'notes.txt')


# ============ Decoders ============

class ClassListDecoderTest(LegacyFolderMixin, TestCase):
    """Tests for the CL*.Y?? decoder."""

    def test_decode_class_list(self):
        """Test class name, mark set definitions and roster fields."""
        parsed = decoders.decode_class_list(self.write('CL8D.Y25', CL_FILE))

        self.assertEqual(parsed.class_name, '8D')
        self.assertEqual([d.code for d in parsed.mark_sets], ['MAT1', 'SNC1'])
        self.assertEqual(parsed.mark_sets[0].file_prefix, 'MAT18D')
        self.assertEqual(parsed.mark_sets[1].sort_order, 1)
        self.assertEqual(parsed.mark_sets[0].weight, 50.0)

        ann, bob, cy = parsed.students
        self.assertEqual((ann.last_name, ann.first_name), ('Smith', 'Ann'))
        self.assertEqual(ann.student_no, '1001')
        self.assertEqual(ann.birth_date, '2010-01-02')
        self.assertEqual(ann.mark_set_mask, 'TBA')
        self.assertTrue(bob.active)
        self.assertIsNone(bob.birth_date)
        self.assertFalse(cy.active)
        self.assertIsNone(cy.student_no)
        self.assertEqual(cy.mark_set_mask, '01')
        self.assertEqual(cy.raw_line, '0,Brown,Cy,M,,01')
        self.assertEqual(cy.ordinal, 2)

    def test_default_class_name(self):
        """Test a roster without general information gets the default name."""
        parsed = decoders.decode_class_list(self.write('CL9A.Y25', '[Class List]\n0\n'))
        self.assertEqual(parsed.class_name, 'Imported Class')
        self.assertEqual(parsed.students, [])

    def test_mask_token(self):
        """Test only TBA or 0/1 runs are accepted as masks."""
        self.assertEqual(decoders.parse_mark_set_mask(' tba '), 'TBA')
        self.assertEqual(decoders.parse_mark_set_mask('0110'), '0110')
        self.assertIsNone(decoders.parse_mark_set_mask('2010-01-02'))
        self.assertIsNone(decoders.parse_mark_set_mask(''))

    def test_mark_set_def_without_ampersand(self):
        """Test a definition without '&' uses the same value for prefix and code."""
        definition = decoders.parse_mark_set_def('ENG1,English,x', 3)
        self.assertEqual(definition.file_prefix, 'ENG1')
        self.assertEqual(definition.code, 'ENG1')
        self.assertEqual(definition.weight, 0.0)
        self.assertIsNone(decoders.parse_mark_set_def('ENG1,English', 0))


class MarkFileDecoderTest(LegacyFolderMixin, TestCase):
    """Tests for the mark file decoder and its companions."""

    def test_decode_mark_file(self):
        """Test misc block, categories, assessments and score states."""
        parsed = decoders.decode_mark_file(self.write('MAT18D.Y25', MARK_FILE))

        self.assertEqual(parsed.misc.full_code, 'MAT1-8D')
        self.assertEqual(parsed.misc.room, '101')
        self.assertEqual(parsed.misc.weight_method, 1)
        self.assertEqual(parsed.misc.legacy_serial, 12345.0)
        self.assertEqual(parsed.misc.calc_method, 0)
        self.assertEqual([(c.name, c.weight) for c in parsed.categories], [('Tests', 60.0), ('Quizzes', 40.0)])
        self.assertEqual(parsed.last_student, 3)

        unit, quiz = parsed.assessments
        self.assertEqual(unit.idx, 0)
        self.assertEqual(unit.date, '2024-09-15')
        self.assertEqual(unit.out_of, 20.0)
        self.assertEqual(unit.avg_percent, 75.0)
        self.assertEqual(unit.raw_scores, [ScoreState.scored(15), Zero, NoMark])
        self.assertEqual(quiz.legacy_kind, 1)

    def test_truncated_student_block_is_padded(self):
        """Test missing trailing student lines decode as no mark."""
        parsed = decoders.decode_mark_file(self.write('MAT18D.Y25', MARK_FILE))
        self.assertEqual(parsed.assessments[1].raw_scores, [ScoreState.scored(8), NoMark, NoMark])

    def test_missing_misc_is_optional(self):
        """Test a mark file without [Misc Info] decodes with misc None."""
        text = MARK_FILE.split('[Categories]', 1)[1]
        parsed = decoders.decode_mark_file(self.write('MAT18D.Y25', '[Categories]' + text))
        self.assertIsNone(parsed.misc)
        self.assertEqual(len(parsed.assessments), 2)

    def test_missing_required_section(self):
        """Test a mark file without [Marks] fails with the path attached."""
        path = self.write('MAT18D.Y25', MARK_FILE.replace('[Marks]', '[Other]'))
        with self.assertRaises(LegacyParseFailed) as ctx:
            decoders.decode_mark_file(path)
        self.assertEqual(ctx.exception.details['path'], str(path))
        self.assertEqual(ctx.exception.code, 'legacy_parse_failed')

    def test_bad_summary_line(self):
        """Test a summary line with fewer than five numbers is rejected."""
        path = self.write('MAT18D.Y25', MARK_FILE.replace('0,1,75,20,15', '0,1,75'))
        with self.assertRaises(LegacyParseFailed):
            decoders.decode_mark_file(path)

    def test_bad_date_line(self):
        """Test an unparseable date line is rejected."""
        path = self.write('MAT18D.Y25', MARK_FILE.replace('2024 9 15', 'September'))
        with self.assertRaises(LegacyParseFailed):
            decoders.decode_mark_file(path)

    def test_typ_and_rmk(self):
        """Test assessment types and the remark matrix without the placeholder row."""
        self.assertEqual(decoders.decode_typ_file(self.write('MAT18D.TYP', TYP_FILE)), [0, 1])
        rmk = decoders.decode_rmk_file(self.write('MAT18D.RMK', RMK_FILE))
        self.assertEqual(rmk.last_student, 3)
        self.assertEqual(rmk.remarks_by_entry, [['Great work', '', 'Absent']])

    def test_typ_short_file_padded(self):
        """Test a .TYP file shorter than its count pads with type 0."""
        types = decoders.decode_typ_file(self.write('MAT18D.TYP', '[Last Entry]\n3\n2\n'))
        self.assertEqual(types, [2, 0, 0])

    def test_missing_file_is_read_failure(self):
        """Test a path that cannot be opened raises a read failure."""
        with self.assertRaises(LegacyReadFailed):
            decoders.decode_mark_file(self.folder / 'NOPE.Y25')


class CompanionDecoderTest(LegacyFolderMixin, TestCase):
    """Tests for the class-level companion decoders."""

    def test_note_file(self):
        """Test single and multi-line quoted notes."""
        notes = decoders.decode_note_file(self.write('8DNOTE.TXT', NOTE_FILE))
        self.assertEqual(notes, ['Needs glasses', 'Line one\nline two', ''])

    def test_attendance(self):
        """Test start month and month blocks with per-student day codes."""
        attendance = decoders.decode_attendance_file(self.write('8D.ATN', attendance_file()))
        self.assertEqual(attendance.school_year_start_month, 9)
        self.assertEqual(len(attendance.months), 12)
        self.assertEqual(attendance.months[0].label, 'Month 1')
        self.assertEqual(attendance.months[0].type_of_day_codes, 'SS')
        self.assertEqual(attendance.months[0].student_day_codes, ['PPA', '', ''])

    def test_attendance_missing_start_section(self):
        """Test [School Year Starts] is required."""
        path = self.write('8D.ATN', attendance_file(with_start=False))
        with self.assertRaises(LegacyParseFailed):
            decoders.decode_attendance_file(path)

    def test_seating(self):
        """Test grid size, normalised blocked mask and padded seat codes."""
        seating = decoders.decode_seating_file(self.write('8D.SPL', SEATING_FILE))
        self.assertEqual((seating.rows, seating.seats_per_row), (5, 6))
        self.assertEqual(seating.blocked_mask, '0110')
        self.assertEqual(seating.seat_codes, [12, 0, 0])

    def test_icc_matrix(self):
        """Test the code matrix is filled row by row and padded."""
        icc = decoders.decode_icc_file(self.write('8D.ICC', ICC_FILE))
        self.assertEqual((icc.last_student, icc.subject_count), (3, 2))
        self.assertEqual(icc.codes[0], ['', 'MATH', 'SCI'])
        self.assertEqual(icc.student_row(0), ['', 'A1', ''])
        self.assertEqual(icc.student_row(2), ['', '', ''])

    def test_icc_bad_header(self):
        """Test a header without a subject count is rejected."""
        with self.assertRaises(LegacyParseFailed):
            decoders.decode_icc_file(self.write('8D.ICC', 'three\n'))

    def test_tbk(self):
        """Test loaned item headers and per-student assignments."""
        loans = decoders.decode_tbk_file(self.write('MAT18D.TBK', TBK_FILE))
        self.assertEqual(loans.last_student, 3)
        item, = loans.items
        self.assertEqual((item.title, item.publisher, item.cost), ('Algebra 1', 'Pearson', 45.5))
        self.assertEqual([a.item_id for a in item.assignments], ['B-101', '', 'B-103'])
        self.assertEqual(item.assignments[2].note, 'worn cover')

    def test_idx_current_format(self):
        """Test the owner-line IDX layout with fit values and max characters."""
        index = decoders.decode_idx_file(self.write('MAT18D.IDX', IDX_FILE))
        comment_set, = index.sets
        self.assertEqual(comment_set.title, 'Term 1 Comments')
        self.assertEqual(
            (comment_set.fit_mode, comment_set.fit_font_size, comment_set.fit_width, comment_set.fit_lines),
            (1, 10, 60, 3)
        )
        self.assertEqual(comment_set.fit_subj, 'Math')
        self.assertEqual(comment_set.max_chars, 250)
        self.assertTrue(comment_set.is_default)
        self.assertEqual(index.bank_short, 'GENERAL.BNK')

    def test_idx_old_format(self):
        """Test the count-first IDX layout with default fit values."""
        index = decoders.decode_idx_file(self.write('ALL!8D.IDX', ALL_IDX_FILE))
        self.assertEqual([s.title for s in index.sets], ['Report Card', 'Learning Skills'])
        self.assertTrue(index.sets[0].is_default)
        self.assertEqual(index.sets[1].fit_font_size, 8)
        self.assertEqual(index.sets[1].max_chars, 100)

    def test_idx_without_owner_line(self):
        """Test a non-numeric IDX without the owner line is rejected."""
        with self.assertRaises(LegacyParseFailed):
            decoders.decode_idx_file(self.write('X.IDX', '"Something else"\n'))

    def test_bnk_and_fit_line(self):
        """Test bank entries, escaped quotes and the FIT sentinel."""
        bank = decoders.decode_bnk_file(self.write('GENERAL.BNK', BNK_FILE))
        self.assertEqual(len(bank.entries), 2)
        self.assertEqual(bank.entries[1].text, 'Shows "great" initiative.')
        self.assertEqual(bank.fit_profile, '1,10,60,3')

    def test_serialize_bnk(self):
        """Test serialised banks quote every field and end with the FIT line."""
        bank = CommentBankFile(
            entries=[BankEntry('SK', '1', 'Say "hi"')],
            fit_profile='0,8,50,1',
        )
        self.assertEqual(
            decoders.serialize_bnk(bank),
            '"SK","1","Say ""hi"""\n'
            '"FIT","FIT","Please DO NOT EDIT or DELETE this line: 0,8,50,1"\n'
        )

    def test_export_file(self):
        """Test export blocks with out-of and value rows, metadata skipped."""
        export = decoders.decode_export_file(self.write('MAT18D.EXP', EXPORT_FILE))
        self.assertEqual(export.last_student, 3)
        unit, quiz = export.blocks
        self.assertEqual((unit.title, unit.out_of), ('Unit 1', 20.0))
        self.assertEqual(unit.values, [15.0, 15.0, -1.0, 0.0])
        self.assertEqual((quiz.title, quiz.out_of, quiz.values), ('Quiz 1', 10.0, [8.0]))

    def test_export_without_last_student(self):
        """Test an export file without a student count is rejected."""
        with self.assertRaises(LegacyParseFailed):
            decoders.decode_export_file(self.write('X.EXP', '"Unit 1"\n20\n15\n'))


# ============ Discovery ============

class DiscoveryTest(LegacyFolderMixin, TestCase):
    """Tests for naming-convention file discovery."""

    def test_find_files(self):
        """Test each file kind resolves by name, case-insensitively."""
        self.write_class()
        self.write_companions()
        self.write('mat18d.y24', MARK_FILE)

        self.assertEqual(discovery.find_cl_file(self.folder).name, 'CL8D.Y25')
        self.assertEqual(discovery.find_mark_file(self.folder, 'MAT18D').name, 'MAT18D.Y25')
        self.assertIsNone(discovery.find_mark_file(self.folder, 'SNC18D'))
        self.assertEqual(discovery.find_note_file(self.folder).name, '8DNOTE.TXT')
        self.assertEqual(discovery.find_attendance_file(self.folder).name, '8D.ATN')
        self.assertEqual(discovery.find_all_idx_file(self.folder).name, 'ALL!8D.IDX')
        self.assertEqual([p.name for p in discovery.find_bnk_files(self.root)], ['GENERAL.BNK'])
        self.assertEqual(discovery.companion(self.folder / 'MAT18D.Y25', 'R1').name, 'MAT18D.R1')
        self.assertIsNone(discovery.companion(self.folder / 'MAT18D.Y25', 'R2'))

    def test_mark_file_ignores_class_list(self):
        """Test a CL file never counts as a mark file even if the prefix matches."""
        self.write('CL8D.Y25', CL_FILE)
        self.assertIsNone(discovery.find_mark_file(self.folder, 'CL'))

    def test_no_class_list(self):
        """Test a folder without a CL file raises not found."""
        with self.assertRaises(LegacyNotFound) as ctx:
            discovery.find_cl_file(self.folder)
        self.assertEqual(ctx.exception.code, 'legacy_no_cl')

    def test_missing_folder(self):
        """Test an unreadable folder is a read failure."""
        with self.assertRaises(LegacyReadFailed):
            discovery.find_cl_file(self.root / 'missing')


# ============ Import ============

class ImportLegacyClassTest(LegacyFolderMixin, TestCase):
    """Tests for the full folder import."""

    def setUp(self):
        super().setUp()
        self.write_class()

    def test_imports_roster(self):
        """Test the class and students are created in roster order."""
        result = import_legacy_class(self.folder)

        school_class = SchoolClass.objects.get(pk=result['classId'])
        self.assertEqual(school_class.name, '8D')
        self.assertEqual(result['studentsImported'], 3)
        ann, bob, cy = Student.objects.filter(school_class=school_class).order_by('sort_order')
        self.assertEqual(ann.birth_date, '2010-01-02')
        self.assertEqual(ann.student_no, '1001')
        self.assertFalse(cy.active)
        self.assertEqual(cy.mark_set_mask, '01')
        self.assertEqual(bob.sort_order, 1)

    def test_imports_mark_set_and_scores(self):
        """Test mark set settings, assessments and the score states."""
        result = import_legacy_class(self.folder)

        self.assertEqual(result['markSetsImported'], 1)
        self.assertEqual(result['assessmentsImported'], 2)
        self.assertEqual(result['scoresImported'], 6)
        self.assertEqual(result['importedMarkFiles'], ['MAT18D.Y25'])

        mark_set = MarkSet.objects.get(school_class_id=result['classId'])
        self.assertEqual(mark_set.code, 'MAT1')
        self.assertEqual(mark_set.full_code, 'MAT1-8D')
        self.assertEqual(mark_set.day, 'Mon')
        self.assertEqual(mark_set.weight_method, 1)
        self.assertEqual(mark_set.categories.count(), 2)

        unit = Assessment.objects.get(mark_set=mark_set, idx=0)
        states = [
            from_stored(s.status, s.raw_value)
            for s in Score.objects.filter(assessment=unit).order_by('student__sort_order')
        ]
        self.assertEqual(states, [ScoreState.scored(15), Zero, NoMark])
        zero = Score.objects.get(assessment=unit, student__sort_order=1)
        self.assertEqual(zero.raw_value, 0.0)

    def write_mark_file(self, last_student, unit_cells, quiz_cells):
        head = MARK_FILE.split('[LastStudent]', 1)[0]
        lines = [
            '[LastStudent]', str(last_student), '[Marks]', '2',
            '2024 9 15', '"Tests"', '"Unit 1"', '1', '0,1,75,20,15',
        ]
        lines += [f'0,{cell}' for cell in unit_cells]
        lines += ['2024 10 1', '"Quizzes"', '"Quiz 1"', '1', '1,1,80,10,8']
        lines += [f'0,{cell}' for cell in quiz_cells]
        self.write('MAT18D.Y25', head + '\n'.join(lines) + '\n')

    def imported_states(self, result, idx):
        scores = Score.objects.filter(
            assessment__mark_set__school_class_id=result['classId'], assessment__idx=idx
        ).order_by('student__sort_order')
        return [(s.student.sort_order, from_stored(s.status, s.raw_value)) for s in scores]

    def test_fewer_file_students_than_roster(self):
        """Test only the students the mark file declares receive scores."""
        self.write_mark_file(2, [15, -1], [8, 6])
        result = import_legacy_class(self.folder)

        self.assertEqual(result['studentsImported'], 3)
        self.assertEqual(result['scoresImported'], 4)
        self.assertEqual(self.imported_states(result, 0), [(0, ScoreState.scored(15)), (1, Zero)])
        self.assertEqual(self.imported_states(result, 1), [(0, ScoreState.scored(8)), (1, ScoreState.scored(6))])
        self.assertFalse(Score.objects.filter(student__sort_order=2).exists())

    def test_more_file_students_than_roster(self):
        """Test per-student columns beyond the roster are dropped."""
        self.write_mark_file(5, [15, -1, 0, 7, 9], [8, 6, 5, 4, 3])
        result = import_legacy_class(self.folder)

        self.assertEqual(result['studentsImported'], 3)
        self.assertEqual(result['scoresImported'], 6)
        self.assertEqual(
            self.imported_states(result, 0),
            [(0, ScoreState.scored(15)), (1, Zero), (2, NoMark)]
        )
        self.assertEqual(
            self.imported_states(result, 1),
            [(0, ScoreState.scored(8)), (1, ScoreState.scored(6)), (2, ScoreState.scored(5))]
        )

    def test_missing_mark_file_recorded(self):
        """Test a mark set without a mark file is listed and skipped."""
        result = import_legacy_class(self.folder)
        self.assertEqual(result['missingMarkFiles'], [{'code': 'SNC1', 'filePrefix': 'SNC18D'}])
        self.assertFalse(MarkSet.objects.filter(code='SNC1').exists())

    def test_imports_types_remarks_and_notes(self):
        """Test .TYP types, .RMK remarks and class notes land on their rows."""
        result = import_legacy_class(self.folder)

        types = list(
            Assessment.objects.filter(mark_set__school_class_id=result['classId'])
            .order_by('idx').values_list('legacy_type', flat=True)
        )
        self.assertEqual(types, [0, 1])
        absent = Score.objects.get(assessment__idx=0, student__sort_order=2)
        self.assertEqual(absent.remark, 'Absent')
        self.assertEqual(result['notesImported'], 2)
        note = StudentNote.objects.get(student__sort_order=1)
        self.assertEqual(note.note, 'Line one\nline two')

    def test_imports_attendance_and_seating(self):
        """Test attendance months, day codes and seat assignments."""
        result = import_legacy_class(self.folder)

        self.assertTrue(result['attendanceImported'])
        self.assertTrue(result['seatingImported'])
        settings = AttendanceSettings.objects.get(school_class_id=result['classId'])
        self.assertEqual(settings.school_year_start_month, 9)
        self.assertEqual(AttendanceMonth.objects.filter(school_class_id=result['classId']).count(), 12)
        codes = AttendanceStudentMonth.objects.get(student__sort_order=0, month=1)
        self.assertEqual(codes.day_codes, 'PPA')

        plan = SeatingPlan.objects.get(school_class_id=result['classId'])
        self.assertEqual(plan.blocked_mask, '0110')
        seats = list(SeatingAssignment.objects.values_list('student__sort_order', 'seat_code'))
        self.assertEqual(seats, [(0, 12)])

    def test_missing_companions_warn(self):
        """Test absent optional companions become warnings, not failures."""
        (self.folder / '8D.ATN').unlink()
        result = import_legacy_class(self.folder)

        codes = [w['code'] for w in result['warnings']]
        self.assertEqual(codes, [
            'legacy_missing_attendance_file',
            'legacy_missing_icc_file',
            'legacy_missing_tbk_file',
            'legacy_missing_all_idx_file',
        ])
        self.assertFalse(result['attendanceImported'])
        self.assertEqual(result['studentsImported'], 3)

    def test_corrupt_companion_rolls_back(self):
        """Test a malformed companion aborts the import with nothing written."""
        self.write('8D.ATN', attendance_file(with_start=False))

        with self.assertRaises(LegacyParseFailed) as ctx:
            import_legacy_class(self.folder)

        self.assertTrue(ctx.exception.details['path'].endswith('8D.ATN'))
        self.assertEqual(SchoolClass.objects.count(), 0)
        self.assertEqual(Student.objects.count(), 0)

    def test_no_class_list(self):
        """Test a folder without a CL file fails with legacy_no_cl."""
        (self.folder / 'CL8D.Y25').unlink()
        with self.assertRaises(LegacyNotFound):
            import_legacy_class(self.folder)

    def test_summary_over_imported_class(self):
        """Test an imported mark set feeds the aggregation engine."""
        result = import_legacy_class(self.folder)
        mark_set = MarkSet.objects.get(school_class_id=result['classId'])

        summary = compute_mark_set_summary(result['classId'], mark_set.id)

        finals = [r['finalMark'] for r in sorted(summary['perStudent'], key=lambda r: r['sortOrder'])]
        # Ann: Tests 75% * 60 + Quizzes 80% * 40
        self.assertEqual(finals, [77.0, 0.0, None])


class ImportCompanionsTest(LegacyFolderMixin, TestCase):
    """Tests for device codes, banks, comment sets and loaned items."""

    def setUp(self):
        super().setUp()
        self.write_class()
        self.write_companions()

    def test_device_codes(self):
        """Test each student gets the first non-empty subject code."""
        result = import_legacy_class(self.folder)

        self.assertEqual(result['deviceMappingsImported'], 3)
        codes = dict(StudentDeviceMap.objects.values_list('student__sort_order', 'device_code'))
        self.assertEqual(codes, {0: 'A1', 1: 'B2', 2: ''})
        raw = json.loads(StudentDeviceMap.objects.get(student__sort_order=0).raw_line)
        self.assertEqual(raw, {'subjectCount': 2, 'codes': ['', 'A1', '']})

    def test_comment_banks_from_parent_folder(self):
        """Test banks next to the class folder are imported with their entries."""
        result = import_legacy_class(self.folder)

        self.assertEqual(result['banksImported'], 1)
        bank = CommentBank.objects.get(short_name='GENERAL.BNK')
        self.assertEqual(bank.fit_profile, '1,10,60,3')
        self.assertEqual(bank.entries.count(), 2)

    def test_reimport_replaces_bank_entries(self):
        """Test importing twice keeps one bank with a fresh set of entries."""
        import_legacy_class(self.folder)
        import_legacy_class(self.folder)
        bank = CommentBank.objects.get(short_name='GENERAL.BNK')
        self.assertEqual(bank.entries.count(), 2)

    def test_comment_sets_and_combined_index(self):
        """Test mark set comment sets plus ALL! sets renumbered past existing ones."""
        result = import_legacy_class(self.folder)

        self.assertEqual(result['commentSetsImported'], 3)
        self.assertEqual(result['combinedCommentSetsImported'], 2)
        self.assertEqual(result['commentRemarksImported'], 2)
        sets = list(CommentSetIndex.objects.order_by('set_number').values_list('set_number', 'title'))
        self.assertEqual(sets, [(1, 'Term 1 Comments'), (2, 'Report Card'), (3, 'Learning Skills')])
        own = CommentSetIndex.objects.get(set_number=1)
        self.assertEqual(own.bank_short, 'GENERAL.BNK')
        remarks = list(
            CommentSetRemark.objects.filter(comment_set=own)
            .order_by('student__sort_order').values_list('remark', flat=True)
        )
        self.assertEqual(remarks, ['Works hard', 'Shows growth'])

    def test_loaned_items(self):
        """Test loans skip empty assignments and link to the mark set by file stem."""
        result = import_legacy_class(self.folder)

        self.assertEqual(result['loanedItemsImported'], 2)
        items = LoanedItem.objects.order_by('student__sort_order')
        self.assertEqual([i.notes for i in items], [None, 'worn cover'])
        self.assertEqual(items[0].mark_set.code, 'MAT1')
        self.assertEqual(items[0].quantity, 45.5)
        self.assertEqual(json.loads(items[1].raw_line)['itemId'], 'B-103')
        self.assertEqual(result['warnings'], [])


# ============ Surfaces ============

class LegacyImportViewTest(LegacyFolderMixin, TestCase):
    """Tests for the JSON import endpoint."""

    def setUp(self):
        super().setUp()
        self.client = Client()
        self.url = reverse('legacy:import_class')

    def post(self, payload):
        return self.client.post(self.url, data=json.dumps(payload), content_type='application/json')

    def test_import_ok(self):
        """Test a valid folder imports and returns the result."""
        self.write_class()
        response = self.post({'folder': str(self.folder)})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['ok'])
        self.assertEqual(body['result']['studentsImported'], 3)

    def test_missing_folder_param(self):
        """Test a body without a folder is a bad request."""
        response = self.post({})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error']['code'], 'bad_params')

    def test_invalid_json(self):
        """Test a non-JSON body is a bad request."""
        response = self.client.post(self.url, data='not json', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_no_class_list(self):
        """Test a folder without a CL file returns 404 legacy_no_cl."""
        response = self.post({'folder': str(self.folder)})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error']['code'], 'legacy_no_cl')

    def test_parse_failure(self):
        """Test a malformed file returns 422 with the path in details."""
        self.write_class()
        self.write('MAT18D.Y25', MARK_FILE.replace('[Marks]', '[Other]'))
        response = self.post({'folder': str(self.folder)})
        self.assertEqual(response.status_code, 422)
        self.assertIn('path', response.json()['error']['details'])

    def test_get_not_allowed(self):
        """Test the endpoint only accepts POST."""
        self.assertEqual(self.client.get(self.url).status_code, 405)

    def test_import_root_restriction(self):
        """Test folders outside LEGACY_IMPORT_ROOT are refused."""
        self.write_class()
        with override_settings(LEGACY_IMPORT_ROOT=str(self.root / 'other')):
            response = self.post({'folder': str(self.folder)})
        self.assertEqual(response.status_code, 400)

    def test_import_root_relative_folder(self):
        """Test relative folders resolve against LEGACY_IMPORT_ROOT."""
        self.write_class()
        with override_settings(LEGACY_IMPORT_ROOT=str(self.root)):
            response = self.post({'folder': '8D'})
        self.assertEqual(response.status_code, 200)


class ImportTaskTest(LegacyFolderMixin, TestCase):
    """Tests for the Celery import task run eagerly."""

    def test_task_success(self):
        """Test the task returns the import result."""
        self.write_class()
        outcome = import_legacy_class_task(str(self.folder))
        self.assertTrue(outcome['ok'])
        self.assertEqual(outcome['result']['markSetsImported'], 1)

    def test_task_reports_error(self):
        """Test a failed import is reported as a structured error."""
        outcome = import_legacy_class_task(str(self.folder))
        self.assertFalse(outcome['ok'])
        self.assertEqual(outcome['error']['code'], 'legacy_no_cl')
