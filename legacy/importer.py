"""
Import a legacy class folder into the markbook models.

An import runs in two phases. First every file is discovered and decoded,
so a malformed file aborts the import before anything is written. Then all
records are stored inside one transaction.atomic() block; any database
failure rolls the whole class back.

Only the class list is mandatory. Mark sets without a mark file are listed
in missingMarkFiles; missing attendance, seating, device code, loaned item
and combined comment index files are reported as warnings.
"""
import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from django.db import DatabaseError, transaction

from core.errors import MarkbookError, StoreError
from markbook import config as markbook_config
from markbook.models import (
    AttendanceMonth, AttendanceSettings, AttendanceStudentMonth, Assessment,
    Category, CommentBank, CommentBankEntry, CommentSetIndex, CommentSetRemark,
    LoanedItem, MarkSet, SchoolClass, Score, SeatingAssignment, SeatingPlan,
    Student, StudentDeviceMap, StudentNote,
)
from markbook.scores import to_stored
from . import decoders, discovery
from .records import ClassList, CommentIndex, MarkFile, MarkSetDef, RemarkMatrix

logger = logging.getLogger(__name__)

WARN_MISSING_ATTENDANCE = 'legacy_missing_attendance_file'
WARN_MISSING_SEATING = 'legacy_missing_seating_file'
WARN_MISSING_ICC = 'legacy_missing_icc_file'
WARN_MISSING_TBK = 'legacy_missing_tbk_file'
WARN_MISSING_ALL_IDX = 'legacy_missing_all_idx_file'


@contextmanager
def _store(table, code='db_insert_failed'):
    try:
        yield
    except DatabaseError as e:
        raise StoreError.wrap(e, code=code, table=table)


# ========== Decoded folder ==========

@dataclass
class CommentSetFiles:
    """A comment index plus the decoded .R<n> remarks for each of its sets."""
    index: CommentIndex
    remarks: Dict[int, List[str]] = field(default_factory=dict)


@dataclass
class DecodedMarkSet:
    definition: MarkSetDef
    path: Path
    mark_file: MarkFile
    types: Optional[List[int]] = None
    remarks: Optional[RemarkMatrix] = None
    comments: Optional[CommentSetFiles] = None


@dataclass
class DecodedFolder:
    folder: Path
    cl_file: Path
    class_list: ClassList
    notes: Optional[List[str]] = None
    attendance: object = None
    seating: object = None
    device_codes: object = None
    banks: list = field(default_factory=list)  # (path, CommentBankFile)
    mark_sets: List[DecodedMarkSet] = field(default_factory=list)
    missing_mark_files: list = field(default_factory=list)
    loans: list = field(default_factory=list)  # (path, LoanFile)
    combined_comments: Optional[CommentSetFiles] = None
    warnings: list = field(default_factory=list)

    def warn(self, code):
        logger.warning(f"{self.folder}: {code}")
        self.warnings.append({'code': code, 'folder': str(self.folder)})


def _decode_comment_sets(idx_file):
    index = decoders.decode_idx_file(idx_file)
    files = CommentSetFiles(index=index)
    for comment_set in index.sets:
        r_file = discovery.companion(idx_file, f'R{comment_set.set_number}')
        if r_file is not None:
            files.remarks[comment_set.set_number] = decoders.decode_r_comment_file(r_file)
    return files


def decode_folder(folder):
    """
    Discover and decode every legacy file of a class folder.

    Raises:
        LegacyNotFound: the folder has no class list
        LegacyParseFailed: a file that exists is malformed
        LegacyReadFailed: the folder or a file cannot be read
    """
    folder = Path(folder)
    cl_file = discovery.find_cl_file(folder)
    decoded = DecodedFolder(folder=folder, cl_file=cl_file, class_list=decoders.decode_class_list(cl_file))

    note_file = discovery.find_note_file(folder)
    if note_file is not None:
        decoded.notes = decoders.decode_note_file(note_file)

    attendance_file = discovery.find_attendance_file(folder)
    if attendance_file is None:
        decoded.warn(WARN_MISSING_ATTENDANCE)
    else:
        decoded.attendance = decoders.decode_attendance_file(attendance_file)

    seating_file = discovery.find_seating_file(folder)
    if seating_file is None:
        decoded.warn(WARN_MISSING_SEATING)
    else:
        decoded.seating = decoders.decode_seating_file(seating_file)

    icc_file = discovery.find_icc_file(folder)
    if icc_file is None:
        decoded.warn(WARN_MISSING_ICC)
    else:
        decoded.device_codes = decoders.decode_icc_file(icc_file)

    # Comment banks are shared by every class and live one level up.
    bank_folder = folder.parent if folder.parent != folder else folder
    for bnk_file in discovery.find_bnk_files(bank_folder):
        decoded.banks.append((bnk_file, decoders.decode_bnk_file(bnk_file)))

    for definition in decoded.class_list.mark_sets:
        mark_path = discovery.find_mark_file(folder, definition.file_prefix)
        if mark_path is None:
            logger.warning(f"{folder}: no mark file for {definition.code} ({definition.file_prefix})")
            decoded.missing_mark_files.append({'code': definition.code, 'filePrefix': definition.file_prefix})
            continue
        mark_set = DecodedMarkSet(
            definition=definition,
            path=mark_path,
            mark_file=decoders.decode_mark_file(mark_path),
        )
        typ_file = discovery.companion(mark_path, 'TYP')
        if typ_file is not None:
            mark_set.types = decoders.decode_typ_file(typ_file)
        rmk_file = discovery.companion(mark_path, 'RMK')
        if rmk_file is not None:
            mark_set.remarks = decoders.decode_rmk_file(rmk_file)
        idx_file = discovery.companion(mark_path, 'IDX')
        if idx_file is not None:
            mark_set.comments = _decode_comment_sets(idx_file)
        decoded.mark_sets.append(mark_set)

    tbk_files = discovery.find_tbk_files(folder)
    if not tbk_files:
        decoded.warn(WARN_MISSING_TBK)
    for tbk_file in tbk_files:
        decoded.loans.append((tbk_file, decoders.decode_tbk_file(tbk_file)))

    all_idx_file = discovery.find_all_idx_file(folder)
    if all_idx_file is None:
        decoded.warn(WARN_MISSING_ALL_IDX)
    else:
        decoded.combined_comments = _decode_comment_sets(all_idx_file)

    return decoded


# ========== Storage ==========

def _blank_to_none(value):
    value = (value or '').strip()
    return value or None


class LegacyClassImporter:
    """
    Writes a DecodedFolder into the database.

    Per-student values are matched to students by roster ordinal and
    truncated to the shorter of the two lists.
    """

    def __init__(self, decoded):
        self.decoded = decoded
        self.school_class = None
        self.students = []
        self.mark_set_by_stem = {}
        self.counts = {
            'studentsImported': 0,
            'notesImported': 0,
            'markSetsImported': 0,
            'assessmentsImported': 0,
            'scoresImported': 0,
            'deviceMappingsImported': 0,
            'banksImported': 0,
            'commentSetsImported': 0,
            'commentRemarksImported': 0,
            'loanedItemsImported': 0,
            'combinedCommentSetsImported': 0,
        }
        self.attendance_imported = False
        self.seating_imported = False
        self.imported_mark_files = []

    def _per_student(self, values, limit=None):
        """Pair roster students with positional values, truncated to the shorter side."""
        count = min(len(self.students), len(values))
        if limit is not None:
            count = min(count, limit)
        return zip(self.students[:count], values[:count])

    def run(self):
        decoded = self.decoded
        with transaction.atomic():
            self._store_class()
            if decoded.notes is not None:
                self._store_notes(decoded.notes)
            if decoded.attendance is not None:
                self._store_attendance(decoded.attendance)
            if decoded.seating is not None:
                self._store_seating(decoded.seating)
            if decoded.device_codes is not None:
                self._store_device_codes(decoded.device_codes)
            for path, bank in decoded.banks:
                self._store_bank(path, bank)
            for mark_set in decoded.mark_sets:
                self._store_mark_set(mark_set)
            for path, loans in decoded.loans:
                self._store_loans(path, loans)
            if decoded.combined_comments is not None:
                self._store_combined_comments(decoded.combined_comments)
        return self.result()

    def result(self):
        return {
            'classId': str(self.school_class.id),
            'name': self.school_class.name,
            **self.counts,
            'attendanceImported': self.attendance_imported,
            'seatingImported': self.seating_imported,
            'sourceClFile': str(self.decoded.cl_file),
            'importedMarkFiles': self.imported_mark_files,
            'missingMarkFiles': self.decoded.missing_mark_files,
            'warnings': self.decoded.warnings,
        }

    # ---------- Roster ----------

    def _store_class(self):
        class_list = self.decoded.class_list
        with _store('markbook_class'):
            self.school_class = SchoolClass.objects.create(
                name=class_list.class_name,
                source_folder=str(self.decoded.folder),
            )
        students = [
            Student(
                school_class=self.school_class,
                last_name=s.last_name,
                first_name=s.first_name,
                student_no=s.student_no or '',
                birth_date=s.birth_date or '',
                active=s.active,
                sort_order=sort_order,
                mark_set_mask=s.mark_set_mask or markbook_config.DEFAULT_STUDENT_MASK,
                raw_line=s.raw_line,
            )
            for sort_order, s in enumerate(class_list.students)
        ]
        with _store('markbook_student'):
            self.students = Student.objects.bulk_create(students)
        self.counts['studentsImported'] = len(self.students)

    def _store_notes(self, notes):
        rows = [
            StudentNote(school_class=self.school_class, student=student, note=note.strip())
            for student, note in self._per_student(notes)
            if note.strip()
        ]
        with _store('markbook_student_note'):
            StudentNote.objects.bulk_create(rows)
        self.counts['notesImported'] = len(rows)

    # ---------- Attendance, seating, devices ----------

    def _store_attendance(self, attendance):
        with _store('markbook_attendance_settings'):
            AttendanceSettings.objects.update_or_create(
                school_class=self.school_class,
                defaults={'school_year_start_month': attendance.school_year_start_month},
            )
        months = []
        student_months = []
        for month in attendance.months:
            months.append(AttendanceMonth(
                school_class=self.school_class,
                month=month.month,
                type_of_day_codes=month.type_of_day_codes,
            ))
            for student, codes in self._per_student(month.student_day_codes):
                student_months.append(AttendanceStudentMonth(
                    school_class=self.school_class,
                    student=student,
                    month=month.month,
                    day_codes=codes,
                ))
        with _store('markbook_attendance_month'):
            AttendanceMonth.objects.bulk_create(months)
        with _store('markbook_attendance_student_month'):
            AttendanceStudentMonth.objects.bulk_create(student_months)
        self.attendance_imported = True

    def _store_seating(self, seating):
        with _store('markbook_seating_plan'):
            SeatingPlan.objects.update_or_create(
                school_class=self.school_class,
                defaults={
                    'rows': max(seating.rows, 0),
                    'seats_per_row': max(seating.seats_per_row, 0),
                    'blocked_mask': seating.blocked_mask,
                },
            )
        assignments = [
            SeatingAssignment(school_class=self.school_class, student=student, seat_code=seat)
            for student, seat in self._per_student(seating.seat_codes)
            if seat > 0
        ]
        with _store('markbook_seating_assignment'):
            SeatingAssignment.objects.bulk_create(assignments)
        self.seating_imported = True

    def _store_device_codes(self, device_codes):
        rows = []
        for ordinal, student in enumerate(self.students[:device_codes.last_student]):
            codes = device_codes.student_row(ordinal)
            primary = next((c.strip() for c in codes[1:] if c.strip()), '')
            rows.append(StudentDeviceMap(
                school_class=self.school_class,
                student=student,
                device_code=primary,
                raw_line=json.dumps({'subjectCount': device_codes.subject_count, 'codes': codes}),
            ))
        with _store('markbook_student_device_map'):
            StudentDeviceMap.objects.bulk_create(rows)
        self.counts['deviceMappingsImported'] = len(rows)

    # ---------- Comment banks ----------

    def _store_bank(self, path, bank):
        with _store('markbook_comment_bank'):
            record, _ = CommentBank.objects.update_or_create(
                short_name=path.name,
                defaults={'fit_profile': bank.fit_profile, 'source_path': str(path)},
            )
        with _store('markbook_comment_bank_entry', code='db_delete_failed'):
            record.entries.all().delete()
        with _store('markbook_comment_bank_entry'):
            CommentBankEntry.objects.bulk_create([
                CommentBankEntry(
                    bank=record,
                    sort_order=sort_order,
                    type_code=entry.type_code,
                    level_code=entry.level_code,
                    text=entry.text,
                )
                for sort_order, entry in enumerate(bank.entries)
            ])
        self.counts['banksImported'] += 1

    # ---------- Mark sets ----------

    def _store_mark_set(self, decoded):
        definition = decoded.definition
        parsed = decoded.mark_file
        misc = parsed.misc
        with _store('markbook_mark_set'):
            mark_set = MarkSet.objects.create(
                school_class=self.school_class,
                code=definition.code,
                file_prefix=definition.file_prefix,
                description=definition.description,
                weight=definition.weight,
                source_filename=decoded.path.name,
                sort_order=definition.sort_order,
                full_code=_blank_to_none(misc.full_code) if misc else None,
                room=_blank_to_none(misc.room) if misc else None,
                day=_blank_to_none(misc.day) if misc else None,
                period=_blank_to_none(misc.period) if misc else None,
                weight_method=misc.weight_method if misc else 1,
                calc_method=misc.calc_method if misc else 0,
            )
        self.mark_set_by_stem[decoded.path.stem.upper()] = mark_set

        with _store('markbook_category'):
            Category.objects.bulk_create([
                Category(mark_set=mark_set, name=c.name, weight=c.weight, sort_order=i)
                for i, c in enumerate(parsed.categories)
            ])

        types = decoded.types or []
        assessments = [
            Assessment(
                mark_set=mark_set,
                idx=a.idx,
                date=a.date,
                category_name=a.category_name,
                title=a.title,
                term=a.term,
                legacy_kind=a.legacy_kind,
                legacy_type=types[a.idx] if a.idx < len(types) else None,
                weight=a.weight,
                out_of=a.out_of,
                avg_percent=a.avg_percent,
                avg_raw=a.avg_raw,
            )
            for a in parsed.assessments
        ]
        with _store('markbook_assessment'):
            assessments = Assessment.objects.bulk_create(assessments)

        remarks = decoded.remarks
        scores = []
        for assessment, parsed_assessment in zip(assessments, parsed.assessments):
            entry_remarks = []
            if remarks is not None and assessment.idx < len(remarks.remarks_by_entry):
                entry_remarks = remarks.remarks_by_entry[assessment.idx][:remarks.last_student]
            for ordinal, (student, state) in enumerate(
                    self._per_student(parsed_assessment.raw_scores, parsed.last_student)):
                status, raw_value = to_stored(state)
                remark = entry_remarks[ordinal].strip() if ordinal < len(entry_remarks) else ''
                scores.append(Score(
                    assessment=assessment,
                    student=student,
                    status=status,
                    raw_value=raw_value,
                    remark=remark,
                ))
        with _store('markbook_score'):
            Score.objects.bulk_create(scores)

        if decoded.comments is not None:
            self._store_comment_sets(mark_set, decoded.comments)

        self.counts['markSetsImported'] += 1
        self.counts['assessmentsImported'] += len(assessments)
        self.counts['scoresImported'] += len(scores)
        self.imported_mark_files.append(decoded.path.name)
        logger.info(
            f"Imported mark set {mark_set.code}: {len(assessments)} assessments, {len(scores)} scores"
        )

    # ---------- Comment sets ----------

    def _create_comment_set(self, mark_set, comment_set, set_number, bank_short, remarks):
        with _store('markbook_comment_set_index'):
            index = CommentSetIndex.objects.create(
                school_class=self.school_class,
                mark_set=mark_set,
                set_number=set_number,
                title=comment_set.title,
                fit_mode=comment_set.fit_mode,
                fit_font_size=comment_set.fit_font_size,
                fit_width=comment_set.fit_width,
                fit_lines=comment_set.fit_lines,
                fit_subj=comment_set.fit_subj,
                max_chars=comment_set.max_chars,
                is_default=comment_set.is_default,
                bank_short=_blank_to_none(comment_set.bank_short or bank_short),
            )
        rows = [
            CommentSetRemark(comment_set=index, student=student, remark=remark.strip())
            for student, remark in self._per_student(remarks or [])
            if remark.strip()
        ]
        with _store('markbook_comment_set_remark'):
            CommentSetRemark.objects.bulk_create(rows)
        self.counts['commentSetsImported'] += 1
        self.counts['commentRemarksImported'] += len(rows)

    def _store_comment_sets(self, mark_set, files):
        for comment_set in files.index.sets:
            self._create_comment_set(
                mark_set,
                comment_set,
                comment_set.set_number,
                files.index.bank_short,
                files.remarks.get(comment_set.set_number),
            )

    def _store_combined_comments(self, files):
        """
        Add the class-wide ALL!*.IDX sets to every imported mark set.

        A set number already used by the mark set's own index moves to the
        next free number.
        """
        mark_sets = sorted(self.mark_set_by_stem.values(), key=lambda m: str(m.id))
        for mark_set in mark_sets:
            with _store('markbook_comment_set_index', code='db_query_failed'):
                used = set(mark_set.comment_sets.values_list('set_number', flat=True))
            for comment_set in files.index.sets:
                set_number = comment_set.set_number
                if set_number in used:
                    set_number = max(used) + 1
                used.add(set_number)
                self._create_comment_set(
                    mark_set,
                    comment_set,
                    set_number,
                    files.index.bank_short,
                    files.remarks.get(comment_set.set_number),
                )
                self.counts['combinedCommentSetsImported'] += 1

    # ---------- Loaned items ----------

    def _store_loans(self, path, loans):
        mark_set = self.mark_set_by_stem.get(path.stem.upper())
        rows = []
        for item in loans.items:
            for student, assignment in self._per_student(item.assignments, loans.last_student):
                item_id = assignment.item_id.strip()
                note = assignment.note.strip()
                if not item_id and not note:
                    continue
                rows.append(LoanedItem(
                    school_class=self.school_class,
                    student=student,
                    mark_set=mark_set,
                    item_name=item.title,
                    quantity=item.cost,
                    notes=note or None,
                    raw_line=json.dumps({
                        'title': item.title,
                        'publisher': item.publisher,
                        'cost': item.cost,
                        'itemId': item_id,
                        'note': note,
                    }),
                ))
        with _store('markbook_loaned_item'):
            LoanedItem.objects.bulk_create(rows)
        self.counts['loanedItemsImported'] += len(rows)


def import_legacy_class(folder):
    """
    Import one legacy class folder as a new class.

    Args:
        folder: Path to the folder holding the CL*.Y?? file and its companions

    Returns:
        dict with the new classId, per-kind import counts, the mark files
        imported or missing and any warnings

    Raises:
        LegacyNotFound: no class list in the folder
        LegacyParseFailed: a present file is malformed; nothing is written
        LegacyReadFailed: the folder or a file cannot be read
        StoreError: a database write failed; the import is rolled back
    """
    logger.info(f"Importing legacy class folder {folder}")
    try:
        decoded = decode_folder(folder)
        result = LegacyClassImporter(decoded).run()
    except MarkbookError as e:
        logger.error(f"Legacy import of {folder} failed: {e}")
        raise
    logger.info(
        f"Imported class {result['name']} ({result['classId']}): "
        f"{result['studentsImported']} students, {result['markSetsImported']} mark sets, "
        f"{result['scoresImported']} scores, {len(result['warnings'])} warnings"
    )
    return result
