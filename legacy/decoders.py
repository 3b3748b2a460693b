"""
Decoders for the legacy markbook file family.

Each decode_* function takes a path and returns a record from
legacy.records, or raises LegacyParseFailed carrying the path. Decoders
never touch the database and never search the filesystem.

Files shorter than their declared student count are padded: missing
per-student values become NoMark, 0 or '' depending on the column. Counts
and section headers are structural; a bad or missing one is a parse
failure.
"""
import logging

from core.errors import LegacyParseFailed
from markbook.scores import NoMark, decode_raw
from . import config
from .records import (
    Attendance, AttendanceMonthRecord, BankEntry, ClassList, CommentBankFile,
    CommentIndex, CommentSetDef, DeviceCodes, ExportBlock, ExportFile,
    LegacyAssessment, LegacyCategory, LoanAssignment, LoanFile, LoanItem,
    MarkFile, MarkSetDef, MiscInfo, RemarkMatrix, RosterStudent, Seating,
)
from .text import (
    LineCursor, csv_quote, find_line_containing, find_section, parse_count,
    parse_csv_fields, parse_csv_ints, parse_csv_numbers, parse_date_ymd,
    parse_float, parse_int, read_lines, strip_quotes,
)

logger = logging.getLogger(__name__)

MARK_SETS_SECTION = 'Mark Sets created for this class'
GENERAL_SECTION = 'General Information'
CLASS_LIST_SECTION = 'Class List'

ATTENDANCE_DATA_SECTION = 'Attendance Data - DO NOT EDIT!!!'
LOANED_ITEMS_MARKER = '[loaned items data - do not edit'
IDX_OWNER_MARKER = 'this comment index file belongs'

DEFAULT_FIT = (0, 8, 50, 1)
MIN_COMMENT_CHARS = 100
FIT_LINE_PREFIX = 'Please DO NOT EDIT or DELETE this line: '


# ========== Class list ==========

def parse_mark_set_mask(token):
    """
    Normalize the enrollment mask token ending a roster line.

    Only 'TBA' or a run of 0/1 flags is recognised; anything else is None.
    """
    token = token.strip().upper()
    if not token:
        return None
    if token == 'TBA' or all(ch in '01' for ch in token):
        return token
    return None


def parse_mark_set_def(line, sort_order):
    """'PREFIX&CODE,Description,Weight' -> MarkSetDef, or None for short lines."""
    parts = [p.strip() for p in line.split(',')]
    if len(parts) < 3:
        return None
    prefix = code = parts[0]
    if '&' in parts[0]:
        prefix, code = (p.strip() for p in parts[0].split('&', 1))
    return MarkSetDef(
        file_prefix=prefix,
        code=code,
        description=parts[1],
        weight=parse_float(parts[2], 0.0),
        sort_order=sort_order,
    )


def parse_roster_line(line, ordinal=0):
    """One Class List line -> RosterStudent, or None when it has fewer than four fields."""
    parts = [p.strip() for p in line.split(',')]
    if len(parts) < 4:
        return None
    return RosterStudent(
        active=parse_int(parts[0], 1) != 0,
        last_name=parts[1],
        first_name=parts[2],
        student_no=parts[4] if len(parts) > 4 and parts[4] else None,
        birth_date=parts[9] if len(parts) > 9 and parts[9] else None,
        mark_set_mask=parse_mark_set_mask(parts[-1]),
        raw_line=line.strip(),
        ordinal=ordinal,
    )


def decode_class_list(path):
    """
    Decode a CL*.Y?? class file: class name, mark set definitions and roster.

    Both counted sections read their count from the first integer line and
    ignore anything past it. The class name is the third General
    Information value.
    """
    section = None
    general = []
    expected_sets = None
    mark_sets = []
    expected_students = None
    students = []

    for raw in read_lines(path):
        line = raw.strip()
        if not line:
            continue
        if len(line) >= 2 and line.startswith('[') and line.endswith(']'):
            section = line[1:-1]
            continue

        if section == MARK_SETS_SECTION:
            if expected_sets is None:
                expected_sets = parse_count(strip_quotes(line))
                continue
            if len(mark_sets) >= expected_sets:
                continue
            value = strip_quotes(line)
            if not value:
                continue
            definition = parse_mark_set_def(value, len(mark_sets))
            if definition is not None:
                mark_sets.append(definition)

        elif section == GENERAL_SECTION:
            value = strip_quotes(line)
            if value:
                general.append(value)

        elif section == CLASS_LIST_SECTION:
            if expected_students is None:
                expected_students = parse_count(strip_quotes(line))
                continue
            if len(students) >= expected_students or line == '""':
                continue
            student = parse_roster_line(raw, ordinal=len(students))
            if student is not None:
                students.append(student)

    class_name = general[2] if len(general) > 2 else config.DEFAULT_CLASS_NAME
    logger.debug(f"{path}: {len(students)} students, {len(mark_sets)} mark sets")
    return ClassList(class_name=class_name, mark_sets=mark_sets, students=students)


# ========== Mark file ==========

def _decode_misc(lines, path):
    cursor = LineCursor.at_section(lines, path, 'Misc Info', required=False)
    if cursor is None:
        return None
    full_code = cursor.next_keep_empty() or ''
    room = cursor.next_keep_empty() or ''
    day = cursor.next_keep_empty() or ''
    period = cursor.next_keep_empty() or ''
    weight_method = parse_int(cursor.next_keep_empty(), 1)
    legacy_serial = parse_float(cursor.next_keep_empty())
    calc_method = parse_int(cursor.next_keep_empty(), 0)
    return MiscInfo(
        full_code=full_code,
        room=room,
        day=day,
        period=period,
        weight_method=weight_method,
        legacy_serial=legacy_serial,
        calc_method=calc_method,
    )


def _decode_assessment(cursor, idx, last_student):
    date_line = cursor.require_non_noise('date')
    date = parse_date_ymd(date_line)
    if date is None:
        raise cursor.fail(f"bad date line: {date_line}")
    category_name = cursor.require_non_noise('category')
    title = cursor.require_non_noise('title')
    term = parse_int(cursor.require_non_noise('term'), 0)
    summary_line = cursor.require_non_noise('summary')
    summary = parse_csv_numbers(summary_line, 5)
    if summary is None:
        raise cursor.fail(f"bad summary line: {summary_line}")

    raw_scores = []
    for _ in range(last_student):
        line = cursor.next_non_noise()
        if line is None:
            raw_scores.append(NoMark)
            continue
        nums = parse_csv_numbers(line, 2)
        if nums is None:
            raise cursor.fail(f"bad student mark line: {line}")
        raw_scores.append(decode_raw(nums[1]))

    kind, weight, avg_percent, out_of, avg_raw = summary
    return LegacyAssessment(
        idx=idx,
        date=date,
        category_name=category_name,
        title=title,
        term=term,
        legacy_kind=int(kind),
        weight=weight,
        avg_percent=avg_percent,
        out_of=out_of,
        avg_raw=avg_raw,
        raw_scores=raw_scores,
    )


def decode_mark_file(path):
    """
    Decode a mark file (<prefix>*.Ydd).

    Layout: optional [Misc Info] block of positional values, [Categories]
    with a count and name,weight lines, [LastStudent] with the student
    column count, and [Marks] with a count followed by one block per
    assessment: date, category, title, term, a five-number summary line
    (kind, weight, average percent, out of, average raw) and one line per
    student whose second number is the raw mark.
    """
    lines = read_lines(path)
    misc = _decode_misc(lines, path)

    cursor = LineCursor.at_section(lines, path, 'Categories')
    categories = []
    for _ in range(cursor.require_count('category count')):
        line = cursor.require_non_noise('category')
        parts = [p.strip() for p in line.split(',')]
        if len(parts) < 2:
            raise cursor.fail(f"bad category line: {line}")
        categories.append(LegacyCategory(name=parts[0], weight=parse_float(parts[1], 0.0)))

    last_student = LineCursor.at_section(lines, path, 'LastStudent').require_count('last student')

    cursor = LineCursor.at_section(lines, path, 'Marks')
    assessments = [
        _decode_assessment(cursor, idx, last_student)
        for idx in range(cursor.require_count('marks count'))
    ]

    return MarkFile(
        misc=misc,
        categories=categories,
        last_student=last_student,
        assessments=assessments,
    )


def decode_typ_file(path):
    """Assessment type codes (.TYP), one per assessment index."""
    cursor = LineCursor.at_section(read_lines(path), path, 'Last Entry')
    count = cursor.require_count('last entry count')
    return [parse_int(cursor.next_non_noise(), 0) for _ in range(count)]


def decode_rmk_file(path):
    """
    Per-assessment, per-student remarks (.RMK).

    Each entry is a title followed by last_student + 1 lines; the first is a
    placeholder row and is dropped.
    """
    cursor = LineCursor.at_section(read_lines(path), path, 'LastStudent - Last Entry')
    line = cursor.require_non_noise('last student/entry line')
    parts = line.split(',')
    if len(parts) < 2:
        raise cursor.fail(f"bad last student/entry line: {line}")
    last_student = parse_count(parts[0]) or 0
    last_entry = parse_count(parts[1]) or 0

    remarks_by_entry = []
    for _ in range(last_entry):
        cursor.require_non_noise('remark title')
        cursor.next_keep_empty()
        remarks_by_entry.append([cursor.next_keep_empty() or '' for _ in range(last_student)])

    return RemarkMatrix(
        last_student=last_student,
        last_entry=last_entry,
        remarks_by_entry=remarks_by_entry,
    )


# ========== Quoted comment files ==========

def _decode_comments(path):
    cursor = LineCursor.at_section(read_lines(path), path, 'Comments')
    count = cursor.require_count('comment count')
    out = []
    for _ in range(count):
        block = cursor.read_quoted_block()
        out.append(block if block is not None else '')
    return out


def decode_note_file(path):
    """Class notes (*NOTE.TXT): one quoted, possibly multi-line note per student."""
    return _decode_comments(path)


def decode_r_comment_file(path):
    """Comment set remarks (.R<n>): one quoted remark per student."""
    return _decode_comments(path)


def decode_idx_file(path):
    """
    Comment set index (.IDX or ALL!*.IDX).

    Two layouts exist. The old one starts with the set count, then the
    default set and one title per set. The current one follows an owner
    line and adds a fit line (mode, font size, width, lines), a subject line
    and a bank line per set, plus an optional per-set max characters section.
    """
    lines = read_lines(path)
    if not lines:
        raise LegacyParseFailed('empty IDX file', path)

    probe = LineCursor(lines, path)
    old_count = parse_count(probe.next_non_noise() or '')
    if old_count is not None:
        default_set = parse_count(probe.next_non_noise() or '')
        if default_set is None:
            default_set = 1
        sets = []
        for n in range(1, old_count + 1):
            title = probe.next_non_noise() or f'Set {n}'
            sets.append(CommentSetDef(set_number=n, title=title, is_default=n == default_set))
        return CommentIndex(sets=sets)

    owner = find_line_containing(lines, IDX_OWNER_MARKER)
    if owner is None:
        raise LegacyParseFailed('unable to locate IDX owner section', path)
    cursor = LineCursor(lines, path, owner + 1)
    cursor.require_non_noise('IDX folder/class line')
    cursor.next_non_noise()  # fit max letters
    count = parse_count(cursor.next_non_noise() or '')
    if count is None:
        raise cursor.fail('missing IDX set count')
    default_set = parse_count(cursor.next_non_noise() or '')
    if default_set is None:
        default_set = 1
    default_set = min(max(default_set, 1), max(count, 1))

    bank_short = None
    sets = []
    for n in range(1, count + 1):
        title = cursor.next_non_noise() or f'Set {n}'
        fit = parse_csv_ints(cursor.next_non_noise() or '', 4) or DEFAULT_FIT
        fit_subj = cursor.next_keep_empty() or ''
        bank_line = (cursor.next_keep_empty() or '').strip()
        if n == 1 and bank_line:
            bank_short = bank_line
        sets.append(CommentSetDef(
            set_number=n,
            title=title,
            fit_mode=fit[0],
            fit_font_size=fit[1],
            fit_width=fit[2],
            fit_lines=fit[3],
            fit_subj=fit_subj,
            is_default=n == default_set,
            bank_short=bank_short if n == 1 else None,
        ))

    max_chars = LineCursor.at_section(lines, path, 'Max Characters for each Comment Set', required=False)
    if max_chars is not None:
        for comment_set in sets:
            value = parse_int(max_chars.next_non_noise())
            if value is not None:
                comment_set.max_chars = max(value, MIN_COMMENT_CHARS)

    return CommentIndex(sets=sets, bank_short=bank_short)


# ========== Attendance and seating ==========

def decode_attendance_file(path):
    """
    Attendance (.ATN): school year start month and twelve month blocks.

    Each month block is a label, the type-of-day code string and one day
    code string per student. Months are counted from the school year start.
    """
    lines = read_lines(path)
    last_student = LineCursor.at_section(lines, path, 'LastStudent').require_count('last student')

    start = LineCursor.at_section(lines, path, 'School Year Starts')
    start_month = parse_int(start.next_non_noise(), config.SCHOOL_YEAR_START_MONTH)

    cursor = LineCursor.at_section(lines, path, ATTENDANCE_DATA_SECTION)
    months = []
    for month in range(1, 13):
        label = cursor.require_non_noise(f'month label {month}')
        type_of_day = cursor.next_keep_empty() or ''
        day_codes = [cursor.next_keep_empty() or '' for _ in range(last_student)]
        months.append(AttendanceMonthRecord(
            month=month,
            label=label,
            type_of_day_codes=type_of_day,
            student_day_codes=day_codes,
        ))
    return Attendance(school_year_start_month=start_month, months=months)


def decode_seating_file(path):
    """Seating plan (.SPL): grid size, blocked seat mask and one seat code per student."""
    lines = read_lines(path)
    cursor = LineCursor.at_section(lines, path, 'Number of Rows / Seats per Row')
    line = cursor.require_non_noise('rows/seats line')
    size = parse_csv_ints(line, 2)
    if size is None:
        raise cursor.fail(f"bad rows/seats line: {line}")

    cursor = LineCursor.at_section(lines, path, 'LastStudent')
    last_student = cursor.require_count('last student')
    blocked = ''.join('1' if ch == '1' else '0' for ch in cursor.next_keep_empty() or '')
    seat_codes = [parse_int(cursor.next_non_noise(), 0) for _ in range(last_student)]

    return Seating(rows=size[0], seats_per_row=size[1], blocked_mask=blocked, seat_codes=seat_codes)


# ========== Device codes ==========

def decode_icc_file(path):
    """
    Device code matrix (.ICC).

    The header line is 'last_student,subject_count'; the remaining fields
    fill (last_student + 1) rows of (subject_count + 1) codes, row by row.
    """
    lines = [line.strip() for line in read_lines(path)]
    body = [line for line in lines if line]
    if not body:
        raise LegacyParseFailed('missing ICC header line', path)

    header = parse_csv_fields(body[0])
    if len(header) < 2:
        raise LegacyParseFailed('bad ICC header line', path)
    last_student = parse_count(header[0])
    subject_count = parse_count(header[1])
    if last_student is None:
        raise LegacyParseFailed('bad ICC student count', path)
    if subject_count is None:
        raise LegacyParseFailed('bad ICC subject count', path)

    tokens = [field for line in body[1:] for field in parse_csv_fields(line)]
    width = subject_count + 1
    expected = (last_student + 1) * width
    tokens.extend([''] * (expected - len(tokens)))
    codes = [tokens[row * width:(row + 1) * width] for row in range(last_student + 1)]

    return DeviceCodes(last_student=last_student, subject_count=subject_count, codes=codes)


# ========== Comment banks ==========

def _fit_token(value):
    return ''.join(ch for ch in value if ch.isascii() and ch.isalnum()).upper()


def is_fit_sentinel(type_code, level_code):
    return _fit_token(type_code) == 'FIT' and _fit_token(level_code) == 'FIT'


def extract_fit_profile(text):
    text = text.strip()
    if ':' in text:
        text = text.split(':', 1)[1].strip()
    return text or None


def decode_bnk_file(path):
    """
    Comment bank (.BNK): quoted type,level,text rows.

    A row whose type and level both read FIT carries the fit profile instead
    of a comment.
    """
    bank = CommentBankFile()
    for raw in read_lines(path):
        line = raw.strip()
        if not line:
            continue
        fields = parse_csv_fields(line)
        if len(fields) < 3:
            continue
        type_code, level_code, text = fields[0], fields[1], fields[2]
        if is_fit_sentinel(type_code, level_code):
            bank.fit_profile = extract_fit_profile(text)
            continue
        bank.entries.append(BankEntry(type_code=type_code, level_code=level_code, text=text))
    return bank


def serialize_bnk(bank):
    """Write a CommentBankFile back out in .BNK form, FIT line last."""
    out = []
    for entry in bank.entries:
        out.append(f'{csv_quote(entry.type_code)},{csv_quote(entry.level_code)},{csv_quote(entry.text)}\n')
    if bank.fit_profile is not None:
        out.append(f'{csv_quote("FIT")},{csv_quote("FIT")},{csv_quote(FIT_LINE_PREFIX + bank.fit_profile)}\n')
    return ''.join(out)


# ========== Loaned items ==========

def decode_tbk_file(path):
    """
    Loaned items (.TBK).

    After the loaned items marker come the item count and item_count + 1
    item blocks: a 'title,publisher,cost' header and one 'item_id,note' line
    per student.
    """
    lines = read_lines(path)
    cursor = LineCursor.at_section(lines, path, 'LastStudent')
    last_student = parse_count(cursor.next_non_noise() or '')
    if last_student is None:
        raise cursor.fail('missing [LastStudent] count')

    marker = find_line_containing(lines, LOANED_ITEMS_MARKER)
    if marker is None:
        raise LegacyParseFailed('missing [Loaned Items Data - DO NOT EDIT!!!] section', path)
    cursor = LineCursor(lines, path, marker + 1)
    item_count = parse_count(cursor.next_non_noise() or '')
    if item_count is None:
        raise cursor.fail('missing TBK item count')

    items = []
    for _ in range(item_count + 1):
        header = cursor.next_raw()
        if header is None:
            raise cursor.fail('unexpected EOF reading TBK item header')
        fields = parse_csv_fields(header)
        item = LoanItem(
            title=fields[0],
            publisher=fields[1] if len(fields) > 1 else '',
            cost=parse_float(fields[2], 0.0) if len(fields) > 2 else 0.0,
        )
        for _ in range(last_student):
            line = cursor.next_raw()
            if line is None:
                item.assignments.append(LoanAssignment())
                continue
            fields = parse_csv_fields(line)
            item.assignments.append(LoanAssignment(
                item_id=fields[0],
                note=fields[1] if len(fields) > 1 else '',
            ))
        items.append(item)

    return LoanFile(last_student=last_student, items=items)


# ========== Export file ==========

def _is_header(value):
    return len(value) >= 2 and value.startswith('[') and value.endswith(']')


def _is_export_metadata(value):
    return 'Folder:' in value or value.startswith('Mark File:') or value.startswith('This file belongs')


def decode_export_file(path):
    """
    Legacy report/export file: [LastStudent] then title / out-of / value blocks.

    Each block is a title line, a line whose first field is the out-of
    value and up to last_student + 1 numeric lines (a leading aggregate row
    followed by the students). Blocks without values are dropped.
    """
    lines = [strip_quotes(line) for line in read_lines(path)]

    last_student = 0
    start = 0
    idx = find_section(lines, 'LastStudent')
    if idx is not None:
        for pos in range(idx + 1, len(lines)):
            if lines[pos]:
                last_student = parse_count(lines[pos]) or 0
                start = pos + 1
                break
    if last_student == 0:
        raise LegacyParseFailed('missing [LastStudent] in export file', path)

    blocks = []
    cursor = start
    while cursor < len(lines):
        line = lines[cursor]
        cursor += 1
        if not line or _is_header(line) or _is_export_metadata(line):
            continue

        title = line
        out_of = None
        while cursor < len(lines):
            candidate = lines[cursor]
            cursor += 1
            if not candidate:
                continue
            if _is_header(candidate):
                break
            out_of = parse_float(parse_csv_fields(candidate)[0])
            if out_of is None:
                # not a block; the candidate may be the next title
                cursor -= 1
            break
        if out_of is None:
            continue

        values = []
        while cursor < len(lines) and len(values) < last_student + 1:
            candidate = lines[cursor]
            if not candidate:
                cursor += 1
                continue
            value = parse_float(candidate)
            if value is None:
                break
            values.append(value)
            cursor += 1

        if values:
            blocks.append(ExportBlock(title=title, out_of=out_of, values=values))

    return ExportFile(last_student=last_student, blocks=blocks)
