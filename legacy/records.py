"""
Plain records produced by the legacy decoders.

Records are built fresh per decode call and carry no database identity;
the import orchestrator maps them onto markbook models. Per-student lists
are positional: index i belongs to the roster entry at ordinal i.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from markbook.scores import ScoreState


# ========== Class list (CL*.Y??) ==========

@dataclass
class MarkSetDef:
    """One line of the "Mark Sets created for this class" section."""
    file_prefix: str
    code: str
    description: str
    weight: float
    sort_order: int


@dataclass
class RosterStudent:
    last_name: str
    first_name: str
    active: bool
    student_no: Optional[str]
    birth_date: Optional[str]
    mark_set_mask: Optional[str]
    raw_line: str
    ordinal: int = 0


@dataclass
class ClassList:
    class_name: str
    mark_sets: List[MarkSetDef] = field(default_factory=list)
    students: List[RosterStudent] = field(default_factory=list)


# ========== Mark file (<prefix>*.Ydd) ==========

@dataclass
class MiscInfo:
    full_code: str = ''
    room: str = ''
    day: str = ''
    period: str = ''
    weight_method: int = 1
    legacy_serial: Optional[float] = None
    calc_method: int = 0


@dataclass
class LegacyCategory:
    name: str
    weight: float


@dataclass
class LegacyAssessment:
    idx: int
    date: str
    category_name: str
    title: str
    term: int
    legacy_kind: int
    weight: float
    avg_percent: float
    out_of: float
    avg_raw: float
    raw_scores: List[ScoreState] = field(default_factory=list)


@dataclass
class MarkFile:
    misc: Optional[MiscInfo]
    categories: List[LegacyCategory]
    last_student: int
    assessments: List[LegacyAssessment]


# ========== Mark file companions ==========

@dataclass
class RemarkMatrix:
    """RMK file: remarks_by_entry[assessment][student]."""
    last_student: int
    last_entry: int
    remarks_by_entry: List[List[str]] = field(default_factory=list)


@dataclass
class CommentSetDef:
    set_number: int
    title: str
    fit_mode: int = 0
    fit_font_size: int = 8
    fit_width: int = 50
    fit_lines: int = 1
    fit_subj: str = ''
    max_chars: int = 100
    is_default: bool = False
    bank_short: Optional[str] = None


@dataclass
class CommentIndex:
    """IDX file: the comment sets defined for a mark set (or a whole class)."""
    sets: List[CommentSetDef] = field(default_factory=list)
    bank_short: Optional[str] = None


# ========== Class companions ==========

@dataclass
class AttendanceMonthRecord:
    month: int
    label: str
    type_of_day_codes: str
    student_day_codes: List[str] = field(default_factory=list)


@dataclass
class Attendance:
    school_year_start_month: int
    months: List[AttendanceMonthRecord] = field(default_factory=list)


@dataclass
class Seating:
    rows: int
    seats_per_row: int
    blocked_mask: str
    seat_codes: List[int] = field(default_factory=list)


@dataclass
class DeviceCodes:
    """ICC matrix; row 0 holds the defaults, rows 1..last_student the students."""
    last_student: int
    subject_count: int
    codes: List[List[str]] = field(default_factory=list)

    def student_row(self, ordinal):
        row = ordinal + 1
        if row < len(self.codes):
            return self.codes[row]
        return [''] * (self.subject_count + 1)


@dataclass
class BankEntry:
    type_code: str
    level_code: str
    text: str


@dataclass
class CommentBankFile:
    entries: List[BankEntry] = field(default_factory=list)
    fit_profile: Optional[str] = None


@dataclass
class LoanAssignment:
    item_id: str = ''
    note: str = ''


@dataclass
class LoanItem:
    title: str
    publisher: str
    cost: float
    assignments: List[LoanAssignment] = field(default_factory=list)


@dataclass
class LoanFile:
    last_student: int
    items: List[LoanItem] = field(default_factory=list)


@dataclass
class ExportBlock:
    title: str
    out_of: float
    values: List[float] = field(default_factory=list)


@dataclass
class ExportFile:
    last_student: int
    blocks: List[ExportBlock] = field(default_factory=list)
