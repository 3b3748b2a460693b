"""
Locate legacy files inside a class folder by naming convention.

Matching is case-insensitive and candidates are sorted by path so the same
folder always resolves to the same files. Functions returning a single
path return None when nothing matches; only the class list is mandatory.
"""
import logging
import re
from pathlib import Path

from core.errors import LegacyNotFound, LegacyReadFailed

logger = logging.getLogger(__name__)

# e.g. MAT18D.Y25
YEAR_FILE_RE = re.compile(r'\.Y\d\d$', re.IGNORECASE)


def _files(folder):
    folder = Path(folder)
    try:
        return sorted(p for p in folder.iterdir() if p.is_file())
    except OSError as e:
        raise LegacyReadFailed(f"cannot list {folder}: {e}", details={'folder': str(folder)})


def _first(paths):
    return paths[0] if paths else None


def _with_suffix(folder, suffix):
    suffix = suffix.upper()
    return [p for p in _files(folder) if p.suffix.upper() == suffix]


def find_cl_file(folder):
    """
    The class list file, e.g. CL8D.Y25.

    Raises:
        LegacyNotFound: no CL*.Y* file in the folder
    """
    for path in _files(folder):
        name = path.name.upper()
        if name.startswith('CL') and '.Y' in name:
            return path
    raise LegacyNotFound('no CL*.Yxx file found in folder', details={'folder': str(folder)})


def find_mark_file(folder, file_prefix):
    """First <prefix>*.Ydd file that is not a class list."""
    prefix = file_prefix.upper()
    return _first([
        p for p in _files(folder)
        if not p.name.upper().startswith('CL')
        and p.name.upper().startswith(prefix)
        and YEAR_FILE_RE.search(p.name)
    ])


def find_note_file(folder):
    return _first([p for p in _files(folder) if p.name.upper().endswith('NOTE.TXT')])


def find_attendance_file(folder):
    return _first(_with_suffix(folder, '.ATN'))


def find_seating_file(folder):
    return _first(_with_suffix(folder, '.SPL'))


def find_icc_file(folder):
    return _first(_with_suffix(folder, '.ICC'))


def find_bnk_files(folder):
    return _with_suffix(folder, '.BNK')


def find_tbk_files(folder):
    return _with_suffix(folder, '.TBK')


def find_all_idx_file(folder):
    """Combined comment index for the whole class, ALL!<class>.IDX."""
    return _first([
        p for p in _files(folder)
        if p.name.upper().startswith('ALL!') and p.name.upper().endswith('.IDX')
    ])


def companion(mark_file, extension):
    """
    Sibling of a mark file with another extension (TYP, RMK, IDX, R1...),
    or None when it does not exist.

    The legacy program writes companions in upper case; a lower case
    sibling is accepted too.
    """
    mark_file = Path(mark_file)
    for ext in (extension.upper(), extension.lower()):
        candidate = mark_file.with_suffix(f'.{ext}')
        if candidate.is_file():
            return candidate
    return None
