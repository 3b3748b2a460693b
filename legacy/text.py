"""
Line and field helpers shared by the legacy decoders.

Legacy files are VB6 "Write #" output: one value per line, strings wrapped
in double quotes, sections introduced by [Header] lines. Values are
positional, so most decoders walk a LineCursor from a section header and
pull values one at a time.
"""
import logging
from typing import List, Optional

from core.errors import LegacyParseFailed, LegacyReadFailed
from . import config

logger = logging.getLogger(__name__)


def read_lines(path) -> List[str]:
    """
    Read a legacy file into lines with trailing carriage returns removed.

    Undecodable bytes are replaced rather than rejected.

    Raises:
        LegacyReadFailed: the file cannot be opened or read
    """
    try:
        with open(path, 'r', encoding=config.FILE_ENCODING, errors='replace', newline='') as f:
            text = f.read()
    except OSError as e:
        raise LegacyReadFailed(f"cannot read {path}: {e}", details={'path': str(path)})
    lines = text.split('\n')
    if lines and lines[-1] == '':
        lines.pop()
    return [line.rstrip('\r') for line in lines]


def strip_quotes(value):
    """Trim, drop one pair of surrounding double quotes, trim again."""
    value = value.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1]
    return value.strip()


def find_section(lines, name) -> Optional[int]:
    """Index of the first [name] header line (case-insensitive), or None."""
    needle = f'[{name}]'.lower()
    for i, line in enumerate(lines):
        if line.strip().lower() == needle:
            return i
    return None


def find_line_containing(lines, fragment) -> Optional[int]:
    """Index of the first line containing fragment (case-insensitive), or None."""
    fragment = fragment.lower()
    for i, line in enumerate(lines):
        if fragment in line.lower():
            return i
    return None


class LineCursor:
    """Forward-only reader over the lines of one legacy file."""

    def __init__(self, lines, path, pos=0):
        self.lines = lines
        self.path = path
        self.pos = pos

    @classmethod
    def at_section(cls, lines, path, name, required=True):
        """
        Cursor positioned just after the [name] header.

        Returns None for a missing optional section.

        Raises:
            LegacyParseFailed: a required section is missing
        """
        idx = find_section(lines, name)
        if idx is None:
            if required:
                raise LegacyParseFailed(f"missing [{name}] section", path)
            return None
        return cls(lines, path, idx + 1)

    @property
    def exhausted(self):
        return self.pos >= len(self.lines)

    def fail(self, message):
        return LegacyParseFailed(message, self.path, details={'line': self.pos})

    def next_non_noise(self) -> Optional[str]:
        """Next value that is non-empty after quote stripping, or None at EOF."""
        while self.pos < len(self.lines):
            line = self.lines[self.pos].strip()
            self.pos += 1
            if not line:
                continue
            value = strip_quotes(line)
            if value:
                return value
        return None

    def next_keep_empty(self) -> Optional[str]:
        """Next line's value, empty values included, or None at EOF."""
        if self.pos >= len(self.lines):
            return None
        line = self.lines[self.pos]
        self.pos += 1
        return strip_quotes(line)

    def next_raw(self) -> Optional[str]:
        """Next non-empty trimmed line with its quotes intact, or None at EOF."""
        while self.pos < len(self.lines):
            line = self.lines[self.pos].strip()
            self.pos += 1
            if line:
                return line
        return None

    def require_non_noise(self, what):
        value = self.next_non_noise()
        if value is None:
            raise self.fail(f"unexpected EOF reading {what}")
        return value

    def require_count(self, what):
        """Next value as a non-negative integer count."""
        value = self.next_non_noise()
        if value is None:
            raise self.fail(f"missing {what}")
        count = parse_count(value)
        if count is None:
            raise self.fail(f"bad {what}: {value}")
        return count

    def read_quoted_block(self):
        """
        Read one quoted string that may span several lines.

        Lines before the opening quote are skipped. A block ends on the first
        line ending with a double quote; continuation lines are joined with
        newlines and right-trimmed. Returns None when no block starts before
        EOF.

        Raises:
            LegacyParseFailed: EOF inside an open block
        """
        while self.pos < len(self.lines):
            first = self.lines[self.pos].strip()
            if not first or not first.startswith('"'):
                self.pos += 1
                continue

            if len(first) >= 2 and first.endswith('"'):
                self.pos += 1
                return first[1:-1]

            parts = [first[1:]]
            self.pos += 1
            while self.pos < len(self.lines):
                line = self.lines[self.pos].rstrip()
                self.pos += 1
                if line.endswith('"'):
                    parts.append(line[:-1])
                    return '\n'.join(parts).rstrip('\n')
                parts.append(line)
            raise self.fail("unterminated quoted block")
        return None


# ========== Scalars ==========

def parse_int(value, default=None):
    try:
        return int(value.strip())
    except (ValueError, AttributeError):
        return default


def parse_count(value) -> Optional[int]:
    """Non-negative integer, or None."""
    n = parse_int(value)
    if n is None or n < 0:
        return None
    return n


def parse_float(value, default=None):
    try:
        return float(value.strip())
    except (ValueError, AttributeError):
        return default


def parse_date_ymd(value) -> Optional[str]:
    """'2024 9 3' -> '2024-09-03'; None unless three integers lead the line."""
    parts = value.split()
    if len(parts) < 3:
        return None
    try:
        y, m, d = (int(p) for p in parts[:3])
    except ValueError:
        return None
    return f'{y:04d}-{m:02d}-{d:02d}'


# ========== CSV ==========

def parse_csv_fields(line) -> List[str]:
    """
    Split a quote-aware CSV line into trimmed fields.

    Double quotes toggle quoting anywhere in a field and "" inside quotes is
    a literal quote.
    """
    fields = []
    buf = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < n and line[i + 1] == '"':
                buf.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == ',' and not in_quotes:
            fields.append(''.join(buf).strip())
            buf = []
        else:
            buf.append(ch)
        i += 1
    fields.append(''.join(buf).strip())
    return fields


def parse_csv_numbers(line, expected) -> Optional[List[float]]:
    """First `expected` plain comma-separated floats, or None if any is missing or bad."""
    parts = line.split(',')
    if len(parts) < expected:
        return None
    out = []
    for part in parts[:expected]:
        v = parse_float(part)
        if v is None:
            return None
        out.append(v)
    return out


def parse_csv_ints(line, expected) -> Optional[List[int]]:
    fields = parse_csv_fields(line)
    if len(fields) < expected:
        return None
    out = []
    for field in fields[:expected]:
        v = parse_int(field)
        if v is None:
            return None
        out.append(v)
    return out


def csv_quote(value):
    return '"' + value.replace('"', '""') + '"'
