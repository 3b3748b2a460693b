"""
Legacy score state codec.

The legacy program stores every mark as a single number and uses its sign
as a marker:

    raw == 0  -> no mark (blank cell, excluded from averages)
    raw <  0  -> zero (assessed, counts as 0; the magnitude is meaningless)
    raw >  0  -> scored

ScoreState makes the three cases explicit so a "zero with a magnitude" or a
"scored no-mark" cannot be constructed. The same codec serves the legacy
decoders, the Score table (status + raw_value columns) and grid edits.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from core.errors import BadParams, StoreError

logger = logging.getLogger(__name__)

NO_MARK = 'no_mark'
ZERO = 'zero'
SCORED = 'scored'

# Written back for Zero; any negative value decodes the same way.
ZERO_MARKER = -1.0


@dataclass(frozen=True)
class ScoreState:
    """One of NoMark, Zero or Scored(value > 0)."""
    status: str
    value: Optional[float] = None

    def __post_init__(self):
        if self.status == SCORED:
            if self.value is None or not self.value > 0:
                raise ValueError(f"Scored value must be > 0, got {self.value!r}")
        elif self.status in (NO_MARK, ZERO):
            if self.value is not None:
                raise ValueError(f"{self.status} carries no value")
        else:
            raise ValueError(f"Unknown score status: {self.status!r}")

    @classmethod
    def scored(cls, value):
        return cls(SCORED, float(value))

    @property
    def is_no_mark(self):
        return self.status == NO_MARK

    @property
    def is_zero(self):
        return self.status == ZERO

    @property
    def is_scored(self):
        return self.status == SCORED

    @property
    def counts(self):
        """True when the state contributes to averages (Zero or Scored)."""
        return self.status != NO_MARK

    @property
    def points(self):
        """Points earned: the value, 0.0 for Zero, None for NoMark."""
        if self.status == SCORED:
            return self.value
        if self.status == ZERO:
            return 0.0
        return None

    def percent_of(self, out_of):
        """Percent of out_of, or None for NoMark. Non-positive out_of gives 0."""
        points = self.points
        if points is None:
            return None
        if out_of > 0:
            return 100.0 * points / out_of
        return 0.0

    def __str__(self):
        if self.status == SCORED:
            return f"Scored({self.value:g})"
        return 'NoMark' if self.status == NO_MARK else 'Zero'


NoMark = ScoreState(NO_MARK)
Zero = ScoreState(ZERO)


def decode_raw(raw):
    """Decode a legacy raw cell into a ScoreState (sign convention)."""
    raw = float(raw)
    if raw == 0:
        return NoMark
    if raw < 0:
        return Zero
    return ScoreState.scored(raw)


def encode_raw(state):
    """Encode a ScoreState as a legacy raw cell value."""
    if state.status == SCORED:
        return state.value
    if state.status == ZERO:
        return ZERO_MARKER
    return 0.0


def from_stored(status, raw_value):
    """
    Rebuild a ScoreState from a Score row.

    Raises:
        StoreError: the row's status is unknown, or a scored row has no
        positive value
    """
    if status == NO_MARK:
        return NoMark
    if status == ZERO:
        return Zero
    if status == SCORED and raw_value is not None and raw_value > 0:
        return ScoreState.scored(raw_value)
    logger.error(f"Invalid score row: status={status!r} raw_value={raw_value!r}")
    raise StoreError(
        'stored score row is not a valid score state',
        details={'table': 'scores', 'status': status, 'rawValue': raw_value},
        code='db_query_failed'
    )


def to_stored(state):
    """
    Return (status, raw_value) for a Score row.

    Zero is stored as a literal 0.0 and NoMark as NULL.
    """
    if state.status == SCORED:
        return SCORED, state.value
    if state.status == ZERO:
        return ZERO, 0.0
    return NO_MARK, None


def parse_state(status, value=None):
    """
    Validate a requested score edit and return its ScoreState.

    Raises BadParams for unknown statuses and for scored values <= 0; those
    are rejected here rather than coerced to another state.
    """
    if status == NO_MARK:
        return NoMark
    if status == ZERO:
        return Zero
    if status == SCORED:
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise BadParams(
                'scored value must be a number',
                details={'value': value}
            )
        if not number > 0:
            raise BadParams(
                'scored value must be greater than 0',
                details={'value': value}
            )
        return ScoreState.scored(number)
    raise BadParams(
        "status must be one of: no_mark, zero, scored",
        details={'status': status}
    )
