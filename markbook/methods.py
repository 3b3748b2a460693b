"""
Weighting and calculation strategies for final marks.

A mark set stores two small integer codes: weight_method (how assessment and
category weights combine) and calc_method (average, median, mode or one of
the blended variants). Each code maps to a pure function in WEIGHT_METHODS
or CALC_METHODS; the aggregation engine only ever looks methods up here.

Every strategy receives the student's contributing entries (one Entry per
assessment that is Zero or Scored and has a positive weight) and a
MethodContext, and returns the final percent or None.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from . import config
from .utils import mean, round_off_1_decimal

WEIGHT_ENTRY = 0
WEIGHT_CATEGORY = 1
WEIGHT_EQUAL = 2

CALC_AVERAGE = 0
CALC_MEDIAN = 1
CALC_MODE = 2
CALC_BLENDED_MODE = 3
CALC_BLENDED_MEDIAN = 4

BLENDED_METHODS = (CALC_BLENDED_MODE, CALC_BLENDED_MEDIAN)

_EPSILON = 1e-9


@dataclass(frozen=True)
class Entry:
    """One assessment's contribution to a student's final mark."""
    percent: float
    weight: float
    category: str


@dataclass
class MethodContext:
    weight_method: int = WEIGHT_CATEGORY
    category_weights: Dict[str, float] = field(default_factory=dict)  # lowercased name -> weight
    bonus_category: str = 'bonus'
    level_values: List[float] = field(default_factory=lambda: [0, 50, 60, 70, 80])
    active_levels: int = 4
    roff: bool = True

    def category_weight(self, name):
        return self.category_weights.get((name or '').lower(), 0.0)

    def is_bonus(self, entry):
        return entry.category.lower() == self.bonus_category

    def entry_weight(self, entry):
        """Weight used by median and mode: the entry weight under entry weighting, else 1."""
        return entry.weight if self.weight_method == WEIGHT_ENTRY else 1.0

    def as_dict(self):
        return {
            'weightMethodApplied': self.weight_method,
            'roff': self.roff,
            'modeActiveLevels': self.active_levels,
            'modeLevelVals': list(self.level_values),
        }


def clamp_weight_method(code):
    return min(max(int(code or 0), WEIGHT_ENTRY), WEIGHT_EQUAL)


def clamp_calc_method(code):
    return min(max(int(code or 0), CALC_AVERAGE), CALC_BLENDED_MEDIAN)


def build_context(weight_method, categories):
    """
    Build a MethodContext from a mark set's weight method and its categories.

    categories is an iterable of objects with name and weight. Mode levels
    and rounding come from the MARKBOOK_ settings.
    """
    level_values = [float(v) for v in config.MODE_LEVEL_VALUES] or [0.0]
    active_levels = int(config.MODE_ACTIVE_LEVELS)
    active_levels = min(max(active_levels, 1), max(len(level_values) - 1, 1))
    if len(level_values) < active_levels + 1:
        level_values = level_values + [100.0] * (active_levels + 1 - len(level_values))
    return MethodContext(
        weight_method=clamp_weight_method(weight_method),
        category_weights={
            (c.name or '').lower(): float(c.weight or 0.0) for c in categories
        },
        bonus_category=str(config.BONUS_CATEGORY_NAME).lower(),
        level_values=level_values,
        active_levels=active_levels,
        roff=bool(config.ROUND_OFF),
    )


# ========== Weight methods ==========

def _weighted_average(pairs):
    """Average of (value, weight) pairs, or None when no weight is present."""
    total = sum(w for _, w in pairs)
    if total <= 0:
        return None
    return sum(v * w for v, w in pairs) / total


def _group_by_category(entries):
    groups = {}
    for entry in entries:
        groups.setdefault(entry.category, []).append(entry)
    return groups


def combine_categories(category_values, ctx):
    """
    Combine per-category results by category weight.

    Categories with weight 0 are skipped. When no category carries a weight
    the categories are averaged equally.
    """
    weighted = []
    plain = []
    for name, value in category_values.items():
        if value is None:
            continue
        plain.append(value)
        weight = ctx.category_weight(name)
        if weight > 0:
            weighted.append((value, weight))
    if weighted:
        return _weighted_average(weighted)
    return mean(plain)


def entry_weighting(entries, ctx):
    return _weighted_average([(e.percent, e.weight) for e in entries])


def category_weighting(entries, ctx):
    averages = {
        name: _weighted_average([(e.percent, e.weight) for e in group])
        for name, group in _group_by_category(entries).items()
    }
    return combine_categories(averages, ctx)


def equal_weighting(entries, ctx):
    return mean([e.percent for e in entries])


WEIGHT_METHODS = {
    WEIGHT_ENTRY: entry_weighting,
    WEIGHT_CATEGORY: category_weighting,
    WEIGHT_EQUAL: equal_weighting,
}


# ========== Median and mode helpers ==========

def weighted_median(pairs):
    """
    Weighted median of (value, weight) pairs.

    Walks the sorted values until the cumulative weight reaches half the
    total. Landing exactly on the half averages with the next value, so equal
    weights give the usual even-length median.
    """
    pairs = sorted((v, w) for v, w in pairs if w > 0)
    if not pairs:
        return None
    half = sum(w for _, w in pairs) / 2.0
    cumulative = 0.0
    for i, (value, weight) in enumerate(pairs):
        cumulative += weight
        if cumulative >= half - _EPSILON:
            if abs(cumulative - half) <= _EPSILON and i + 1 < len(pairs):
                return (value + pairs[i + 1][0]) / 2.0
            return value
    return pairs[-1][0]


def level_bounds(ctx):
    """(low, high) percent bounds for levels 0..active_levels; the top level ends at 100."""
    vals = ctx.level_values
    bounds = []
    for k in range(ctx.active_levels + 1):
        high = vals[k + 1] if k < ctx.active_levels else 100.0
        bounds.append((vals[k], high))
    return bounds


def level_for(percent, ctx):
    """Highest level whose floor the percent reaches (level 0 below every floor)."""
    level = 0
    for k in range(ctx.active_levels + 1):
        if percent >= ctx.level_values[k]:
            level = k
    return level


def modal_midrange(pairs, ctx):
    """
    Midrange of the most frequent achievement level.

    Frequencies are weighted; a tie goes to the higher level.
    """
    if not pairs:
        return None
    frequency = {}
    for value, weight in pairs:
        if weight <= 0:
            continue
        if ctx.roff:
            value = round_off_1_decimal(value)
        level = level_for(value, ctx)
        frequency[level] = frequency.get(level, 0.0) + weight
    if not frequency:
        return None
    best = max(frequency, key=lambda k: (frequency[k], k))
    low, high = level_bounds(ctx)[best]
    return (low + high) / 2.0


def _median_pairs(entries, ctx):
    pairs = []
    for e in entries:
        value = round_off_1_decimal(e.percent) if ctx.roff else e.percent
        pairs.append((value, ctx.entry_weight(e)))
    return pairs


# ========== Calc methods ==========

def average_method(entries, ctx):
    """Weighted average under the weight method, plus the bonus category on top."""
    base_entries = [e for e in entries if not ctx.is_bonus(e)]
    bonus_entries = [e for e in entries if ctx.is_bonus(e)]
    base = WEIGHT_METHODS[ctx.weight_method](base_entries, ctx)
    if base is None or not bonus_entries:
        return base
    bonus_avg = _weighted_average([(e.percent, e.weight) for e in bonus_entries])
    if bonus_avg is None:
        return base
    return base + bonus_avg * ctx.category_weight(bonus_entries[0].category) / 100.0


def median_method(entries, ctx):
    return weighted_median(_median_pairs(entries, ctx))


def mode_method(entries, ctx):
    return modal_midrange([(e.percent, ctx.entry_weight(e)) for e in entries], ctx)


def blended_mode_method(entries, ctx):
    per_category = {
        name: modal_midrange([(e.percent, e.weight) for e in group], ctx)
        for name, group in _group_by_category(entries).items()
    }
    return combine_categories(per_category, ctx)


def blended_median_method(entries, ctx):
    per_category = {}
    for name, group in _group_by_category(entries).items():
        pairs = [
            (round_off_1_decimal(e.percent) if ctx.roff else e.percent, e.weight)
            for e in group
        ]
        per_category[name] = weighted_median(pairs)
    return combine_categories(per_category, ctx)


CALC_METHODS = {
    CALC_AVERAGE: average_method,
    CALC_MEDIAN: median_method,
    CALC_MODE: mode_method,
    CALC_BLENDED_MODE: blended_mode_method,
    CALC_BLENDED_MEDIAN: blended_median_method,
}


def final_mark(entries, calc_method, ctx) -> Optional[float]:
    """Rounded final percent for one student, or None without contributions."""
    if not entries:
        return None
    value = CALC_METHODS[clamp_calc_method(calc_method)](entries, ctx)
    if value is None:
        return None
    return round_off_1_decimal(value)
