"""
Summary filter parsing.

A single SummaryFilters value replaces the loosely typed filter payloads
sent by clients. parse_summary_filters() is the only entry point; every
field is optional and defaults to "no restriction".
"""
import json
from dataclasses import dataclass
from typing import FrozenSet, Optional

from core.errors import BadParams
from .scope import parse_student_scope

# Assessment type bits (Assessment.legacy_type)
ASSESSMENT_TYPES = [
    {'bit': 0, 'key': 'summative', 'label': 'Summative'},
    {'bit': 1, 'key': 'formative', 'label': 'Formative'},
    {'bit': 2, 'key': 'diagnostic', 'label': 'Diagnostic'},
    {'bit': 3, 'key': 'self', 'label': 'Self'},
    {'bit': 4, 'key': 'peer', 'label': 'Peer'},
]

_KNOWN_KEYS = {'term', 'categoryName', 'categories', 'typesMask', 'studentScope'}


@dataclass(frozen=True)
class SummaryFilters:
    term: Optional[int] = None
    categories: Optional[FrozenSet[str]] = None  # lowercased names
    types_mask: Optional[int] = None
    student_scope: Optional[str] = None

    def without_categories(self):
        return SummaryFilters(
            term=self.term,
            categories=None,
            types_mask=self.types_mask,
            student_scope=self.student_scope,
        )

    def matches(self, assessment):
        """True if an assessment survives the term, category and type filters."""
        if self.term is not None and assessment.term != self.term:
            return False
        if self.categories is not None:
            name = (assessment.category_name or '').strip().lower()
            if name not in self.categories:
                return False
        return matches_types_mask(self.types_mask, assessment.legacy_type)

    def as_dict(self):
        category_name = None
        categories = None
        if self.categories is not None:
            categories = sorted(self.categories)
            if len(categories) == 1:
                category_name = categories[0]
        return {
            'term': self.term,
            'categoryName': category_name,
            'categories': categories,
            'typesMask': self.types_mask,
        }


def matches_types_mask(mask, legacy_type):
    """Check an assessment type against a bitmask; untyped assessments are type 0."""
    if mask is None:
        return True
    t = legacy_type if legacy_type is not None else 0
    if t < 0 or t >= 63:
        return False
    return (mask & (1 << t)) != 0


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_term(value):
    if value is None:
        return None
    if isinstance(value, str) and value.strip().upper() == 'ALL':
        return None
    if not _is_int(value):
        raise BadParams("filters.term must be integer or 'ALL'", details={'field': 'term'})
    return value


def _parse_category_name(value):
    if value is None:
        return None
    if not isinstance(value, str):
        raise BadParams('filters.categoryName must be string or null', details={'field': 'categoryName'})
    name = value.strip()
    if not name or name.upper() == 'ALL':
        return None
    return frozenset([name.lower()])


def _parse_categories(value):
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise BadParams('filters.categories must be a list of names', details={'field': 'categories'})
    names = set()
    for item in value:
        if not isinstance(item, str):
            raise BadParams('filters.categories must contain only strings', details={'field': 'categories'})
        name = item.strip()
        if name:
            names.add(name.lower())
    return frozenset(names) if names else None


def _parse_types_mask(value):
    if value is None:
        return None
    if not _is_int(value):
        raise BadParams('filters.typesMask must be an integer bitmask', details={'field': 'typesMask'})
    return value


def parse_summary_filters(raw):
    """
    Validate a filters payload.

    Args:
        raw: None, a dict, or a JSON string encoding a dict

    Returns:
        SummaryFilters

    Raises:
        BadParams: naming the offending field
    """
    if raw is None:
        return SummaryFilters()
    if isinstance(raw, str):
        if not raw.strip():
            return SummaryFilters()
        try:
            raw = json.loads(raw)
        except ValueError:
            raise BadParams('filters must be valid JSON', details={'field': 'filters'})
        if raw is None:
            return SummaryFilters()
    if not isinstance(raw, dict):
        raise BadParams('filters must be an object', details={'field': 'filters'})

    unknown = sorted(set(raw) - _KNOWN_KEYS)
    if unknown:
        raise BadParams(f"unknown filter field: {unknown[0]}", details={'field': unknown[0]})

    if raw.get('categoryName') is not None and raw.get('categories') is not None:
        raise BadParams(
            'use either filters.categoryName or filters.categories, not both',
            details={'field': 'categories'}
        )

    categories = _parse_category_name(raw.get('categoryName'))
    if categories is None:
        categories = _parse_categories(raw.get('categories'))

    scope = raw.get('studentScope')
    return SummaryFilters(
        term=_parse_term(raw.get('term')),
        categories=categories,
        types_mask=_parse_types_mask(raw.get('typesMask')),
        student_scope=parse_student_scope(scope) if scope is not None else None,
    )
