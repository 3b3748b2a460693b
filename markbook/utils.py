"""
Numeric helpers shared by the calculation engine and analytics.
"""
import math


def round_off_1_decimal(x):
    """
    Round to one decimal place the way the legacy VB6 program does.

    Halves always round up (floor(10x + 0.5) / 10), so 3.55 -> 3.6 and
    35.6818 -> 35.7, unlike Python's banker's rounding.
    """
    return math.floor(10.0 * x + 0.5) / 10.0


def median(values):
    """
    Median of a list of numbers, or None for an empty list.

    Odd length takes the middle sorted value; even length averages the two
    middle values.
    """
    if not values:
        return None
    ordered = sorted(values)
    n = len(ordered)
    mid = n // 2
    if n % 2 == 1:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2.0


def mean(values):
    """Arithmetic mean, or None for an empty list."""
    if not values:
        return None
    return sum(values) / len(values)
