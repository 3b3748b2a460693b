"""
Configuration settings for the markbook app.

These values can be overridden in Django settings by prefixing with MARKBOOK_.
For example, to change the mode calculation levels:
    MARKBOOK_MODE_LEVEL_VALUES = [0, 50, 70, 80, 90]

All configuration values are lazily loaded to avoid Django setup issues.
"""


def _get_setting(name, default):
    """Get a markbook setting from Django settings or use default."""
    from django.conf import settings
    return getattr(settings, f'MARKBOOK_{name}', default)


_DEFAULTS = {
    # Mode calculation: level floors (level 0..N) and how many levels are live
    'MODE_LEVEL_VALUES': [0, 50, 60, 70, 80],
    'MODE_ACTIVE_LEVELS': 4,

    # Round entry percents (VB6 style) before median/mode level assignment
    'ROUND_OFF': True,

    # Category names with special handling
    'BONUS_CATEGORY_NAME': 'BONUS',
    'UNCATEGORIZED_LABEL': 'Uncategorized',

    # Students without a stored mask are treated as enrolled everywhere
    'DEFAULT_STUDENT_MASK': 'TBA',

    # Analytics display limits
    'TOP_BOTTOM_LIMIT': 5,

    # Celery task limits (seconds); failures are reported, not retried
    'TASK_SOFT_TIME_LIMIT': 120,
    'TASK_TIME_LIMIT': 180,
}


class _ConfigProxy:
    """
    Lazy configuration proxy that loads settings only when accessed.
    This avoids Django setup issues during module import.
    """

    def __getattr__(self, name):
        if name in _DEFAULTS:
            return _get_setting(name, _DEFAULTS[name])
        raise AttributeError(f"Unknown config setting: {name}")


_config = _ConfigProxy()


def __getattr__(name):
    """Enable module-level attribute access via the config proxy."""
    return getattr(_config, name)
