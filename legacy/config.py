"""
Configuration settings for the legacy import app.

Override in Django settings with the LEGACY_ prefix, e.g.:
    LEGACY_IMPORT_ROOT = '/srv/markbook/legacy'
"""


def _get_setting(name, default):
    from django.conf import settings
    return getattr(settings, f'LEGACY_{name}', default)


_DEFAULTS = {
    # Used when the roster file carries no usable class name
    'DEFAULT_CLASS_NAME': 'Imported Class',

    # Attendance files without a start month begin in September
    'SCHOOL_YEAR_START_MONTH': 9,

    # When set, the HTTP import endpoint only accepts folders under this root
    'IMPORT_ROOT': None,

    # Text encoding of legacy files; undecodable bytes are replaced
    'FILE_ENCODING': 'utf-8',

    # Celery import task limits (seconds)
    'TASK_SOFT_TIME_LIMIT': 600,
    'TASK_TIME_LIMIT': 900,
}


class _ConfigProxy:
    """Lazy proxy so settings are only read once Django is configured."""

    def __getattr__(self, name):
        if name in _DEFAULTS:
            return _get_setting(name, _DEFAULTS[name])
        raise AttributeError(f"Unknown config setting: {name}")


_config = _ConfigProxy()


def __getattr__(name):
    return getattr(_config, name)
