"""
Structured errors shared by the markbook and legacy apps.

Every failure surfaced to a caller is a MarkbookError carrying a stable
machine-readable code, a human message and optional details. Views and
tasks serialize them with as_dict() so callers always receive
{code, message, details?}.
"""
import logging

logger = logging.getLogger(__name__)


class MarkbookError(Exception):
    """Base class for all structured markbook errors."""
    code = 'error'
    http_status = 500

    def __init__(self, message, details=None, code=None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code:
            self.code = code

    def as_dict(self):
        data = {'code': self.code, 'message': self.message}
        if self.details is not None:
            data['details'] = self.details
        return data

    def __str__(self):
        return f"{self.code}: {self.message}"


class LegacyNotFound(MarkbookError):
    """An expected legacy file is absent under its naming convention."""
    code = 'legacy_no_cl'
    http_status = 404


class LegacyParseFailed(MarkbookError):
    """A legacy file was found but is malformed."""
    code = 'legacy_parse_failed'
    http_status = 422

    def __init__(self, message, path, details=None):
        self.path = str(path)
        merged = {'path': self.path}
        if details:
            merged.update(details)
        super().__init__(message, details=merged)


class LegacyReadFailed(MarkbookError):
    """A legacy folder or file could not be read from disk."""
    code = 'legacy_read_failed'
    http_status = 500


class NotFound(MarkbookError):
    code = 'not_found'
    http_status = 404


class BadParams(MarkbookError):
    code = 'bad_params'
    http_status = 400


class StoreError(MarkbookError):
    """
    A database operation failed.

    The code names the operation (db_query_failed, db_insert_failed,
    db_update_failed, db_delete_failed, db_tx_failed, db_commit_failed).
    """
    code = 'db_query_failed'
    http_status = 500

    @classmethod
    def wrap(cls, exc, code='db_query_failed', table=None):
        """Build a StoreError from a database exception."""
        details = {'table': table} if table else None
        logger.error(f"{code} ({table or 'n/a'}): {exc}")
        return cls(str(exc), details=details, code=code)
