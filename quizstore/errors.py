"""
Exceptions raised by the record store and the media helpers.
"""

from __future__ import annotations


class StoreError(Exception):
    """A database operation was rejected or could not reach the store."""


class RecordNotFoundError(StoreError):
    """A write targeted a record id that does not exist."""

    def __init__(self, table: str, record_id: str):
        super().__init__(f"No {table} record with id {record_id!r}")
        self.table = table
        self.record_id = record_id


class MediaError(Exception):
    """
    An image operation failed.

    ``code`` identifies the cause for programmatic handling, ``message`` is
    the localized text that can be shown to the end user as is.
    """

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class InvalidRecordError(StoreError):
    """A write would break a record invariant (e.g. correct_answer range)."""
