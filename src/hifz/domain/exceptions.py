"""Exceptions raised across layer boundaries."""


class HifzError(Exception):
    """Base class for all hifz errors."""


class StoreError(HifzError):
    """A storage adapter failed to read or write."""


class InvalidRangeError(HifzError, ValueError):
    """An item range is malformed (non-numeric bounds or start > end)."""

    def __init__(self, start_id, end_id):
        super().__init__(f"Invalid item range: {start_id}..{end_id}")
        self.start_id = start_id
        self.end_id = end_id


class ImportFormatError(HifzError):
    """A content file does not have the expected shape."""
