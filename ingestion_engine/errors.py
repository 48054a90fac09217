"""
SupplementScribe Ingestion Errors
=================================
Exceptions raised by ingestion collaborators (extraction, parsing, storage).

These never cross the public entry points: the retry executor and the bulk
writer catch them and convert them into RecoveryResult values.
"""

from typing import Optional


class IngestionError(Exception):
    """Base exception for ingestion failures."""

    def __init__(self, message: str, context: Optional[str] = None):
        super().__init__(message)
        self.context = context


class ExtractionError(IngestionError):
    """Source document content could not be read."""
    pass


class ParsingError(IngestionError):
    """Parsing capability failed or returned an unusable payload."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class StorageError(IngestionError):
    """Storage backend reported an error."""
    pass
