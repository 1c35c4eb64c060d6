from __future__ import annotations


class RateCardError(Exception):
    """Base class for failures the engine raises instead of reporting per row."""


class UploadFormatError(RateCardError, ValueError):
    """The upload has no parseable header row, so no row can be reported."""


class StoreError(RateCardError):
    """The record store could not be read or rejected a write."""


class ArchiveConflictError(RateCardError):
    """Restoring an archived card would resurrect a duplicate or overlap."""

    def __init__(self, message: str, card_id: str | None = None) -> None:
        super().__init__(message)
        self.card_id = card_id
