"""Exceptions raised by the bulk import/export engine.

Expected per-row problems never raise; they become FieldDiagnostic entries.
These exceptions cover whole-request failures the API layer maps to HTTP codes.
"""


class ImportEngineError(Exception):
    """Base class for bulk import/export failures."""


class MalformedInputError(ImportEngineError):
    """The upload could not be decoded as delimited UTF-8 text."""


class UploadTooLargeError(ImportEngineError):
    """The upload exceeds IMPORT_MAX_UPLOAD_BYTES."""


class UnsupportedUploadError(ImportEngineError):
    """The upload is empty or is not a CSV file."""


class ImportTimeoutError(ImportEngineError):
    """The caller's deadline passed while the import transaction was open."""


class ImportNotFoundError(ImportEngineError):
    """No import history record exists for the given id."""


class ImportStateError(ImportEngineError):
    """The requested transition (cancel, rollback) is not allowed in the current status."""
