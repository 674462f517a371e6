"""
errors.py — Error taxonomy for document mutations and redaction
Every failure carries the name of the operation that raised it so the UI can
report "which operation failed" without parsing messages.
"""

from __future__ import annotations

from typing import Optional


class PdfEditError(Exception):
    """Base class for all user-facing editing failures."""

    operation: str = "edit"

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        if operation:
            self.operation = operation

    @property
    def message(self) -> str:
        return str(self)


# ── Load ──────────────────────────────────

class MalformedDocument(PdfEditError):
    operation = "load"


class UnsupportedDocument(PdfEditError):
    """Encrypted / password-protected input. Surfaced, never retried."""
    operation = "load"


# ── Validation (raised before any document is touched) ──

class InvalidPageSelection(PdfEditError):
    pass


class InvalidPermutation(PdfEditError):
    operation = "reorder"


class CannotDeleteAllPages(PdfEditError):
    operation = "delete"


class EmptyMergeSet(PdfEditError):
    operation = "merge"


class InvalidRotation(PdfEditError):
    operation = "rotate"


class InvalidSplitPolicy(PdfEditError):
    operation = "split"


class InvalidStamp(PdfEditError):
    operation = "stamp"


class AssetTooLarge(InvalidStamp):
    pass


class UnsupportedAssetFormat(InvalidStamp):
    pass


class InvalidRedactionBox(PdfEditError, ValueError):
    operation = "redact"


# ── Page-scoped ───────────────────────────

class RasterFailed(PdfEditError):
    """The raster engine could not produce pixels for one page."""
    operation = "redact"

    def __init__(self, page_id: str, reason: str):
        super().__init__(f"page {page_id}: {reason}")
        self.page_id = page_id
        self.reason = reason
