"""
mutations.py — Page operations: rotate, delete, reorder, extract, merge, split, stamp

Every operation takes Document values and returns new ones; the input is
never modified. Validation happens before PyMuPDF is touched, and any engine
failure is wrapped in PdfEditError with the prior Document left as it was.

Reorder/extract/merge/split all go through _assemble(), the single
"copy these pages into a fresh PDF" implementation.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Sequence

import pdf_engine
from coords import document_rect_to_fitz
from errors import (
    AssetTooLarge, CannotDeleteAllPages, EmptyMergeSet, InvalidPageSelection,
    InvalidPermutation, InvalidRotation, InvalidSplitPolicy, InvalidStamp,
    PdfEditError, UnsupportedAssetFormat,
)
from models import Document, SignatureAsset, StampPlacement, fresh_copy

logger = logging.getLogger(__name__)

ROTATION_DELTAS = (-90, 90, 180)
MAX_ASSET_BYTES = 500 * 1024
CAPTION_OFFSET = 12  # points between a stamp and its caption baseline


# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────

@contextmanager
def _engine_call(operation: str):
    """Wrap PyMuPDF failures so callers only ever see PdfEditError."""
    try:
        yield
    except PdfEditError:
        raise
    except Exception as e:
        logger.error(f"{operation} failed: {e}")
        raise PdfEditError(f"{operation} failed: {e}", operation) from e


def _indices(document: Document, page_ids: Iterable[str], operation: str) -> list[int]:
    positions = {p.id: i for i, p in enumerate(document.pages)}
    indices = []
    for pid in page_ids:
        if pid not in positions:
            raise InvalidPageSelection(f"unknown page {pid!r}", operation)
        indices.append(positions[pid])
    return indices


def _assemble(sources: Sequence[tuple[Document, Sequence[int]]]) -> bytes:
    """Build a fresh PDF from (document, page indices) pairs, in order."""
    with pdf_engine.working_copy() as target:
        for source, indices in sources:
            with pdf_engine.working_copy(source.data) as src:
                pdf_engine.copy_pages(target, src, indices)
        return pdf_engine.serialize(target)


def _log_commit(operation: str, document: Document):
    logger.info(f"{operation}: revision {document.revision}, {document.page_count()} pages")


# ─────────────────────────────────────────────
# Rotate
# ─────────────────────────────────────────────

def rotate(document: Document, page_id: str, delta: int) -> Document:
    return rotate_pages(document, [page_id], delta)


def rotate_pages(document: Document, page_ids: Iterable[str], delta: int) -> Document:
    if delta not in ROTATION_DELTAS:
        raise InvalidRotation(f"rotation delta must be one of {ROTATION_DELTAS}, got {delta}")
    indices = sorted(set(_indices(document, page_ids, "rotate")))
    if not indices:
        raise InvalidPageSelection("no pages selected", "rotate")

    pages = list(document.pages)
    with _engine_call("rotate"), pdf_engine.working_copy(document.data) as doc:
        for idx in indices:
            rotation = (pages[idx].rotation + delta) % 360
            pdf_engine.set_rotation(doc, idx, rotation)
            pages[idx] = replace(pages[idx], rotation=rotation)
        data = pdf_engine.serialize(doc)

    result = document.successor(pages, data)
    _log_commit("rotate", result)
    return result


# ─────────────────────────────────────────────
# Delete
# ─────────────────────────────────────────────

def delete(document: Document, page_ids: Iterable[str]) -> Document:
    indices = set(_indices(document, page_ids, "delete"))
    if not indices:
        raise InvalidPageSelection("no pages selected", "delete")
    if len(indices) >= document.page_count():
        raise CannotDeleteAllPages("a document must keep at least one page")

    with _engine_call("delete"), pdf_engine.working_copy(document.data) as doc:
        pdf_engine.delete_pages(doc, indices)
        data = pdf_engine.serialize(doc)

    pages = [p for i, p in enumerate(document.pages) if i not in indices]
    result = document.successor(pages, data)
    _log_commit("delete", result)
    return result


# ─────────────────────────────────────────────
# Reorder / extract / merge
# ─────────────────────────────────────────────

def reorder(document: Document, new_order: Sequence[str]) -> Document:
    new_order = list(new_order)
    current = document.page_ids
    if len(new_order) != len(current) or set(new_order) != set(current):
        raise InvalidPermutation("new order must list every page exactly once")

    indices = _indices(document, new_order, "reorder")
    with _engine_call("reorder"):
        data = _assemble([(document, indices)])

    # Same pages, new order: identities survive
    result = document.successor([document.pages[i] for i in indices], data)
    _log_commit("reorder", result)
    return result


def extract(document: Document, page_ids: Sequence[str],
            source_name: Optional[str] = None) -> Document:
    """Copy the requested pages, in order, duplicates allowed, into a new Document."""
    page_ids = list(page_ids)
    if not page_ids:
        raise InvalidPageSelection("no pages selected", "extract")
    indices = _indices(document, page_ids, "extract")
    name = source_name if source_name is not None else f"{document.stem}_extract.pdf"
    return _extract_indices(document, indices, name, "extract")


def _extract_indices(document: Document, indices: Sequence[int], source_name: str,
                     operation: str) -> Document:
    with _engine_call(operation):
        data = _assemble([(document, indices)])
    pages = [fresh_copy(document.pages[i]) for i in indices]
    result = document.successor(pages, data, source_name)
    _log_commit(operation, result)
    return result


def merge(documents: Sequence[Document], source_name: str = "merged.pdf") -> Document:
    documents = list(documents)
    if not documents:
        raise EmptyMergeSet("nothing to merge")

    with _engine_call("merge"):
        data = _assemble([(d, range(d.page_count())) for d in documents])

    pages = [fresh_copy(p) for d in documents for p in d.pages]
    result = Document(
        pages=tuple(pages),
        data=data,
        revision=max(d.revision for d in documents) + 1,
        source_name=source_name,
    )
    _log_commit("merge", result)
    return result


# ─────────────────────────────────────────────
# Split
# ─────────────────────────────────────────────

class SplitMode(Enum):
    ALL = "all"
    EVERY = "every"
    AT = "at"


@dataclass(frozen=True)
class SplitPolicy:
    mode: SplitMode
    every_n: int = 1
    cut_points: tuple[int, ...] = ()

    @classmethod
    def all(cls) -> "SplitPolicy":
        return cls(SplitMode.ALL)

    @classmethod
    def every(cls, n: int) -> "SplitPolicy":
        if n < 1:
            raise InvalidSplitPolicy(f"chunk size must be at least 1, got {n}")
        return cls(SplitMode.EVERY, every_n=n)

    @classmethod
    def at(cls, cut_points: Iterable[int]) -> "SplitPolicy":
        return cls(SplitMode.AT, cut_points=tuple(cut_points))

    def ranges(self, page_count: int) -> list[tuple[int, int]]:
        """Half-open 0-based index ranges, in order, covering every page once."""
        if self.mode is SplitMode.ALL:
            return [(i, i + 1) for i in range(page_count)]
        if self.mode is SplitMode.EVERY:
            if self.every_n < 1:
                raise InvalidSplitPolicy(f"chunk size must be at least 1, got {self.every_n}")
            n = self.every_n
            return [(i, min(i + n, page_count)) for i in range(0, page_count, n)]

        # 1-based cut point c closes a range at page c (inclusive)
        cuts = sorted({c for c in self.cut_points if 1 <= c <= page_count})
        ranges = []
        start = 0
        for c in cuts:
            ranges.append((start, c))
            start = c
        if start < page_count:
            ranges.append((start, page_count))
        return ranges


def split(document: Document, policy: SplitPolicy) -> list[Document]:
    parts = []
    label = "page" if policy.mode is SplitMode.ALL else "part"
    for n, (start, stop) in enumerate(policy.ranges(document.page_count()), start=1):
        name = f"{document.stem}_{label}{n}.pdf"
        parts.append(_extract_indices(document, list(range(start, stop)), name, "split"))
    return parts


# ─────────────────────────────────────────────
# Stamp
# ─────────────────────────────────────────────

def validate_asset(data: bytes, max_bytes: int = MAX_ASSET_BYTES) -> str:
    """Returns the image format ("png"/"jpeg") or raises."""
    if len(data) > max_bytes:
        raise AssetTooLarge(
            f"image is too large ({len(data) // 1024}KB), maximum is {max_bytes // 1024}KB"
        )
    fmt = pdf_engine.sniff_image_format(data)
    if fmt is None:
        raise UnsupportedAssetFormat("use PNG or JPEG images")
    return fmt


def stamp(document: Document, page_id: str, asset_bytes: bytes, placement: StampPlacement,
          max_asset_bytes: int = MAX_ASSET_BYTES, caption: Optional[str] = None) -> Document:
    """Embed an image on one page. Each call adds an independent image.

    `caption`, if given, is written in small grey text just below the image.
    """
    validate_asset(asset_bytes, max_asset_bytes)
    if placement.rotation % 90 != 0:
        raise InvalidStamp(f"stamp rotation must be a multiple of 90, got {placement.rotation}")
    if not 0 < placement.opacity <= 1:
        raise InvalidStamp(f"opacity must be in (0, 1], got {placement.opacity}")
    if placement.width <= 0 or placement.height <= 0:
        raise InvalidStamp("stamp must have a positive size")
    (idx,) = _indices(document, [page_id], "stamp")

    page = document.pages[idx]
    rect = document_rect_to_fitz(placement.x, placement.y, placement.width,
                                 placement.height, page.height)
    with _engine_call("stamp"), pdf_engine.working_copy(document.data) as doc:
        pdf_engine.insert_image(doc, idx, rect, asset_bytes,
                                rotate=placement.rotation % 360,
                                opacity=placement.opacity)
        if caption:
            pdf_engine.insert_text(doc, idx, placement.x,
                                   page.height - (placement.y - CAPTION_OFFSET), caption)
        data = pdf_engine.serialize(doc)

    result = document.successor(document.pages, data)
    _log_commit("stamp", result)
    return result


def default_placement(document: Document, page_id: str, asset: SignatureAsset) -> StampPlacement:
    """Asset's default size, shrunk to fit, centred on the page."""
    width, height = document.page_size(page_id)
    w = min(asset.width, width)
    h = min(asset.height, height)
    return StampPlacement(x=(width - w) / 2, y=(height - h) / 2, width=w, height=h)


def format_timestamp(when: datetime) -> str:
    """e.g. "Mar 5, 2024, 02:07 PM"."""
    return f"{when:%b} {when.day}, {when:%Y, %I:%M %p}"


def stamp_signature(document: Document, page_id: str, asset: SignatureAsset,
                    placement: Optional[StampPlacement] = None,
                    max_asset_bytes: int = MAX_ASSET_BYTES,
                    add_timestamp: bool = False,
                    signed_at: Optional[datetime] = None) -> Document:
    if placement is None:
        placement = default_placement(document, page_id, asset)
    caption = None
    if add_timestamp:
        caption = f"Signed: {format_timestamp(signed_at or datetime.now())}"
    return stamp(document, page_id, asset.data, placement, max_asset_bytes, caption)
