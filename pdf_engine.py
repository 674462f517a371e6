"""
pdf_engine.py — Thin adapter over PyMuPDF (fitz)

The only module that talks to PyMuPDF's page-index API. Everything above it
addresses pages by stable identity; index translation happens here, at the
call site, which is also where the descending-order rule for deletions and
page replacements lives.

Every edit runs on a private fitz.Document opened from immutable bytes;
the caller only sees the result once it has been serialized.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional, Sequence

import fitz  # PyMuPDF

from errors import MalformedDocument, UnsupportedDocument

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"


# ─────────────────────────────────────────────
# Open / serialize
# ─────────────────────────────────────────────

def open_pdf(data: bytes) -> fitz.Document:
    """Open PDF bytes. Raises MalformedDocument / UnsupportedDocument."""
    if not data:
        raise MalformedDocument("document is empty")
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise MalformedDocument(f"cannot parse document: {e}") from e

    if doc.needs_pass or doc.is_encrypted:
        doc.close()
        raise UnsupportedDocument("password-protected documents are not supported")
    if doc.page_count == 0:
        doc.close()
        raise MalformedDocument("document has no pages")
    return doc


def serialize(doc: fitz.Document) -> bytes:
    return doc.tobytes(garbage=3, deflate=True)


@contextmanager
def working_copy(data: Optional[bytes] = None) -> Iterator[fitz.Document]:
    """Yields a private fitz.Document (empty when no bytes given) and closes it."""
    doc = open_pdf(data) if data is not None else fitz.open()
    try:
        yield doc
    finally:
        doc.close()


def page_geometry(page: fitz.Page) -> tuple[float, float, int]:
    """(declared width, declared height, rotation) of the unrotated page."""
    box = page.cropbox
    return box.width, box.height, page.rotation


def read_geometry(doc: fitz.Document) -> list[tuple[float, float, int]]:
    return [page_geometry(doc[i]) for i in range(doc.page_count)]


# ─────────────────────────────────────────────
# Page-level primitives
# ─────────────────────────────────────────────

def copy_pages(target: fitz.Document, source: fitz.Document, indices: Sequence[int]):
    """Append copies of source pages to target, in the order given.

    Contiguous ascending runs are copied with a single insert_pdf call.
    """
    run_start: Optional[int] = None
    prev: Optional[int] = None
    for idx in indices:
        if run_start is not None and idx == prev + 1:
            prev = idx
            continue
        if run_start is not None:
            target.insert_pdf(source, from_page=run_start, to_page=prev)
        run_start = prev = idx
    if run_start is not None:
        target.insert_pdf(source, from_page=run_start, to_page=prev)


def delete_pages(doc: fitz.Document, indices: Iterable[int]):
    # Descending so earlier deletions never shift a pending index
    for idx in sorted(set(indices), reverse=True):
        doc.delete_page(idx)


def set_rotation(doc: fitz.Document, index: int, rotation: int):
    doc[index].set_rotation(rotation)


def stamp_pixmap(data: bytes, opacity: float) -> fitz.Pixmap:
    """Decode an image and scale its alpha channel by `opacity`."""
    pix = fitz.Pixmap(data)
    if not pix.alpha:
        pix = fitz.Pixmap(pix, 1)
    n = pix.n
    alpha = pix.samples[n - 1::n]
    table = bytes(int(v * opacity + 0.5) for v in range(256))
    pix.set_alpha(alpha.translate(table), premultiply=True)
    return pix


def insert_image(doc: fitz.Document, index: int, rect: fitz.Rect, data: bytes,
                 rotate: int = 0, opacity: float = 1.0):
    page = doc[index]
    if opacity >= 1.0:
        page.insert_image(rect, stream=data, rotate=rotate, keep_proportion=False)
    else:
        page.insert_image(rect, pixmap=stamp_pixmap(data, opacity),
                          rotate=rotate, keep_proportion=False)


def insert_text(doc: fitz.Document, index: int, x: float, y: float, text: str,
                fontsize: float = 8, color: tuple[float, float, float] = (0.4, 0.4, 0.4)):
    """Write one line of Helvetica text with its baseline at (x, y), top-left origin."""
    doc[index].insert_text(fitz.Point(x, y), text, fontsize=fontsize,
                           fontname="helv", color=color)


def replace_with_image(doc: fitz.Document, index: int, png: bytes,
                       width: float, height: float, rotation: int):
    """Discard a page's content and put a single full-page image in its place."""
    doc.delete_page(index)
    pno = index if index < doc.page_count else -1
    page = doc.new_page(pno=pno, width=width, height=height)
    page.insert_image(page.rect, stream=png, keep_proportion=False)
    if rotation:
        page.set_rotation(rotation)


# ─────────────────────────────────────────────
# Raster
# ─────────────────────────────────────────────

def render_page(doc: fitz.Document, index: int, scale: float) -> fitz.Pixmap:
    """Render a page as displayed (rotation applied), RGB without alpha."""
    page = doc[index]
    return page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)


def render_unrotated(page: fitz.Page, scale: float) -> fitz.Pixmap:
    """Render the page in unrotated orientation.

    Resets the rotation on the page object, so only call this on a working copy.
    """
    page.set_rotation(0)
    return page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)


def sniff_image_format(data: bytes) -> Optional[str]:
    if data.startswith(PNG_SIGNATURE):
        return "png"
    if data.startswith(JPEG_SIGNATURE):
        return "jpeg"
    return None
