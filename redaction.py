"""
redaction.py — Permanent redaction by raster-and-replace

A black rectangle drawn over a page leaves the text underneath extractable.
Here the page is rendered to a bitmap, the cover boxes are painted into the
pixels, and the page's content is thrown away and replaced with that single
image. Nothing of the original page survives except its size and rotation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Mapping, Optional, Sequence

import fitz  # PyMuPDF

import pdf_engine
from coords import clip_to_page, scale_to_raster
from errors import InvalidPageSelection, PdfEditError, RasterFailed
from models import Document, RedactionBox

logger = logging.getLogger(__name__)

REFERENCE_SCALE = 2.5   # raster scale, never lower
COVER_COLOR = (0, 0, 0)


@dataclass
class RedactionReport:
    """Per-page outcome of a redaction batch."""
    document: Document
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # page id -> reason

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def changed(self) -> bool:
        return bool(self.succeeded)


def flatten_page(page: fitz.Page, page_id: str, boxes: Sequence[RedactionBox],
                 scale: float = REFERENCE_SCALE) -> bytes:
    """Render `page` with opaque cover boxes burned in; returns PNG bytes.

    Boxes are in reference space (the page as displayed). The bitmap is made
    in unrotated orientation so the replacement page can keep the original
    size and rotation. Raises RasterFailed.
    """
    derotate = page.derotation_matrix
    box = page.cropbox
    width, height = box.width, box.height
    rotation = page.rotation
    try:
        pix = pdf_engine.render_unrotated(page, scale)
        for b in boxes:
            r = clip_to_page(b.rect * derotate, width, height)
            if r.is_empty:
                continue
            pix.set_rect(scale_to_raster(r, scale), COVER_COLOR)
        # PNG only: lossy codecs smear pixels from under the box edges
        return pix.tobytes("png")
    except Exception as e:
        raise RasterFailed(page_id, str(e)) from e
    finally:
        page.set_rotation(rotation)


def redact(document: Document, boxes_by_page: Mapping[str, Sequence[RedactionBox]],
           scale: float = REFERENCE_SCALE,
           progress: Optional[Callable[[int, int], None]] = None) -> RedactionReport:
    """Redact every page that has at least one box.

    `progress(done, total)` is called after each page, failed or not.

    A raster failure only skips that page; the report says which pages made
    it. Any other engine failure aborts the batch and the input is kept.
    """
    targets = {pid: list(boxes) for pid, boxes in boxes_by_page.items() if boxes}
    positions = {p.id: i for i, p in enumerate(document.pages)}
    unknown = [pid for pid in boxes_by_page if pid not in positions]
    if unknown:
        raise InvalidPageSelection(f"unknown page {unknown[0]!r}", "redact")
    if not targets:
        return RedactionReport(document)

    pages = list(document.pages)
    report = RedactionReport(document)
    # Descending positions: a replaced page never shifts an unprocessed one
    order = sorted(((positions[pid], pid) for pid in targets), reverse=True)

    try:
        with pdf_engine.working_copy(document.data) as doc:
            for done, (idx, pid) in enumerate(order, start=1):
                page = pages[idx]
                try:
                    png = flatten_page(doc[idx], pid, targets[pid], scale)
                except RasterFailed as e:
                    logger.warning(f"Redaction skipped page {idx + 1}: {e.reason}")
                    report.failed[pid] = e.reason
                else:
                    pdf_engine.replace_with_image(doc, idx, png, page.width, page.height,
                                                  page.rotation)
                    pages[idx] = replace(page, rasterized=True)
                    report.succeeded.append(pid)
                if progress:
                    progress(done, len(order))
            data = pdf_engine.serialize(doc) if report.succeeded else b""
    except PdfEditError:
        raise
    except Exception as e:
        logger.error(f"redact failed: {e}")
        raise PdfEditError(f"redact failed: {e}", "redact") from e

    if report.succeeded:
        report.document = document.successor(pages, data)
        logger.info(
            f"redact: revision {report.document.revision}, "
            f"{len(report.succeeded)} pages flattened, {len(report.failed)} failed"
        )
    return report
