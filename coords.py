"""
coords.py — Coordinate conversion between document, reference and preview space

Three spaces are in play:
  * document space:  PDF points, origin bottom-left of the unrotated page
                      (where stamp placements live)
  * reference space: PDF points, origin top-left of the page as displayed
                      (rotation applied); redaction boxes live here so they
                      stay valid across zoom changes
  * preview space:   screen pixels, origin top-left, reference space * zoom

All functions are pure.
"""

from __future__ import annotations

import bisect
from typing import Optional, Sequence

import fitz  # PyMuPDF


PAGE_GAP = 16        # pixels between pages in the continuous preview
RENDER_MARGIN = 300  # pixels above/below the viewport to pre-render
MIN_BOX_SIZE = 5     # smallest redaction drag, in preview pixels
FIT_PADDING = 80     # horizontal room left around a page at fit-width zoom


# ─────────────────────────────────────────────
# Page geometry
# ─────────────────────────────────────────────

def normalize_rotation(angle: int) -> int:
    return angle % 360


def display_size(width: float, height: float, rotation: int) -> tuple[float, float]:
    """Size of the page as shown on screen (width/height swap at 90/270)."""
    if normalize_rotation(rotation) in (90, 270):
        return height, width
    return width, height


# ─────────────────────────────────────────────
# Document space (bottom-left) <-> fitz space (top-left)
# ─────────────────────────────────────────────

def document_rect_to_fitz(x: float, y: float, width: float, height: float,
                          page_height: float) -> fitz.Rect:
    """Flip a bottom-left-origin rect into PyMuPDF's top-left page coordinates."""
    top = page_height - (y + height)
    return fitz.Rect(x, top, x + width, top + height)


# ─────────────────────────────────────────────
# Reference space <-> preview space
# ─────────────────────────────────────────────

def preview_to_reference(r: fitz.Rect, zoom: float) -> fitz.Rect:
    """Screen rect (already relative to the page's top-left) -> reference space."""
    if zoom <= 0:
        raise ValueError(f"zoom must be positive, got {zoom}")
    r = fitz.Rect(r).normalize()
    return fitz.Rect(r.x0 / zoom, r.y0 / zoom, r.x1 / zoom, r.y1 / zoom)


def reference_to_preview(r: fitz.Rect, zoom: float) -> fitz.Rect:
    return fitz.Rect(r.x0 * zoom, r.y0 * zoom, r.x1 * zoom, r.y1 * zoom)


def drawn_box(start: tuple[float, float], end: tuple[float, float], zoom: float,
              min_size: float = MIN_BOX_SIZE) -> Optional[fitz.Rect]:
    """Drag from `start` to `end` (preview pixels, page-relative) -> reference rect.

    Returns None for drags no bigger than `min_size` pixels on either side.
    """
    r = fitz.Rect(*start, *end).normalize()
    if r.width <= min_size or r.height <= min_size:
        return None
    return preview_to_reference(r, zoom)


def scale_to_raster(r: fitz.Rect, scale: float) -> fitz.IRect:
    """Reference rect -> pixel rect of a bitmap rendered at `scale`.

    Rounds outward so a cover box never shrinks below what was drawn.
    """
    scaled = fitz.Rect(r.x0 * scale, r.y0 * scale, r.x1 * scale, r.y1 * scale)
    return scaled.round()


def clip_to_page(r: fitz.Rect, width: float, height: float) -> fitz.Rect:
    """Intersect with the page bounds; empty result means fully outside."""
    return fitz.Rect(r) & fitz.Rect(0, 0, width, height)


# ─────────────────────────────────────────────
# Continuous-scroll layout
# ─────────────────────────────────────────────

def page_layout(sizes: Sequence[tuple[float, float]], zoom: float,
                gap: int = PAGE_GAP) -> tuple[list[int], list[int]]:
    """Returns (offsets, heights) in preview pixels for pages stacked vertically."""
    offsets: list[int] = []
    heights: list[int] = []
    y = gap
    for _w, h in sizes:
        ph = int(h * zoom)
        offsets.append(y)
        heights.append(ph)
        y += ph + gap
    return offsets, heights


def visible_range(offsets: Sequence[int], heights: Sequence[int],
                  top: float, viewport_height: float,
                  margin: int = RENDER_MARGIN) -> tuple[int, int]:
    """(start, end_exclusive) of pages intersecting the viewport plus margin.

    Binary search over page offsets, O(log n).
    """
    n = len(offsets)
    if n == 0:
        return 0, 0
    lo = top - margin
    hi = top + viewport_height + margin
    start = bisect.bisect_right(offsets, lo) - 1
    start = max(0, start)
    if offsets[start] + heights[start] < lo:
        start += 1
    end = bisect.bisect_right(offsets, hi)
    end = min(n, end)
    return start, max(start, end)


def fit_width_zoom(page_width: float, available_width: float,
                   padding: int = FIT_PADDING) -> float:
    """Zoom at which a page `page_width` points wide fills the available width."""
    if page_width <= 0:
        raise ValueError(f"page width must be positive, got {page_width}")
    return max(available_width - padding, 1) / page_width
