"""
render_scheduler.py — Viewport-driven lazy render scheduling

Decides which page to rasterize next; it never renders anything itself, so
it can be driven by the Qt preview or by tests alike.

Per page: NOT_RENDERED -> QUEUED -> RENDERING -> RENDERED, and back to
QUEUED when a page in the render-worthy range holds a render made for an
older revision or a different scale. At most one job is in flight. Every
completion is checked against the current (page, revision); anything stale
is dropped.
"""

from __future__ import annotations

import bisect
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import pdf_engine
from coords import PAGE_GAP, RENDER_MARGIN, page_layout, visible_range
from models import Bitmap, Document

logger = logging.getLogger(__name__)


class RenderState(Enum):
    NOT_RENDERED = "not_rendered"
    QUEUED = "queued"
    RENDERING = "rendering"
    RENDERED = "rendered"


@dataclass(frozen=True)
class RenderJob:
    page_id: str
    scale: float
    revision: int


@dataclass
class _PageEntry:
    state: RenderState = RenderState.NOT_RENDERED
    revision: Optional[int] = None   # revision of the last accepted render
    scale: Optional[float] = None


class RenderScheduler:
    """Single-flight FIFO render queue over a read-only Document snapshot."""

    def __init__(self, margin: int = RENDER_MARGIN, page_gap: int = PAGE_GAP,
                 device_pixel_ratio: float = 1.0):
        self.margin = margin
        self.page_gap = page_gap
        self.device_pixel_ratio = device_pixel_ratio

        self._doc: Optional[Document] = None
        self._entries: dict[str, _PageEntry] = {}
        self._queue: deque[str] = deque()
        self._in_flight: Optional[RenderJob] = None

        self._zoom = 1.0
        self._viewport_top = 0.0
        self._viewport_height = 0.0
        self._offsets: list[int] = []
        self._heights: list[int] = []

    # ── Inputs ────────────────────────────

    @property
    def document(self) -> Optional[Document]:
        return self._doc

    @property
    def revision(self) -> Optional[int]:
        return self._doc.revision if self._doc else None

    @property
    def zoom(self) -> float:
        return self._zoom

    @property
    def scale(self) -> float:
        return round(self._zoom * self.device_pixel_ratio, 3)

    def set_document(self, doc: Optional[Document]):
        """Swap to a new snapshot. In-flight work is left to finish and be discarded."""
        self._doc = doc
        if doc is None:
            self._entries.clear()
            self._queue.clear()
            self._relayout()
            return
        live = set(doc.page_ids)
        for pid in [pid for pid in self._entries if pid not in live]:
            del self._entries[pid]
        for pid in doc.page_ids:
            self._entries.setdefault(pid, _PageEntry())
        self._relayout()
        self.schedule()

    def set_zoom(self, zoom: float):
        if zoom <= 0:
            raise ValueError(f"zoom must be positive, got {zoom}")
        self._zoom = zoom
        self._relayout()
        self.schedule()

    def set_viewport(self, top: float, height: float):
        self._viewport_top = top
        self._viewport_height = height
        self.schedule()

    def invalidate(self, page_id: str):
        """Forget a page's render (e.g. its bitmap fell out of the cache)."""
        entry = self._entries.get(page_id)
        if entry and entry.state is RenderState.RENDERED:
            entry.state = RenderState.NOT_RENDERED
            entry.revision = None
            entry.scale = None

    # ── Layout ────────────────────────────

    def _relayout(self):
        if self._doc is None:
            self._offsets, self._heights = [], []
            return
        sizes = [p.display_size for p in self._doc.pages]
        self._offsets, self._heights = page_layout(sizes, self._zoom, self.page_gap)

    def page_offset(self, page_id: str) -> int:
        return self._offsets[self._doc.index_of(page_id)]

    @property
    def total_height(self) -> int:
        if not self._offsets:
            return 0
        return self._offsets[-1] + self._heights[-1] + self.page_gap

    def page_at(self, y: float) -> Optional[str]:
        """Page under preview coordinate `y`, or None in a gap or past the end."""
        if self._doc is None or not self._offsets:
            return None
        i = bisect.bisect_right(self._offsets, y) - 1
        if i < 0 or y >= self._offsets[i] + self._heights[i]:
            return None
        return self._doc.pages[i].id

    def visible_pages(self) -> list[str]:
        """Pages intersecting the viewport plus the pre-render margin, top to bottom."""
        if self._doc is None:
            return []
        start, end = visible_range(self._offsets, self._heights, self._viewport_top,
                                   self._viewport_height, self.margin)
        return [p.id for p in self._doc.pages[start:end]]

    # ── Scheduling ────────────────────────

    def needs_render(self, page_id: str) -> bool:
        entry = self._entries[page_id]
        if entry.state in (RenderState.QUEUED, RenderState.RENDERING):
            return False
        return entry.revision != self._doc.revision or entry.scale != self.scale

    def schedule(self):
        """Re-derive the queue from the visible set and each page's last revision."""
        if self._doc is None:
            return
        visible = self.visible_pages()
        in_range = set(visible)

        # Drop queued pages that scrolled out of range
        for pid in list(self._queue):
            if pid not in in_range:
                self._queue.remove(pid)
                entry = self._entries.get(pid)
                if entry:
                    entry.state = (RenderState.RENDERED if entry.revision is not None
                                   else RenderState.NOT_RENDERED)

        for pid in visible:
            if self.needs_render(pid):
                self._entries[pid].state = RenderState.QUEUED
                self._queue.append(pid)

    def next_job(self) -> Optional[RenderJob]:
        """Hand out the next job, or None while one is in flight or nothing is queued."""
        if self._in_flight is not None or not self._queue or self._doc is None:
            return None
        pid = self._queue.popleft()
        self._entries[pid].state = RenderState.RENDERING
        self._in_flight = RenderJob(pid, self.scale, self._doc.revision)
        return self._in_flight

    @property
    def in_flight(self) -> Optional[RenderJob]:
        return self._in_flight

    def queued(self) -> list[str]:
        return list(self._queue)

    def is_current(self, job: RenderJob) -> bool:
        return (self._doc is not None
                and job.revision == self._doc.revision
                and job.page_id in self._entries)

    def _release(self, job: RenderJob):
        """Drop a job without recording it.

        The page goes back to where it was before the job started: RENDERED
        with its older revision, or NOT_RENDERED. A stale result never marks a
        page RENDERED at the new revision, so needs_render still flags it.
        """
        if self._in_flight == job:
            self._in_flight = None
        entry = self._entries.get(job.page_id)
        if entry and entry.state is RenderState.RENDERING:
            entry.state = (RenderState.RENDERED if entry.revision is not None
                           else RenderState.NOT_RENDERED)

    def complete(self, job: RenderJob) -> bool:
        """Record a finished job. Returns False if the result is stale and was dropped."""
        if not self.is_current(job):
            logger.debug(f"Discarding stale render of {job.page_id} (revision {job.revision})")
            self._release(job)
            return False
        if self._in_flight == job:
            self._in_flight = None
        entry = self._entries[job.page_id]
        entry.state = RenderState.RENDERED
        entry.revision = job.revision
        entry.scale = job.scale
        return True

    def fail(self, job: RenderJob, reason: str = ""):
        logger.warning(f"Render failed for page {job.page_id}: {reason}")
        self._release(job)

    # ── Queries ───────────────────────────

    def state(self, page_id: str) -> RenderState:
        return self._entries[page_id].state

    def rendered_revision(self, page_id: str) -> Optional[int]:
        return self._entries[page_id].revision


def rasterize(document: Document, job: RenderJob) -> Bitmap:
    """Render the job's page from the document snapshot it was issued against."""
    index = document.index_of(job.page_id)
    with pdf_engine.working_copy(document.data) as doc:
        pix = pdf_engine.render_page(doc, index, job.scale)
        return Bitmap.from_pixmap(pix, job.scale)
