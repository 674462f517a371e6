"""
pdf_viewer.py — Continuous-scroll preview driven by the render scheduler

RenderWorker rasterizes one page off the GUI thread (private fitz.Document
opened from the snapshot bytes). PreviewRenderer feeds the RenderScheduler
with zoom/viewport, starts one worker at a time and publishes accepted
results. PDFViewWidget only paints what the renderer has.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Optional

from PyQt6.QtCore import QObject, QRectF, QRunnable, QThreadPool, Qt, pyqtSignal
from PyQt6.QtGui import QColor, QImage, QPainter, QPen, QWheelEvent
from PyQt6.QtWidgets import QScrollArea, QSizePolicy, QWidget

from coords import drawn_box, fit_width_zoom, reference_to_preview
from models import Bitmap, Document, RedactionBox
from render_scheduler import RenderJob, RenderScheduler, rasterize
from settings import EditorSettings

logger = logging.getLogger(__name__)


def bitmap_to_qimage(bitmap: Bitmap) -> QImage:
    """Convert an RGB Bitmap to a QImage that owns its memory."""
    img = QImage(bitmap.samples, bitmap.width, bitmap.height, bitmap.stride,
                 QImage.Format.Format_RGB888)
    return img.copy()  # detach from the bytes buffer


# ─────────────────────────────────────────────
# Async Rendering Worker
# ─────────────────────────────────────────────

class WorkerSignals(QObject):
    finished = pyqtSignal(object, QImage)  # RenderJob, image
    failed = pyqtSignal(object, str)       # RenderJob, reason


class RenderWorker(QRunnable):
    """Renders one RenderJob against the Document snapshot it was issued for."""

    def __init__(self, document: Document, job: RenderJob, device_pixel_ratio: float = 1.0):
        super().__init__()
        self._document = document
        self.job = job
        self._dpr = device_pixel_ratio
        self.signals = WorkerSignals()

    def run(self):
        try:
            bitmap = rasterize(self._document, self.job)
            img = bitmap_to_qimage(bitmap)
            img.setDevicePixelRatio(self._dpr)
        except Exception as e:
            self.signals.failed.emit(self.job, str(e))
            return
        self.signals.finished.emit(self.job, img)


# ─────────────────────────────────────────────
# Preview renderer (scheduler + worker + cache)
# ─────────────────────────────────────────────

class PreviewRenderer(QObject):
    page_rendered = pyqtSignal(str, int, QImage)  # page id, revision, image
    render_failed = pyqtSignal(str, str)          # page id, reason

    def __init__(self, settings: Optional[EditorSettings] = None, parent=None):
        super().__init__(parent)
        self.settings = settings or EditorSettings()
        self.scheduler = RenderScheduler(
            margin=self.settings.render_margin,
            page_gap=self.settings.page_gap,
            device_pixel_ratio=self.settings.device_pixel_ratio,
        )
        self._cache: OrderedDict[str, QImage] = OrderedDict()
        self._worker: Optional[RenderWorker] = None
        self._pool = QThreadPool(self)
        self._pool.setMaxThreadCount(1)

    # ── Inputs ────────────────────────────

    def set_document(self, doc: Optional[Document]):
        if doc is None:
            self._cache.clear()
        else:
            live = set(doc.page_ids)
            for pid in [pid for pid in self._cache if pid not in live]:
                del self._cache[pid]
        self.scheduler.set_document(doc)
        self._pump()

    def set_zoom(self, zoom: float) -> float:
        zoom = self.settings.clamp_zoom(zoom)
        self.scheduler.set_zoom(zoom)
        self._pump()
        return zoom

    def fit_width_zoom(self, available_width: float) -> float:
        """Zoom at which the widest page fills `available_width`, clamped."""
        doc = self.scheduler.document
        if doc is None:
            return self.scheduler.zoom
        widest = max(p.display_size[0] for p in doc.pages)
        return self.settings.clamp_zoom(fit_width_zoom(widest, available_width))

    def set_viewport(self, top: float, height: float):
        self.scheduler.set_viewport(top, height)
        self._pump()

    # ── Outputs ───────────────────────────

    def image(self, page_id: str) -> Optional[QImage]:
        """Latest accepted image for the page (may lag one revision while re-rendering)."""
        img = self._cache.get(page_id)
        if img is not None:
            self._cache.move_to_end(page_id)
        return img

    def is_idle(self) -> bool:
        return self._worker is None and not self.scheduler.queued()

    # ── Worker plumbing ───────────────────

    def _pump(self):
        if self._worker is not None:
            return
        job = self.scheduler.next_job()
        if job is None:
            return
        worker = RenderWorker(self.scheduler.document, job, self.settings.device_pixel_ratio)
        worker.signals.finished.connect(lambda j, img: self._on_render_finished(j, img))
        worker.signals.failed.connect(lambda j, reason: self._on_render_failed(j, reason))
        self._worker = worker
        self._pool.start(worker)

    def _on_render_finished(self, job: RenderJob, image: QImage):
        self._worker = None
        if self.scheduler.complete(job):
            self._store(job.page_id, image)
            self.page_rendered.emit(job.page_id, job.revision, image)
        self.scheduler.schedule()
        self._pump()

    def _on_render_failed(self, job: RenderJob, reason: str):
        self._worker = None
        stale = not self.scheduler.is_current(job)
        self.scheduler.fail(job, reason)
        if stale:
            # Failed against an old snapshot; try again on the current one
            self.scheduler.schedule()
        else:
            self.render_failed.emit(job.page_id, reason)
        self._pump()

    def _store(self, page_id: str, image: QImage):
        self._cache[page_id] = image
        self._cache.move_to_end(page_id)
        visible = set(self.scheduler.visible_pages())
        limit = self.settings.render_cache_size
        for pid in list(self._cache):
            if len(self._cache) <= limit:
                break
            if pid in visible:
                continue
            del self._cache[pid]
            self.scheduler.invalidate(pid)


# ─────────────────────────────────────────────
# Core PDF Widget
# ─────────────────────────────────────────────

class PDFViewWidget(QWidget):
    """Paints pages stacked vertically using images from a PreviewRenderer.

    In redaction mode a drag on a page adds a pending RedactionBox (reference
    space, so it survives zoom changes) until the boxes are applied or cleared.
    """

    zoom_changed = pyqtSignal(float)
    boxes_changed = pyqtSignal(int)   # number of pending redaction boxes

    def __init__(self, renderer: PreviewRenderer, parent=None):
        super().__init__(parent)
        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self._renderer = renderer
        self._renderer.page_rendered.connect(lambda *_: self.update())

        self._redaction_mode = False
        self._boxes: dict[str, list[RedactionBox]] = {}
        self._drag_page: Optional[str] = None
        self._drag_start: Optional[tuple[float, float]] = None
        self._drag_end: Optional[tuple[float, float]] = None

    @property
    def renderer(self) -> PreviewRenderer:
        return self._renderer

    @property
    def zoom(self) -> float:
        return self._renderer.scheduler.zoom

    def set_document(self, doc: Optional[Document]):
        self._renderer.set_document(doc)
        live = set(doc.page_ids) if doc else set()
        for pid in [pid for pid in self._boxes if pid not in live]:
            del self._boxes[pid]
        self._recalculate_layout()
        self.update()
        self.boxes_changed.emit(self.box_count())

    def set_zoom(self, z: float):
        z = self._renderer.set_zoom(z)
        self._recalculate_layout()
        self.update()
        self.zoom_changed.emit(z)

    def fit_width(self, available_width: float):
        self.set_zoom(self._renderer.fit_width_zoom(available_width))

    # ── Redaction boxes ───────────────────

    def set_redaction_mode(self, enabled: bool):
        self._redaction_mode = enabled
        self._drag_page = None
        self.setCursor(Qt.CursorShape.CrossCursor if enabled else Qt.CursorShape.ArrowCursor)

    def pending_boxes(self) -> dict[str, list[RedactionBox]]:
        return {pid: list(boxes) for pid, boxes in self._boxes.items() if boxes}

    def box_count(self) -> int:
        return sum(len(b) for b in self._boxes.values())

    def clear_boxes(self, page_ids=None):
        if page_ids is None:
            self._boxes.clear()
        else:
            for pid in page_ids:
                self._boxes.pop(pid, None)
        self.update()
        self.boxes_changed.emit(self.box_count())

    def _page_origin(self, page_id: str) -> tuple[int, int]:
        w, _h = self._renderer.scheduler.document.display_size(page_id)
        pw = int(w * self.zoom)
        return self._page_x_offset(pw), self._renderer.scheduler.page_offset(page_id)

    def _page_local(self, page_id: str, x: float, y: float) -> tuple[float, float]:
        px, py = self._page_origin(page_id)
        w, h = self._renderer.scheduler.document.display_size(page_id)
        # Clamp to the page so a drag past the edge stops at the border
        lx = min(max(x - px, 0), w * self.zoom)
        ly = min(max(y - py, 0), h * self.zoom)
        return lx, ly

    def mousePressEvent(self, event):
        if not self._redaction_mode or event.button() != Qt.MouseButton.LeftButton:
            super().mousePressEvent(event)
            return
        pos = event.position()
        pid = self._renderer.scheduler.page_at(pos.y())
        if pid is None:
            return
        self._drag_page = pid
        self._drag_start = self._drag_end = self._page_local(pid, pos.x(), pos.y())

    def mouseMoveEvent(self, event):
        if self._drag_page is None:
            super().mouseMoveEvent(event)
            return
        pos = event.position()
        self._drag_end = self._page_local(self._drag_page, pos.x(), pos.y())
        self.update()

    def mouseReleaseEvent(self, event):
        if self._drag_page is None:
            super().mouseReleaseEvent(event)
            return
        pid, start, end = self._drag_page, self._drag_start, self._drag_end
        self._drag_page = None
        r = drawn_box(start, end, self.zoom)
        if r is not None:
            self._boxes.setdefault(pid, []).append(RedactionBox.from_rect(r))
            logger.debug(f"Redaction box on page {pid}: {r}")
            self.boxes_changed.emit(self.box_count())
        self.update()

    # ── Painting ──────────────────────────

    def _recalculate_layout(self):
        scheduler = self._renderer.scheduler
        doc = scheduler.document
        if doc is None:
            self.setMinimumSize(0, 0)
            return
        max_w = max((int(p.display_size[0] * self.zoom) for p in doc.pages), default=0)
        widget_w = max(max_w + 80, self.parent().width() if self.parent() else 800)
        self.setMinimumSize(widget_w, scheduler.total_height)

    def _page_x_offset(self, page_width: int) -> int:
        if page_width >= self.width() - 20:
            return 10
        return (self.width() - page_width) // 2

    def paintEvent(self, event):
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
        painter.fillRect(self.rect(), QColor("#444444"))

        scheduler = self._renderer.scheduler
        doc = scheduler.document
        if doc is None:
            painter.end()
            return

        for pid in scheduler.visible_pages():
            page = doc.page(pid)
            w, h = page.display_size
            pw, ph = int(w * self.zoom), int(h * self.zoom)
            px, py = self._page_x_offset(pw), scheduler.page_offset(pid)

            img = self._renderer.image(pid)
            if img is not None:
                # Stale or lower-resolution images are stretched until the new render lands
                painter.drawImage(px, py, img.scaled(
                    pw, ph, Qt.AspectRatioMode.IgnoreAspectRatio,
                    Qt.TransformationMode.SmoothTransformation))
            else:
                painter.fillRect(px, py, pw, ph, QColor("white"))

            painter.setPen(QPen(QColor(0, 0, 0, 60), 1))
            painter.drawRect(px - 1, py - 1, pw + 2, ph + 2)

            for box in self._boxes.get(pid, []):
                r = reference_to_preview(box.rect, self.zoom)
                self._paint_box(painter, px + r.x0, py + r.y0, r.width, r.height)

        if self._drag_page is not None:
            px, py = self._page_origin(self._drag_page)
            (x0, y0), (x1, y1) = self._drag_start, self._drag_end
            self._paint_box(painter, px + min(x0, x1), py + min(y0, y1),
                            abs(x1 - x0), abs(y1 - y0))
        painter.end()

    @staticmethod
    def _paint_box(painter: QPainter, x: float, y: float, w: float, h: float):
        rect = QRectF(x, y, w, h)
        painter.fillRect(rect, QColor(0, 0, 0, 140))
        painter.setPen(QPen(QColor(220, 0, 0), 1))
        painter.drawRect(rect)

    def wheelEvent(self, event: QWheelEvent):
        if event.modifiers() & Qt.KeyboardModifier.ControlModifier:
            step = 1.1 if event.angleDelta().y() > 0 else 1 / 1.1
            self.set_zoom(self.zoom * step)
            event.accept()
            return
        super().wheelEvent(event)


# ─────────────────────────────────────────────
# Scrollable PDF Container
# ─────────────────────────────────────────────

class PDFScrollView(QScrollArea):
    """A QScrollArea wrapping PDFViewWidget; forwards the viewport to the renderer."""

    def __init__(self, renderer: Optional[PreviewRenderer] = None, parent=None):
        super().__init__(parent)
        self.setObjectName("pdfScrollArea")
        self.setWidgetResizable(True)
        self.setAlignment(Qt.AlignmentFlag.AlignHCenter)

        self._pdf_widget = PDFViewWidget(renderer or PreviewRenderer())
        self.setWidget(self._pdf_widget)
        self._pdf_widget.zoom_changed.connect(lambda _z: self._push_viewport())
        self.verticalScrollBar().valueChanged.connect(lambda _v: self._push_viewport())

    @property
    def pdf_widget(self) -> PDFViewWidget:
        return self._pdf_widget

    def set_document(self, doc: Optional[Document]):
        self._pdf_widget.set_document(doc)
        self._push_viewport()

    def set_zoom(self, z: float):
        self._pdf_widget.set_zoom(z)

    def fit_width(self):
        self._pdf_widget.fit_width(self.viewport().width())

    def scroll_to_page(self, page_id: str):
        y = self._pdf_widget.renderer.scheduler.page_offset(page_id)
        self.verticalScrollBar().setValue(y)

    def resizeEvent(self, event):
        super().resizeEvent(event)
        self._push_viewport()

    def _push_viewport(self):
        self._pdf_widget.renderer.set_viewport(
            self.verticalScrollBar().value(), self.viewport().height())
