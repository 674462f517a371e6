"""
edit_session.py — Owns the current Document and runs mutations one at a time

Each request is queued; the next one starts only after the previous result
has been committed on the GUI thread, so every mutation reads the committed
Document. The work itself runs on a single-thread QThreadPool so the UI
never blocks on PyMuPDF.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Callable, Mapping, Optional, Sequence

from PyQt6.QtCore import QObject, QRunnable, QThreadPool, pyqtSignal

import models
import mutations
import redaction
from errors import PdfEditError
from models import Document, RedactionBox, SignatureAsset, StampPlacement
from mutations import SplitPolicy
from settings import EditorSettings

logger = logging.getLogger(__name__)

# How a finished job's result is applied
REPLACE = "replace"     # result becomes the current document
PRODUCE = "produce"     # result is a list of new documents (split/extract)
REDACT = "redact"       # result is a RedactionReport


# ─────────────────────────────────────────────
# Background mutation worker
# ─────────────────────────────────────────────

class MutationSignals(QObject):
    finished = pyqtSignal(object)    # operation result
    failed = pyqtSignal(object)      # PdfEditError
    progress = pyqtSignal(int, int)  # done, total


class MutationWorker(QRunnable):
    """Runs one mutation against an immutable Document snapshot."""

    def __init__(self, operation: str, func: Callable, doc: Optional[Document],
                 reports_progress: bool = False):
        super().__init__()
        self.operation = operation
        self._func = func
        self._doc = doc
        self._reports_progress = reports_progress
        self.signals = MutationSignals()

    def run(self):
        try:
            if self._reports_progress:
                result = self._func(self._doc, self.signals.progress.emit)
            else:
                result = self._func(self._doc)
        except PdfEditError as e:
            self.signals.failed.emit(e)
            return
        except Exception as e:
            logger.exception(f"Unexpected error during {self.operation}")
            self.signals.failed.emit(PdfEditError(str(e), self.operation))
            return
        self.signals.finished.emit(result)


# ─────────────────────────────────────────────
# Session
# ─────────────────────────────────────────────

class EditSession(QObject):
    document_changed = pyqtSignal(object)         # Document
    documents_produced = pyqtSignal(str, object)  # operation, list[Document]
    redaction_finished = pyqtSignal(object)       # RedactionReport
    redaction_progress = pyqtSignal(int, int)     # pages done, pages total
    operation_failed = pyqtSignal(str, str)       # operation, message
    idle = pyqtSignal()

    def __init__(self, settings: Optional[EditorSettings] = None, parent=None):
        super().__init__(parent)
        self.settings = settings or EditorSettings()
        self._doc: Optional[Document] = None
        self._pending: deque[tuple[str, Callable, str]] = deque()
        self._running: Optional[MutationWorker] = None
        self._pool = QThreadPool(self)
        self._pool.setMaxThreadCount(1)

    # ── State ─────────────────────────────

    @property
    def document(self) -> Optional[Document]:
        return self._doc

    @property
    def revision(self) -> int:
        return self._doc.revision if self._doc else -1

    def page_count(self) -> int:
        return self._doc.page_count() if self._doc else 0

    def is_busy(self) -> bool:
        return self._running is not None or bool(self._pending)

    def to_bytes(self) -> bytes:
        if self._doc is None:
            raise PdfEditError("no document loaded", "save")
        return self._doc.to_bytes()

    # ── Requests ──────────────────────────

    def open(self, data: bytes, source_name: str = ""):
        self._submit("load", lambda _doc: models.load(data, source_name), REPLACE)

    def set_document(self, doc: Document):
        self._submit("load", lambda _doc: doc, REPLACE)

    def rotate(self, page_ids: Sequence[str], delta: int):
        page_ids = list(page_ids)
        self._submit("rotate", lambda d: mutations.rotate_pages(d, page_ids, delta), REPLACE)

    def delete(self, page_ids: Sequence[str]):
        page_ids = list(page_ids)
        self._submit("delete", lambda d: mutations.delete(d, page_ids), REPLACE)

    def reorder(self, new_order: Sequence[str]):
        new_order = list(new_order)
        self._submit("reorder", lambda d: mutations.reorder(d, new_order), REPLACE)

    def merge(self, others: Sequence[Document]):
        """Append other documents after the current one."""
        others = list(others)
        self._submit("merge", lambda d: mutations.merge([d, *others]), REPLACE)

    def extract(self, page_ids: Sequence[str]):
        page_ids = list(page_ids)
        self._submit("extract", lambda d: [mutations.extract(d, page_ids)], PRODUCE)

    def split(self, policy: SplitPolicy):
        self._submit("split", lambda d: mutations.split(d, policy), PRODUCE)

    def stamp(self, page_id: str, asset_bytes: bytes, placement: StampPlacement):
        limit = self.settings.max_asset_bytes
        self._submit(
            "stamp",
            lambda d: mutations.stamp(d, page_id, asset_bytes, placement, limit),
            REPLACE,
        )

    def stamp_signature(self, page_id: str, asset: SignatureAsset,
                        placement: Optional[StampPlacement] = None,
                        add_timestamp: bool = False):
        limit = self.settings.max_asset_bytes
        signed_at = datetime.now() if add_timestamp else None
        self._submit(
            "stamp",
            lambda d: mutations.stamp_signature(d, page_id, asset, placement, limit,
                                                add_timestamp, signed_at),
            REPLACE,
        )

    def redact(self, boxes_by_page: Mapping[str, Sequence[RedactionBox]]):
        boxes = {pid: list(b) for pid, b in boxes_by_page.items()}
        scale = self.settings.reference_scale
        self._submit(
            "redact",
            lambda d, progress: redaction.redact(d, boxes, scale, progress),
            REDACT,
        )

    # ── Sequencing ────────────────────────

    def _submit(self, operation: str, func: Callable, kind: str):
        self._pending.append((operation, func, kind))
        self._run_next()

    def _run_next(self):
        if self._running is not None:
            return
        while self._pending:
            operation, func, kind = self._pending.popleft()
            if self._doc is None and operation != "load":
                self.operation_failed.emit(operation, "no document loaded")
                continue
            worker = MutationWorker(operation, func, self._doc, reports_progress=(kind == REDACT))
            worker.signals.progress.connect(
                lambda done, total: self.redaction_progress.emit(done, total))
            worker.signals.finished.connect(
                lambda result, op=operation, k=kind: self._on_finished(op, k, result))
            worker.signals.failed.connect(
                lambda error, op=operation: self._on_failed(op, error))
            self._running = worker
            self._pool.start(worker)
            return
        self.idle.emit()

    def _on_finished(self, operation: str, kind: str, result):
        self._running = None
        if kind == REPLACE:
            self._commit(result)
        elif kind == REDACT:
            if result.changed:
                self._commit(result.document)
            if not result.all_succeeded:
                failed = ", ".join(
                    str(self._doc.index_of(pid) + 1) for pid in result.failed
                )
                self.operation_failed.emit(operation, f"pages not redacted: {failed}")
            self.redaction_finished.emit(result)
        else:
            self.documents_produced.emit(operation, result)
        self._run_next()

    def _on_failed(self, operation: str, error: PdfEditError):
        self._running = None
        logger.error(f"{operation} failed: {error}")
        self.operation_failed.emit(operation, str(error))
        self._run_next()

    def _commit(self, doc: Document):
        self._doc = doc
        logger.info(f"Committed revision {doc.revision} ({doc.page_count()} pages)")
        self.document_changed.emit(doc)
