"""
main_window.py — Main application window
Wires the EditSession (document + mutations) to the preview.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from PyQt6.QtGui import QAction, QKeySequence
from PyQt6.QtWidgets import (
    QFileDialog, QInputDialog, QMainWindow, QMessageBox, QToolBar,
)

import models
from edit_session import EditSession
from errors import PdfEditError
from models import Document, SignatureAsset
from mutations import SplitPolicy
from pdf_viewer import PDFScrollView, PreviewRenderer
from redaction import RedactionReport
from settings import EditorSettings

logger = logging.getLogger(__name__)

SPLIT_MODES = ["Every page", "Every N pages", "After pages..."]


class MainWindow(QMainWindow):

    def __init__(self, settings: Optional[EditorSettings] = None):
        super().__init__()
        self.setWindowTitle("PDF Page Editor")
        self.resize(1000, 800)

        self.settings = settings or EditorSettings.load()
        self.session = EditSession(self.settings, self)
        self._renderer = PreviewRenderer(self.settings, self)
        self._pdf_scroll = PDFScrollView(self._renderer)
        self.setCentralWidget(self._pdf_scroll)
        self._follow_page: Optional[str] = None

        self._build_toolbar()
        self._connect_signals()
        self._update_toolbar_state()

    def _build_toolbar(self):
        tb = QToolBar("Main")
        self.addToolBar(tb)

        def add(text: str, slot, shortcut: Optional[str] = None) -> QAction:
            action = QAction(text, self)
            action.triggered.connect(slot)
            if shortcut:
                action.setShortcut(QKeySequence(shortcut))
            tb.addAction(action)
            return action

        add("Open", self._open_file, "Ctrl+O")
        self._save_action = add("Save As", self._save_as, "Ctrl+Shift+S")
        tb.addSeparator()
        self._rotate_action = add("Rotate", lambda: self._rotate_current_page(90), "Ctrl+R")
        self._delete_action = add("Delete Page", self._delete_current_page)
        self._up_action = add("Move Up", lambda: self._move_current_page(-1))
        self._down_action = add("Move Down", lambda: self._move_current_page(1))
        tb.addSeparator()
        self._extract_action = add("Extract Page", self._extract_current_page)
        self._split_action = add("Split...", self._split)
        self._merge_action = add("Merge...", self._merge)
        self._stamp_action = add("Signature...", self._place_signature)
        tb.addSeparator()
        self._redact_mode_action = add("Draw Redactions", self._toggle_redaction_mode)
        self._redact_mode_action.setCheckable(True)
        self._apply_redact_action = add("Apply Redactions", self._apply_redactions)
        tb.addSeparator()
        add("Zoom In", lambda: self._pdf_scroll.set_zoom(self._pdf_scroll.pdf_widget.zoom * 1.25), "Ctrl+=")
        add("Zoom Out", lambda: self._pdf_scroll.set_zoom(self._pdf_scroll.pdf_widget.zoom / 1.25), "Ctrl+-")
        add("Fit Width", self._pdf_scroll.fit_width)

        self._doc_actions = (
            self._save_action, self._rotate_action, self._delete_action,
            self._up_action, self._down_action, self._extract_action,
            self._split_action, self._merge_action, self._stamp_action,
            self._redact_mode_action,
        )

    def _connect_signals(self):
        self.session.document_changed.connect(self._on_doc_changed)
        self.session.documents_produced.connect(self._on_documents_produced)
        self.session.redaction_progress.connect(
            lambda done, total: self._set_status(f"Redacting... {done}/{total} pages"))
        self.session.redaction_finished.connect(self._on_redaction_finished)
        self.session.operation_failed.connect(self._on_operation_failed)
        self._pdf_scroll.pdf_widget.boxes_changed.connect(lambda _n: self._update_toolbar_state())

    # ── File ──────────────────────────────

    def _open_file(self):
        path, _ = QFileDialog.getOpenFileName(self, "Open PDF", "", "PDF Files (*.pdf)")
        if path:
            self.load_file(path)

    def load_file(self, path: str):
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            QMessageBox.critical(self, "Error", f"Cannot open file:\n{e}")
            return
        self.session.open(data, Path(path).name)

    def _save_as(self):
        doc = self.session.document
        if doc is None:
            return
        path, _ = QFileDialog.getSaveFileName(
            self, "Save As", doc.source_name or "document.pdf", "PDF Files (*.pdf)")
        if not path:
            return
        if not path.lower().endswith(".pdf"):
            path += ".pdf"
        try:
            Path(path).write_bytes(doc.to_bytes())
        except OSError as e:
            QMessageBox.critical(self, "Save error", str(e))
            return
        self._set_status(f"Saved {Path(path).name}")

    def _on_documents_produced(self, operation: str, documents: list[Document]):
        folder = QFileDialog.getExistingDirectory(
            self, f"Save {len(documents)} file(s) from {operation}")
        if not folder:
            return
        try:
            for doc in documents:
                (Path(folder) / doc.source_name).write_bytes(doc.to_bytes())
        except OSError as e:
            QMessageBox.critical(self, "Save error", str(e))
            return
        self._set_status(f"Saved {len(documents)} file(s) to {folder}")

    # ── Page operations ───────────────────

    def _current_page_id(self) -> Optional[str]:
        visible = self._renderer.scheduler.visible_pages()
        doc = self.session.document
        if not doc:
            return None
        top = self._pdf_scroll.verticalScrollBar().value()
        for pid in visible:
            if self._renderer.scheduler.page_offset(pid) >= top:
                return pid
        return visible[0] if visible else doc.page_ids[0]

    def _rotate_current_page(self, delta: int):
        pid = self._current_page_id()
        if pid:
            self.session.rotate([pid], delta)

    def _delete_current_page(self):
        pid = self._current_page_id()
        if pid:
            self.session.delete([pid])

    def _move_current_page(self, step: int):
        pid = self._current_page_id()
        if not pid:
            return
        order = self.session.document.page_ids
        i = order.index(pid)
        j = i + step
        if not 0 <= j < len(order):
            return
        order[i], order[j] = order[j], order[i]
        self._follow_page = pid
        self.session.reorder(order)

    def _extract_current_page(self):
        pid = self._current_page_id()
        if pid:
            self.session.extract([pid])

    def _split(self):
        doc = self.session.document
        if doc is None:
            return
        mode, ok = QInputDialog.getItem(self, "Split", "Split the document:", SPLIT_MODES, 0, False)
        if not ok:
            return
        if mode == SPLIT_MODES[0]:
            policy = SplitPolicy.all()
        elif mode == SPLIT_MODES[1]:
            n, ok = QInputDialog.getInt(self, "Split", "Pages per file:", 2, 1, doc.page_count())
            if not ok:
                return
            policy = SplitPolicy.every(n)
        else:
            text, ok = QInputDialog.getText(self, "Split", "Split after pages (e.g. 2, 5):")
            if not ok:
                return
            try:
                cuts = [int(part) for part in text.replace(" ", "").split(",") if part]
            except ValueError:
                QMessageBox.warning(self, "Split", "Enter page numbers separated by commas.")
                return
            policy = SplitPolicy.at(cuts)
        self.session.split(policy)

    def _merge(self):
        paths, _ = QFileDialog.getOpenFileNames(self, "Merge PDFs", "", "PDF Files (*.pdf)")
        if not paths:
            return
        try:
            others = [models.load_file(p) for p in paths]
        except (OSError, PdfEditError) as e:
            QMessageBox.critical(self, "Merge", f"Cannot open file:\n{e}")
            return
        self.session.merge(others)

    def _place_signature(self):
        pid = self._current_page_id()
        if not pid:
            return
        path, _ = QFileDialog.getOpenFileName(
            self, "Signature Image", "", "Images (*.png *.jpg *.jpeg)")
        if not path:
            return
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            QMessageBox.critical(self, "Error", f"Cannot open file:\n{e}")
            return
        answer = QMessageBox.question(self, "Signature", "Add a signed timestamp below it?")
        self.session.stamp_signature(
            pid, SignatureAsset(Path(path).stem, data),
            add_timestamp=answer == QMessageBox.StandardButton.Yes)

    # ── Redaction ─────────────────────────

    def _toggle_redaction_mode(self, enabled: bool):
        self._pdf_scroll.pdf_widget.set_redaction_mode(enabled)
        if enabled:
            self._set_status("Drag over a page to mark an area for redaction")

    def _apply_redactions(self):
        boxes = self._pdf_scroll.pdf_widget.pending_boxes()
        if not boxes:
            return
        answer = QMessageBox.question(
            self, "Apply Redactions",
            f"Permanently redact {len(boxes)} page(s)? The marked pages are "
            f"replaced by images and their text can no longer be selected.")
        if answer == QMessageBox.StandardButton.Yes:
            self.session.redact(boxes)

    def _on_redaction_finished(self, report: RedactionReport):
        self._pdf_scroll.pdf_widget.clear_boxes(report.succeeded)
        if report.changed:
            self._set_status(f"Redacted {len(report.succeeded)} page(s)")

    # ── Session callbacks ─────────────────

    def _on_doc_changed(self, doc: Document):
        self._pdf_scroll.set_document(doc)
        if self._follow_page and doc.has_page(self._follow_page):
            self._pdf_scroll.scroll_to_page(self._follow_page)
        self._follow_page = None
        self._update_toolbar_state()
        self._set_status(f"{doc.source_name}: {doc.page_count()} pages (rev {doc.revision})")

    def _on_operation_failed(self, operation: str, message: str):
        self._follow_page = None
        QMessageBox.warning(self, "Error", f"{operation} failed:\n{message}")
        self._set_status(f"{operation} failed")

    def _update_toolbar_state(self):
        has_doc = self.session.document is not None
        for action in self._doc_actions:
            action.setEnabled(has_doc)
        self._apply_redact_action.setEnabled(
            has_doc and self._pdf_scroll.pdf_widget.box_count() > 0)

    def _set_status(self, msg: str):
        self.statusBar().showMessage(msg, 5000)
