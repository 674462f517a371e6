"""
pytest fixtures shared by the test suite

Usage:
    def test_something(three_pages):
        assert three_pages.page_count() == 3
"""

from __future__ import annotations

import time
from typing import Callable

import fitz  # PyMuPDF
import pytest
from PyQt6.QtCore import QCoreApplication

import models
from models import Document
from pdf_helpers import build_pdf


@pytest.fixture
def make_doc() -> Callable[..., Document]:
    def _make(page_count: int = 3, **kwargs) -> Document:
        return models.load(build_pdf(page_count, **kwargs), "sample.pdf")
    return _make


@pytest.fixture
def three_pages(make_doc) -> Document:
    return make_doc(3)


@pytest.fixture
def five_pages(make_doc) -> Document:
    return make_doc(5)


@pytest.fixture
def png_bytes() -> bytes:
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 40, 20), 0)
    pix.clear_with(0x80)
    return pix.tobytes("png")


@pytest.fixture(scope="session")
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def wait_for(qapp):
    """Spin the Qt event loop until predicate() holds."""
    def _wait(predicate: Callable[[], bool], timeout: float = 15.0):
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("timed out waiting for condition")
            qapp.processEvents()
            time.sleep(0.005)
        qapp.processEvents()
    return _wait
