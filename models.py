"""
models.py — Data models: Page, Document, RedactionBox, StampPlacement, SignatureAsset

A Document is an immutable value per revision: mutations build a new one
instead of editing in place, so the preview can hold a snapshot (bytes +
revision) without racing the editor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, Optional
from uuid import uuid4

import fitz  # PyMuPDF

import pdf_engine
from coords import display_size
from errors import InvalidPageSelection, InvalidRedactionBox

logger = logging.getLogger(__name__)


def new_page_id() -> str:
    return uuid4().hex


# ─────────────────────────────────────────────
# Page & Document
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class Page:
    id: str
    width: float       # declared (unrotated) size in points
    height: float
    rotation: int = 0  # absolute angle: 0 / 90 / 180 / 270
    rasterized: bool = False

    @property
    def display_size(self) -> tuple[float, float]:
        return display_size(self.width, self.height, self.rotation)


@dataclass(frozen=True)
class Document:
    """One revision of the edited PDF."""
    pages: tuple[Page, ...]
    data: bytes = field(repr=False)
    revision: int = 0
    source_name: str = ""

    def __post_init__(self):
        ids = [p.id for p in self.pages]
        if len(ids) != len(set(ids)):
            raise ValueError("duplicate page identity in document")

    # ── reads ────────────────────────────

    def page_count(self) -> int:
        return len(self.pages)

    @property
    def page_ids(self) -> list[str]:
        return [p.id for p in self.pages]

    def index_of(self, page_id: str) -> int:
        for i, p in enumerate(self.pages):
            if p.id == page_id:
                return i
        raise InvalidPageSelection(f"unknown page {page_id!r}")

    def page(self, page_id: str) -> Page:
        return self.pages[self.index_of(page_id)]

    def has_page(self, page_id: str) -> bool:
        return any(p.id == page_id for p in self.pages)

    def page_size(self, page_id: str) -> tuple[float, float]:
        p = self.page(page_id)
        return p.width, p.height

    def page_rotation(self, page_id: str) -> int:
        return self.page(page_id).rotation

    def display_size(self, page_id: str) -> tuple[float, float]:
        return self.page(page_id).display_size

    def to_bytes(self) -> bytes:
        return self.data

    @property
    def stem(self) -> str:
        return Path(self.source_name).stem if self.source_name else "document"

    # ── construction ─────────────────────

    def successor(self, pages: Iterable[Page], data: bytes,
                  source_name: Optional[str] = None) -> "Document":
        """The next revision of this document."""
        return Document(
            pages=tuple(pages),
            data=data,
            revision=self.revision + 1,
            source_name=self.source_name if source_name is None else source_name,
        )


def load(data: bytes, source_name: str = "") -> Document:
    """Parse PDF bytes into a Document at revision 0."""
    with pdf_engine.working_copy(data) as doc:
        geometry = pdf_engine.read_geometry(doc)
    pages = tuple(
        Page(id=new_page_id(), width=w, height=h, rotation=rot)
        for (w, h, rot) in geometry
    )
    logger.info(f"Loaded {source_name or 'document'}: {len(pages)} pages")
    return Document(pages=pages, data=data, revision=0, source_name=source_name)


def load_file(path: str) -> Document:
    return load(Path(path).read_bytes(), Path(path).name)


def fresh_copy(page: Page) -> Page:
    """Same page content under a new identity (extract/merge/split)."""
    return replace(page, id=new_page_id())


# ─────────────────────────────────────────────
# Redaction boxes
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class RedactionBox:
    """Axis-aligned cover box in reference space (displayed page, points, top-left origin)."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise InvalidRedactionBox(
                f"redaction box must have positive size, got {self.width}x{self.height}"
            )

    @property
    def rect(self) -> fitz.Rect:
        return fitz.Rect(self.x, self.y, self.x + self.width, self.y + self.height)

    @classmethod
    def from_rect(cls, r: fitz.Rect) -> "RedactionBox":
        r = fitz.Rect(r).normalize()
        return cls(x=r.x0, y=r.y0, width=r.width, height=r.height)


# ─────────────────────────────────────────────
# Stamps (signature placement)
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class StampPlacement:
    """Where a stamp goes, in document units (bottom-left origin, unrotated page)."""
    x: float
    y: float
    width: float
    height: float
    rotation: int = 0
    opacity: float = 1.0


@dataclass(frozen=True)
class SignatureAsset:
    """A reusable overlay image. Owned by the asset store, read-only here."""
    name: str
    data: bytes = field(repr=False)
    width: float = 200.0   # default placement size in points
    height: float = 100.0

    @property
    def image_format(self) -> Optional[str]:
        return pdf_engine.sniff_image_format(self.data)


# ─────────────────────────────────────────────
# Raster result
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class Bitmap:
    width: int
    height: int
    stride: int
    samples: bytes = field(repr=False)  # RGB, 3 bytes per pixel
    scale: float = 1.0

    @classmethod
    def from_pixmap(cls, pix: fitz.Pixmap, scale: float) -> "Bitmap":
        return cls(pix.width, pix.height, pix.stride, bytes(pix.samples), scale)

    def pixel(self, x: int, y: int) -> tuple[int, ...]:
        off = y * self.stride + x * 3
        return tuple(self.samples[off:off + 3])
