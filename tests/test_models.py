import fitz  # PyMuPDF
import pytest

import models
from errors import InvalidPageSelection, InvalidRedactionBox, MalformedDocument, UnsupportedDocument
from models import Bitmap, Document, Page, RedactionBox, SignatureAsset, new_page_id
from pdf_helpers import build_pdf, page_labels


def test_load_assigns_unique_ids(three_pages):
    assert three_pages.page_count() == 3
    assert len(set(three_pages.page_ids)) == 3
    assert three_pages.revision == 0
    assert page_labels(three_pages) == ["Page 1", "Page 2", "Page 3"]


def test_load_reads_geometry():
    doc = models.load(build_pdf(2, width=300, height=400, rotations={1: 90}))
    first, second = doc.pages
    assert (first.width, first.height, first.rotation) == (300, 400, 0)
    assert (second.width, second.height, second.rotation) == (300, 400, 90)
    assert second.display_size == (400, 300)


@pytest.mark.parametrize("data", [b"", b"not a pdf at all"])
def test_load_rejects_malformed_input(data):
    with pytest.raises(MalformedDocument):
        models.load(data)


def test_load_rejects_encrypted_input():
    doc = fitz.open(stream=build_pdf(1), filetype="pdf")
    data = doc.tobytes(encryption=fitz.PDF_ENCRYPT_AES_256, owner_pw="owner", user_pw="user")
    doc.close()
    with pytest.raises(UnsupportedDocument) as exc:
        models.load(data)
    assert exc.value.operation == "load"


def test_load_file(tmp_path):
    path = tmp_path / "report.pdf"
    path.write_bytes(build_pdf(2))
    doc = models.load_file(str(path))
    assert doc.source_name == "report.pdf"
    assert doc.stem == "report"
    assert doc.page_count() == 2


def test_to_bytes_round_trip():
    doc = models.load(build_pdf(3, width=250, height=350, rotations={1: 270}))
    again = models.load(doc.to_bytes())
    assert again.page_count() == 3
    assert [(p.width, p.height, p.rotation) for p in again.pages] == [
        (250, 350, 0), (250, 350, 270), (250, 350, 0),
    ]
    assert page_labels(again) == page_labels(doc)


def test_index_lookup(three_pages):
    ids = three_pages.page_ids
    assert three_pages.index_of(ids[2]) == 2
    assert three_pages.has_page(ids[0])
    assert not three_pages.has_page("missing")
    with pytest.raises(InvalidPageSelection):
        three_pages.index_of("missing")


def test_duplicate_ids_rejected():
    page = Page(new_page_id(), 200, 300)
    with pytest.raises(ValueError):
        Document(pages=(page, page), data=b"")


def test_successor_increments_revision(three_pages):
    nxt = three_pages.successor(three_pages.pages[:1], b"data")
    assert nxt.revision == 1
    assert nxt.source_name == three_pages.source_name
    assert three_pages.page_count() == 3


def test_fresh_copy_keeps_geometry():
    page = Page(new_page_id(), 200, 300, rotation=90)
    copy = models.fresh_copy(page)
    assert copy.id != page.id
    assert (copy.width, copy.height, copy.rotation) == (200, 300, 90)


class TestRedactionBox:

    def test_rect(self):
        box = RedactionBox(10, 20, 30, 40)
        assert box.rect == fitz.Rect(10, 20, 40, 60)

    @pytest.mark.parametrize("w,h", [(0, 10), (10, 0), (-5, 10)])
    def test_rejects_degenerate_size(self, w, h):
        with pytest.raises(InvalidRedactionBox):
            RedactionBox(0, 0, w, h)

    def test_from_dragged_rect(self):
        box = RedactionBox.from_rect(fitz.Rect(50, 60, 10, 20))
        assert (box.x, box.y, box.width, box.height) == (10, 20, 40, 40)


def test_signature_asset_format(png_bytes):
    assert SignatureAsset("sig", png_bytes).image_format == "png"
    assert SignatureAsset("sig", b"GIF89a....").image_format is None


def test_bitmap_pixel():
    bitmap = Bitmap(width=2, height=1, stride=6, samples=bytes([1, 2, 3, 4, 5, 6]))
    assert bitmap.pixel(1, 0) == (4, 5, 6)
