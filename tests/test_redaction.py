import pytest

import models
import pdf_engine
import redaction
from errors import InvalidPageSelection, PdfEditError
from models import RedactionBox
from pdf_helpers import build_pdf, image_count, page_labels, render_pixel

# covers the "Page N" label drawn at (20, 50)
LABEL_BOX = RedactionBox(0, 0, 200, 100)


def is_black(pixel, tolerance=10):
    return all(c <= tolerance for c in pixel)


def is_white(pixel, tolerance=10):
    return all(c >= 255 - tolerance for c in pixel)


def test_redacted_text_is_gone(three_pages):
    target = three_pages.page_ids[1]
    report = redaction.redact(three_pages, {target: [LABEL_BOX]})

    assert report.all_succeeded
    assert report.succeeded == [target]
    doc = report.document
    assert doc.revision == 1
    assert page_labels(doc) == ["Page 1", "", "Page 3"]
    assert doc.page(target).rasterized
    assert not doc.pages[0].rasterized
    assert image_count(doc, 1) == 1


def test_box_pixels_are_covered(three_pages):
    target = three_pages.page_ids[0]
    report = redaction.redact(three_pages, {target: [RedactionBox(10, 150, 50, 50)]})
    doc = report.document
    assert is_black(render_pixel(doc, 0, 35, 175))
    assert is_white(render_pixel(doc, 0, 150, 250))


def test_page_keeps_identity_and_size(three_pages):
    target = three_pages.page_ids[2]
    doc = redaction.redact(three_pages, {target: [LABEL_BOX]}).document
    assert doc.page_ids == three_pages.page_ids
    with pdf_engine.working_copy(doc.data) as pdf:
        assert pdf_engine.read_geometry(pdf)[2] == (200, 300, 0)


def test_redact_twice(three_pages):
    target = three_pages.page_ids[0]
    first = redaction.redact(three_pages, {target: [RedactionBox(0, 0, 50, 50)]}).document
    second = redaction.redact(first, {target: [RedactionBox(100, 200, 50, 50)]}).document
    assert second.revision == 2
    assert is_black(render_pixel(second, 0, 25, 25))
    assert is_black(render_pixel(second, 0, 125, 225))
    assert image_count(second, 0) == 1


def test_rotated_page_keeps_rotation():
    doc = models.load(build_pdf(1, rotations={0: 90}))
    target = doc.page_ids[0]
    # reference space is the page as displayed: 300 wide, 200 tall
    report = redaction.redact(doc, {target: [RedactionBox(0, 0, 100, 50)]})
    result = report.document

    page = result.page(target)
    assert page.rotation == 90
    assert (page.width, page.height) == (200, 300)
    assert page.display_size == (300, 200)
    assert is_black(render_pixel(result, 0, 50, 25))
    assert is_white(render_pixel(result, 0, 250, 150))


def test_boxes_outside_page_are_clipped(three_pages):
    target = three_pages.page_ids[0]
    report = redaction.redact(three_pages, {target: [RedactionBox(150, 250, 500, 500)]})
    doc = report.document
    assert is_black(render_pixel(doc, 0, 190, 290))
    assert is_white(render_pixel(doc, 0, 100, 200))


def test_raster_failure_only_skips_that_page(three_pages, monkeypatch):
    real = pdf_engine.render_unrotated
    calls = []

    def flaky(page, scale):
        calls.append(page.number)
        if len(calls) == 1:
            raise RuntimeError("out of memory")
        return real(page, scale)

    monkeypatch.setattr(pdf_engine, "render_unrotated", flaky)
    ids = three_pages.page_ids
    report = redaction.redact(three_pages, {ids[0]: [LABEL_BOX], ids[2]: [LABEL_BOX]})

    # highest page goes first
    assert calls == [2, 0]
    assert report.succeeded == [ids[0]]
    assert list(report.failed) == [ids[2]]
    assert "out of memory" in report.failed[ids[2]]
    assert not report.all_succeeded
    doc = report.document
    assert doc.revision == 1
    assert doc.pages[0].rasterized and not doc.pages[2].rasterized
    assert page_labels(doc) == ["", "Page 2", "Page 3"]


def test_all_pages_failing_keeps_input(three_pages, monkeypatch):
    def broken(page, scale):
        raise RuntimeError("no pixels")

    monkeypatch.setattr(pdf_engine, "render_unrotated", broken)
    target = three_pages.page_ids[0]
    report = redaction.redact(three_pages, {target: [LABEL_BOX]})
    assert not report.changed
    assert report.document is three_pages


def test_replace_failure_aborts_batch(three_pages, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("cannot insert page")

    monkeypatch.setattr(pdf_engine, "replace_with_image", broken)
    with pytest.raises(PdfEditError) as exc:
        redaction.redact(three_pages, {three_pages.page_ids[0]: [LABEL_BOX]})
    assert exc.value.operation == "redact"


def test_unknown_page(three_pages):
    with pytest.raises(InvalidPageSelection):
        redaction.redact(three_pages, {"missing": [LABEL_BOX]})


def test_no_boxes_is_a_no_op(three_pages):
    report = redaction.redact(three_pages, {three_pages.page_ids[0]: []})
    assert report.document is three_pages
    assert not report.changed


def test_progress_reported_per_page(five_pages):
    ids = five_pages.page_ids
    calls = []
    redaction.redact(five_pages, {ids[0]: [LABEL_BOX], ids[3]: [LABEL_BOX]},
                     progress=lambda done, total: calls.append((done, total)))
    assert calls == [(1, 2), (2, 2)]


def test_progress_counts_failed_pages(three_pages, monkeypatch):
    def broken(page, scale):
        raise RuntimeError("no pixels")

    monkeypatch.setattr(pdf_engine, "render_unrotated", broken)
    calls = []
    ids = three_pages.page_ids
    report = redaction.redact(three_pages, {ids[0]: [LABEL_BOX], ids[1]: [LABEL_BOX]},
                              progress=lambda done, total: calls.append((done, total)))
    assert calls == [(1, 2), (2, 2)]
    assert len(report.failed) == 2
