import pytest

import pdf_engine
from edit_session import EditSession
from models import Document, Page, RedactionBox, SignatureAsset, StampPlacement, new_page_id
from mutations import SplitPolicy
from pdf_helpers import build_pdf, page_labels
from pdf_viewer import PreviewRenderer
from render_scheduler import RenderState
from settings import EditorSettings


class Recorder:
    """Collects every signal an EditSession emits."""

    def __init__(self, session: EditSession):
        self.changed = []
        self.produced = []
        self.reports = []
        self.failures = []
        self.progress = []
        session.document_changed.connect(self.changed.append)
        session.documents_produced.connect(lambda op, docs: self.produced.append((op, docs)))
        session.redaction_finished.connect(self.reports.append)
        session.operation_failed.connect(lambda op, msg: self.failures.append((op, msg)))
        session.redaction_progress.connect(lambda done, total: self.progress.append((done, total)))


@pytest.fixture
def session(qapp):
    return EditSession(EditorSettings())


@pytest.fixture
def loaded(session, wait_for):
    session.open(build_pdf(3), "sample.pdf")
    wait_for(lambda: session.document is not None and not session.is_busy())
    return session


def settle(session, wait_for):
    wait_for(lambda: not session.is_busy())


def test_open(loaded):
    assert loaded.page_count() == 3
    assert loaded.revision == 0
    assert loaded.document.source_name == "sample.pdf"


def test_open_malformed(session, wait_for):
    rec = Recorder(session)
    session.open(b"junk", "junk.pdf")
    settle(session, wait_for)
    assert session.document is None
    assert rec.failures[0][0] == "load"


def test_requests_without_document_fail(session):
    rec = Recorder(session)
    session.rotate(["missing"], 90)
    assert rec.failures == [("rotate", "no document loaded")]
    assert not session.is_busy()


def test_mutations_apply_in_submission_order(loaded, wait_for):
    rec = Recorder(loaded)
    ids = loaded.document.page_ids
    loaded.rotate([ids[0]], 90)
    loaded.delete([ids[1]])
    loaded.reorder([ids[2], ids[0]])
    settle(loaded, wait_for)

    assert [d.revision for d in rec.changed] == [1, 2, 3]
    doc = loaded.document
    assert doc.page_ids == [ids[2], ids[0]]
    assert doc.page_rotation(ids[0]) == 90
    assert page_labels(doc) == ["Page 3", "Page 1"]
    assert rec.failures == []


def test_queued_request_uses_arguments_as_submitted(loaded, wait_for):
    ids = loaded.document.page_ids
    selection = [ids[1]]
    order = [ids[2], ids[0]]
    loaded.rotate([ids[0]], 90)
    loaded.delete(selection)
    loaded.reorder(order)
    selection.clear()
    order.reverse()
    settle(loaded, wait_for)

    assert loaded.document.page_ids == [ids[2], ids[0]]
    assert loaded.revision == 3


def test_failure_keeps_document_and_queue_moves_on(loaded, wait_for):
    rec = Recorder(loaded)
    ids = loaded.document.page_ids
    loaded.delete(ids)
    loaded.rotate([ids[0]], 180)
    settle(loaded, wait_for)

    assert rec.failures[0][0] == "delete"
    assert loaded.revision == 1
    assert loaded.page_count() == 3
    assert loaded.document.page_rotation(ids[0]) == 180


def test_split_produces_documents(loaded, wait_for):
    rec = Recorder(loaded)
    loaded.split(SplitPolicy.every(2))
    settle(loaded, wait_for)

    (operation, parts), = rec.produced
    assert operation == "split"
    assert [p.page_count() for p in parts] == [2, 1]
    assert loaded.revision == 0
    assert rec.changed == []


def test_extract_produces_document(loaded, wait_for):
    rec = Recorder(loaded)
    ids = loaded.document.page_ids
    loaded.extract([ids[2]])
    settle(loaded, wait_for)
    (operation, (doc,)), = rec.produced
    assert operation == "extract"
    assert page_labels(doc) == ["Page 3"]


def test_merge_appends_after_current(loaded, make_doc, wait_for):
    loaded.merge([make_doc(2)])
    settle(loaded, wait_for)
    assert loaded.page_count() == 5
    assert page_labels(loaded.document)[3:] == ["Page 1", "Page 2"]


def test_stamp(loaded, png_bytes, wait_for):
    rec = Recorder(loaded)
    loaded.stamp(loaded.document.page_ids[0], png_bytes, StampPlacement(10, 10, 40, 20))
    settle(loaded, wait_for)
    assert loaded.revision == 1
    assert rec.failures == []


def test_signature_with_timestamp(loaded, png_bytes, wait_for):
    loaded.stamp_signature(loaded.document.page_ids[0], SignatureAsset("sig", png_bytes),
                           add_timestamp=True)
    settle(loaded, wait_for)
    assert loaded.revision == 1
    assert "Signed: " in page_labels(loaded.document)[0]


def test_redaction_report(loaded, wait_for):
    rec = Recorder(loaded)
    target = loaded.document.page_ids[0]
    loaded.redact({target: [RedactionBox(0, 0, 200, 100)]})
    settle(loaded, wait_for)
    assert rec.progress == [(1, 1)]

    report, = rec.reports
    assert report.all_succeeded
    assert loaded.document.page(target).rasterized
    assert page_labels(loaded.document)[0] == ""


def test_partial_redaction_reports_failed_pages(loaded, wait_for, monkeypatch):
    real = pdf_engine.render_unrotated

    def flaky(page, scale):
        if page.number == 2:
            raise RuntimeError("no pixels")
        return real(page, scale)

    monkeypatch.setattr(pdf_engine, "render_unrotated", flaky)
    rec = Recorder(loaded)
    ids = loaded.document.page_ids
    box = RedactionBox(0, 0, 200, 100)
    loaded.redact({ids[0]: [box], ids[2]: [box]})
    settle(loaded, wait_for)

    assert rec.failures == [("redact", "pages not redacted: 3")]
    assert loaded.document.page(ids[0]).rasterized
    assert not loaded.document.page(ids[2]).rasterized


# ─────────────────────────────────────────────
# Preview renderer
# ─────────────────────────────────────────────

def test_preview_renders_visible_pages(qapp, make_doc, wait_for):
    renderer = PreviewRenderer(EditorSettings(device_pixel_ratio=1.0, render_margin=0))
    rendered = []
    renderer.page_rendered.connect(lambda pid, rev, img: rendered.append((pid, rev)))

    doc = make_doc(5)
    renderer.set_document(doc)
    renderer.set_viewport(0, 400)
    wait_for(renderer.is_idle)

    ids = doc.page_ids
    assert rendered == [(ids[0], 0), (ids[1], 0)]
    image = renderer.image(ids[0])
    assert (image.width(), image.height()) == (200, 300)
    assert renderer.image(ids[4]) is None
    assert renderer.scheduler.state(ids[4]) is RenderState.NOT_RENDERED


def test_preview_follows_new_revision(qapp, make_doc, wait_for):
    renderer = PreviewRenderer(EditorSettings(device_pixel_ratio=1.0, render_margin=0))
    rendered = []
    renderer.page_rendered.connect(lambda pid, rev, img: rendered.append((pid, rev)))

    doc = make_doc(2)
    renderer.set_document(doc)
    renderer.set_viewport(0, 400)
    renderer.set_document(doc.successor(doc.pages, doc.data))
    wait_for(renderer.is_idle)

    assert all(rev == 1 for _, rev in rendered)
    assert renderer.scheduler.rendered_revision(doc.page_ids[0]) == 1


def test_fit_width_zoom_uses_widest_page(qapp):
    renderer = PreviewRenderer(EditorSettings(device_pixel_ratio=1.0))
    assert renderer.fit_width_zoom(480) == 1.0

    pages = (Page(new_page_id(), 200, 300), Page(new_page_id(), 200, 400, rotation=90))
    renderer.set_document(Document(pages=pages, data=b""))
    # rotated page is 400 wide on screen
    assert renderer.fit_width_zoom(880) == 2.0
    assert renderer.fit_width_zoom(100) == renderer.settings.min_zoom
