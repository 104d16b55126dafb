import base64

import pytest
from playwright.async_api import Error as PlaywrightError

from picpick.dom import LiveDocument, StaticDocument
from picpick.extractor import (
    DATA_URI_FILENAME,
    FALLBACK_FILENAME,
    css_uri_tokens,
    extract,
    harvest,
    resolve_uri,
)
from picpick.identity import IdentityRegistry

PAGE = "https://example.com/gallery/index.html"


@pytest.mark.asyncio
async def test_img_and_background_yield_two_keys() -> None:
    document = StaticDocument(
        '<html><body><img src="pic.png">'
        '<div style="background-image: url(bg.jpg)"></div></body></html>',
        PAGE,
    )

    records = await harvest(document, IdentityRegistry())

    assert set(records) == {
        "https://example.com/gallery/pic.png",
        "https://example.com/gallery/bg.jpg",
    }
    assert {record.filename for record in records.values()} == {"pic.png", "bg.jpg"}
    assert all(record.payload is None for record in records.values())


@pytest.mark.asyncio
async def test_rescan_keeps_selectors_stable() -> None:
    document = StaticDocument('<img src="a.png"><p style="background:url(b.gif) no-repeat">x</p>', PAGE)
    registry = IdentityRegistry()

    first = await harvest(document, registry)
    second = await harvest(document, registry)

    assert {k: r.selector for k, r in first.items()} == {k: r.selector for k, r in second.items()}
    assert {k: r.treeinfo for k, r in first.items()} == {k: r.treeinfo for k, r in second.items()}


def test_multiple_background_tokens_share_one_element() -> None:
    document = StaticDocument(
        "<div style=\"background-image: url('one.png'), url(//cdn.example.org/two.png)\"></div>",
        PAGE,
    )

    candidates = list(extract(document, IdentityRegistry()))

    assert [c.raw_uri for c in candidates] == ["one.png", "//cdn.example.org/two.png"]
    assert candidates[0].selector == candidates[1].selector
    assert candidates[0].treeinfo.endswith(">css")


def test_css_tokens_accept_data_uris_with_semicolons() -> None:
    value = 'url("data:image/png;base64,AAAA"), url(https://example.com/x.png)'

    assert css_uri_tokens(value) == ["data:image/png;base64,AAAA", "https://example.com/x.png"]


def test_css_tokens_fall_back_to_bare_uris() -> None:
    assert css_uri_tokens("https://example.com/x.png") == ["https://example.com/x.png"]
    assert css_uri_tokens("linear-gradient(red, blue)") == []


def test_img_without_src_is_skipped() -> None:
    document = StaticDocument('<img alt="nothing"><img src="ok.png">', PAGE)

    candidates = list(extract(document, IdentityRegistry()))

    assert [c.raw_uri for c in candidates] == ["ok.png"]


def test_vector_graphic_needs_rendered_children() -> None:
    document = StaticDocument(
        '<svg id="empty"><defs><linearGradient id="g"></linearGradient></defs></svg>'
        '<svg id="drawn"><defs></defs><circle r="4"></circle></svg>',
        PAGE,
    )

    candidates = list(extract(document, IdentityRegistry()))

    assert len(candidates) == 1
    uri = candidates[0].raw_uri
    assert uri.startswith("data:image/svg+xml;base64,")
    markup = base64.b64decode(uri.split(",", 1)[1]).decode("utf-8")
    assert 'id="drawn"' in markup
    assert candidates[0].source == "svg"


def test_static_canvas_is_skipped_silently() -> None:
    document = StaticDocument("<canvas width=10 height=10></canvas>", PAGE)

    assert list(extract(document, IdentityRegistry())) == []


def test_resolve_uri_cases() -> None:
    assert resolve_uri("data:image/png;base64,AA", PAGE) == ("data:image/png;base64,AA", DATA_URI_FILENAME)
    assert resolve_uri("../img/a.png?v=2#top", PAGE) == ("https://example.com/img/a.png?v=2#top", "a.png")
    assert resolve_uri("//cdn.example.org/b.webp", PAGE) == ("https://cdn.example.org/b.webp", "b.webp")
    assert resolve_uri("https://example.com/", PAGE) == ("https://example.com/", FALLBACK_FILENAME)
    assert resolve_uri("/photos/", PAGE)[1] == FALLBACK_FILENAME


@pytest.mark.asyncio
async def test_srcdoc_and_same_origin_frames_are_harvested() -> None:
    loaded = []

    def loader(url: str) -> str:
        loaded.append(url)
        return '<img src="inner.png">'

    document = StaticDocument(
        '<img src="top.png">'
        '<iframe srcdoc="<img src=&quot;doc.png&quot;>"></iframe>'
        '<iframe src="/frames/child.html"></iframe>'
        '<iframe src="https://ads.example.net/frame.html"></iframe>',
        PAGE,
        loader=loader,
    )

    records = await harvest(document, IdentityRegistry())

    assert set(records) == {
        "https://example.com/gallery/top.png",
        "https://example.com/gallery/doc.png",
        "https://example.com/frames/inner.png",
    }
    assert loaded == ["https://example.com/frames/child.html"]


@pytest.mark.asyncio
async def test_frame_loader_failure_skips_frame() -> None:
    def loader(url: str) -> str:
        raise OSError("gone")

    document = StaticDocument('<img src="top.png"><iframe src="child.html"></iframe>', PAGE, loader=loader)

    records = await harvest(document, IdentityRegistry())

    assert list(records) == ["https://example.com/gallery/top.png"]


class FakeFrame:
    def __init__(self, url, entries):
        self.url = url
        self.entries = entries
        self.child_frames = []
        self.flushed = []

    async def evaluate(self, script, arg=None):
        if "__picpickElements = elements" in script:
            return self.entries
        if "classList.add" in script:
            self.flushed.extend(arg)
            return None
        raise AssertionError("unexpected script")


class DetachingFrame(FakeFrame):
    """Reads fine, then detaches before markers can be written."""

    async def evaluate(self, script, arg=None):
        if "classList.add" in script:
            raise PlaywrightError("Frame was detached")
        return await super().evaluate(script, arg)


def _entry(tag, parent=-1, **extra):
    entry = {
        "tag": tag,
        "id": "",
        "classes": [],
        "markable": True,
        "parent": parent,
        "src": None,
        "background": "none",
        "markup": None,
        "childTags": [],
        "dataUrl": None,
    }
    entry.update(extra)
    return entry


@pytest.mark.asyncio
async def test_live_snapshot_extracts_and_writes_markers_back() -> None:
    frame = FakeFrame(
        PAGE,
        [
            _entry("html"),
            _entry("body", parent=0),
            _entry("img", parent=1, src="pic.png"),
            _entry("div", parent=1, classes=["picpickdlknown"],
                   background='url("https://example.com/bg.jpg")'),
            _entry("canvas", parent=1, dataUrl="data:image/png;base64,AAAA"),
            _entry("canvas", parent=1, dataUrl=None),
        ],
    )

    document = await LiveDocument.capture(frame)
    records = await harvest(document, IdentityRegistry())

    assert set(records) == {
        "https://example.com/gallery/pic.png",
        "https://example.com/bg.jpg",
        "data:image/png;base64,AAAA",
    }
    assert records["https://example.com/bg.jpg"].selector == ".picpickdlknown"
    flushed_indexes = sorted(index for index, _ in frame.flushed)
    assert flushed_indexes == [2, 4]
    assert records["https://example.com/gallery/pic.png"].treeinfo.startswith("html>body>img.picpickdl")


@pytest.mark.asyncio
async def test_inline_svg_key_is_stable_across_scans() -> None:
    document = StaticDocument('<svg viewBox="0 0 1 1"><rect width="1" height="1"></rect></svg>', PAGE)
    registry = IdentityRegistry()

    first = await harvest(document, registry)
    second = await harvest(document, registry)

    assert list(first) == list(second)
    assert "picpickdl" in document.to_html()


@pytest.mark.asyncio
async def test_frame_detached_during_harvest_is_skipped() -> None:
    frame = FakeFrame(PAGE, [_entry("html"), _entry("img", parent=0, src="top.png")])
    child = DetachingFrame("https://example.com/gallery/inner.html", [_entry("html"), _entry("img", parent=0, src="inner.png")])
    frame.child_frames.append(child)

    document = await LiveDocument.capture(frame)
    records = await harvest(document, IdentityRegistry())

    assert list(records) == ["https://example.com/gallery/top.png"]
    assert [index for index, _ in frame.flushed] == [1]
