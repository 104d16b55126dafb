"""Document backends consumed by the extractor.

``StaticDocument`` walks a parsed HTML snapshot with BeautifulSoup.
``LiveDocument`` snapshots a rendered Playwright frame in a single
``evaluate`` round trip and writes freshly minted markers back afterwards.
Both expose the same small surface: node iterators per extraction source,
sub-frame references and a highlight command.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from bs4.element import Tag
from soupsieve import SelectorSyntaxError
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame

logger = logging.getLogger("picpick.dom")

HIGHLIGHT_ID = "__picpick_mark"

_BACKGROUND_DECLARATION = re.compile(
    r"background(?:-image)?\s*:\s*((?:url\([^)]*\)|[^;])*)", re.IGNORECASE
)


class CanvasTaintedError(RuntimeError):
    """Raised when a canvas pixel buffer cannot be exported."""


class FrameAccessError(RuntimeError):
    """Raised when a sub-frame document cannot be read (cross-origin, detached)."""


def same_origin(first: str, second: str) -> bool:
    a, b = urlparse(first), urlparse(second)
    if b.scheme in ("about", "") or a.scheme in ("about", ""):
        return True
    return (a.scheme, a.netloc) == (b.scheme, b.netloc)


# ---------------------------------------------------------------------------
# Static snapshot (BeautifulSoup)
# ---------------------------------------------------------------------------


class StaticNode:
    """Adapter exposing a BeautifulSoup tag through the node surface."""

    markable = True

    def __init__(self, tag: Tag) -> None:
        self._tag = tag

    def __eq__(self, other: object) -> bool:
        return isinstance(other, StaticNode) and other._tag is self._tag

    def __hash__(self) -> int:
        return id(self._tag)

    @property
    def tag(self) -> str:
        return self._tag.name

    @property
    def element_id(self) -> str:
        return self._tag.get("id") or ""

    @property
    def classes(self) -> Sequence[str]:
        value = self._tag.get("class") or []
        if isinstance(value, str):
            return value.split()
        return list(value)

    @property
    def parent(self) -> Optional["StaticNode"]:
        parent = self._tag.parent
        if isinstance(parent, Tag) and not isinstance(parent, BeautifulSoup):
            return StaticNode(parent)
        return None

    def add_class(self, name: str) -> None:
        self._tag["class"] = [*self.classes, name]

    def attribute(self, name: str) -> Optional[str]:
        value = self._tag.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return value

    def background_image(self) -> str:
        style = self._tag.get("style") or ""
        values = [
            match.group(1).strip()
            for match in _BACKGROUND_DECLARATION.finditer(style)
        ]
        return ", ".join(value for value in values if value)

    def child_tags(self) -> List[str]:
        return [child.name for child in self._tag.find_all(True, recursive=False)]

    def serialize(self) -> str:
        return str(self._tag)

    def to_data_url(self) -> str:
        raise CanvasTaintedError("static snapshots carry no canvas pixel buffer")


@dataclass
class FrameRef:
    """Lazy handle on a sub-frame; ``open`` raises ``FrameAccessError``."""

    url: str
    opener: Callable[[], Any]

    async def open(self):
        return await self.opener()


class StaticDocument:
    """A parsed HTML snapshot of a page."""

    def __init__(
        self,
        html: str,
        url: str,
        loader: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.url = url
        self.soup = BeautifulSoup(html, "html.parser")
        self.loader = loader
        self.highlighted: Optional[str] = None

    def _nodes(self, *names: str) -> List[StaticNode]:
        return [StaticNode(tag) for tag in self.soup.find_all(list(names) or True)]

    def images(self) -> List[StaticNode]:
        return self._nodes("img")

    def elements(self) -> List[StaticNode]:
        return self._nodes()

    def vector_graphics(self) -> List[StaticNode]:
        return self._nodes("svg")

    def canvases(self) -> List[StaticNode]:
        return self._nodes("canvas")

    def frames(self) -> List[FrameRef]:
        refs: List[FrameRef] = []
        for iframe in self.soup.find_all("iframe"):
            srcdoc = iframe.get("srcdoc")
            if srcdoc:
                refs.append(FrameRef(self.url, self._srcdoc_opener(srcdoc)))
                continue
            src = iframe.get("src")
            if not src:
                continue
            frame_url = urljoin(self.url, src)
            refs.append(FrameRef(frame_url, self._src_opener(frame_url)))
        return refs

    def _srcdoc_opener(self, srcdoc: str):
        async def opener() -> StaticDocument:
            return StaticDocument(srcdoc, self.url, loader=self.loader)

        return opener

    def _src_opener(self, frame_url: str):
        async def opener() -> StaticDocument:
            if not same_origin(self.url, frame_url):
                raise FrameAccessError(f"cross-origin frame {frame_url}")
            if self.loader is None:
                raise FrameAccessError(f"no loader for frame {frame_url}")
            try:
                html = await asyncio.to_thread(self.loader, frame_url)
            except Exception as exc:  # noqa: BLE001 - any loader failure skips the frame
                raise FrameAccessError(f"failed to load frame {frame_url}: {exc}") from exc
            return StaticDocument(html, frame_url, loader=self.loader)

        return opener

    async def commit(self) -> None:
        """Markers are applied to the soup directly; nothing to flush."""

    async def highlight(self, selector: str) -> bool:
        try:
            target = self.soup.select_one(selector)
        except SelectorSyntaxError:
            target = None
        self.highlighted = selector if target is not None else None
        return target is not None

    def to_html(self) -> str:
        return str(self.soup)


# ---------------------------------------------------------------------------
# Live page (Playwright)
# ---------------------------------------------------------------------------

_SNAPSHOT_SCRIPT = """
(markId) => {
  const elements = Array.from(document.querySelectorAll('*'))
      .filter((el) => el.id !== markId);
  window.__picpickElements = elements;
  const index = new Map(elements.map((el, i) => [el, i]));
  return elements.map((el) => {
    const tag = el.tagName.toLowerCase();
    const parent = el.parentElement ? index.get(el.parentElement) : undefined;
    const entry = {
      tag,
      id: typeof el.id === 'string' ? el.id : '',
      classes: el.classList ? Array.from(el.classList) : [],
      markable: !!el.classList,
      parent: parent === undefined ? -1 : parent,
      src: tag === 'img' ? el.getAttribute('src') : null,
      background: getComputedStyle(el).backgroundImage || '',
      markup: null,
      childTags: [],
      dataUrl: null,
    };
    if (tag === 'svg') {
      entry.markup = new XMLSerializer().serializeToString(el);
      entry.childTags = Array.from(el.children).map((c) => c.tagName.toLowerCase());
    }
    if (tag === 'canvas') {
      try {
        entry.dataUrl = el.toDataURL();
      } catch (e) {
        entry.dataUrl = null;
      }
    }
    return entry;
  });
}
"""

_FLUSH_SCRIPT = """
(pending) => {
  const elements = window.__picpickElements || [];
  for (const [i, name] of pending) {
    const el = elements[i];
    if (el && el.classList) el.classList.add(name);
  }
  delete window.__picpickElements;
}
"""

_HIGHLIGHT_SCRIPT = """
([selector, markId]) => {
  let mark = document.getElementById(markId);
  if (!mark) {
    mark = document.createElement('div');
    mark.id = markId;
    Object.assign(mark.style, {
      backgroundColor: 'rgba(175,223,228,0.5)',
      border: 'dashed 2px #0000FF',
      display: 'none',
      zIndex: '8000',
      position: 'absolute',
      pointerEvents: 'none',
    });
    document.body.appendChild(mark);
  }
  let target = null;
  try {
    target = document.querySelector(selector);
  } catch (e) {
    target = null;
  }
  if (!target) {
    mark.style.display = 'none';
    return false;
  }
  const {left, top} = target.getBoundingClientRect();
  mark.style.top = `${window.pageYOffset + top}px`;
  mark.style.left = `${window.pageXOffset + left}px`;
  mark.style.width = `${target.clientWidth}px`;
  mark.style.height = `${target.clientHeight}px`;
  mark.style.display = 'block';
  window.scrollTo(
      0, window.pageYOffset + top + target.clientHeight / 2 - window.innerHeight / 2);
  return true;
}
"""


class SnapshotNode:
    """One element of a live frame as captured by the snapshot script."""

    def __init__(self, document: "LiveDocument", index: int, entry: Dict[str, Any]) -> None:
        self._document = document
        self.index = index
        self.tag: str = entry["tag"]
        self.element_id: str = entry.get("id") or ""
        self._classes: List[str] = list(entry.get("classes") or [])
        self.markable: bool = bool(entry.get("markable", True))
        self._parent_index: int = entry.get("parent", -1)
        self._src: Optional[str] = entry.get("src")
        self._background: str = entry.get("background") or ""
        self._markup: Optional[str] = entry.get("markup")
        self._child_tags: List[str] = list(entry.get("childTags") or [])
        self._data_url: Optional[str] = entry.get("dataUrl")

    @property
    def classes(self) -> Sequence[str]:
        return tuple(self._classes)

    @property
    def parent(self) -> Optional["SnapshotNode"]:
        if self._parent_index < 0:
            return None
        return self._document.nodes[self._parent_index]

    def add_class(self, name: str) -> None:
        self._classes.append(name)
        self._document.pending_markers.append((self.index, name))

    def attribute(self, name: str) -> Optional[str]:
        if name == "src":
            return self._src
        return None

    def background_image(self) -> str:
        return "" if self._background == "none" else self._background

    def child_tags(self) -> List[str]:
        return list(self._child_tags)

    def serialize(self) -> str:
        return self._markup or ""

    def to_data_url(self) -> str:
        if self._data_url is None:
            raise CanvasTaintedError("canvas export blocked (cross-origin data)")
        return self._data_url


@dataclass
class LiveDocument:
    """Snapshot of one rendered frame, tied back to it for marker writes."""

    frame: Frame
    url: str
    nodes: List[SnapshotNode] = field(default_factory=list)
    pending_markers: List[Tuple[int, str]] = field(default_factory=list)

    @classmethod
    async def capture(cls, frame: Frame) -> "LiveDocument":
        entries = await frame.evaluate(_SNAPSHOT_SCRIPT, HIGHLIGHT_ID)
        document = cls(frame=frame, url=frame.url)
        document.nodes = [
            SnapshotNode(document, index, entry) for index, entry in enumerate(entries)
        ]
        logger.debug("Captured %d element(s) from %s", len(document.nodes), frame.url)
        return document

    def _by_tag(self, tag: str) -> List[SnapshotNode]:
        return [node for node in self.nodes if node.tag == tag]

    def images(self) -> List[SnapshotNode]:
        return self._by_tag("img")

    def elements(self) -> List[SnapshotNode]:
        return list(self.nodes)

    def vector_graphics(self) -> List[SnapshotNode]:
        return self._by_tag("svg")

    def canvases(self) -> List[SnapshotNode]:
        return self._by_tag("canvas")

    def frames(self) -> List[FrameRef]:
        return [
            FrameRef(child.url, self._frame_opener(child))
            for child in self.frame.child_frames
        ]

    def _frame_opener(self, child: Frame):
        async def opener() -> LiveDocument:
            if not same_origin(self.url, child.url):
                raise FrameAccessError(f"cross-origin frame {child.url}")
            try:
                return await LiveDocument.capture(child)
            except PlaywrightError as exc:
                raise FrameAccessError(f"cannot read frame {child.url}: {exc}") from exc

        return opener

    async def commit(self) -> None:
        """Write markers minted during extraction back onto the live elements."""
        pending, self.pending_markers = self.pending_markers, []
        await self.frame.evaluate(_FLUSH_SCRIPT, [list(item) for item in pending])
        if pending:
            logger.debug("Marked %d new element(s) in %s", len(pending), self.url)

    async def highlight(self, selector: str) -> bool:
        return bool(await self.frame.evaluate(_HIGHLIGHT_SCRIPT, [selector, HIGHLIGHT_ID]))
