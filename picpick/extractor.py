"""Discover image-like resources in a document and its same-origin frames."""

from __future__ import annotations

import base64
import logging
import re
from typing import Dict, Iterator, List, Tuple
from urllib.parse import unquote, urljoin, urlparse

from playwright.async_api import Error as PlaywrightError

from .dom import CanvasTaintedError, FrameAccessError
from .identity import IdentityRegistry
from .models import (
    SOURCE_CANVAS,
    SOURCE_CSS,
    SOURCE_IMAGE,
    SOURCE_VECTOR,
    Candidate,
    ResourceRecord,
)

logger = logging.getLogger("picpick.extractor")

DATA_URI_FILENAME = "data-uri"
FALLBACK_FILENAME = "anyfile"
MAX_FRAME_DEPTH = 3

URL_TOKEN_PATTERN = re.compile(r"""url\(\s*(['"]?)(.*?)\1\s*\)""", re.IGNORECASE)
BARE_URI_PATTERN = re.compile(r"((?:data|https?):)?//[\w!?/+\-~=;.,*&@#$%()'\[\]]+")


def css_uri_tokens(value: str) -> List[str]:
    """Pull URI tokens out of a computed ``background-image`` value."""
    tokens = [match.group(2).strip() for match in URL_TOKEN_PATTERN.finditer(value)]
    if tokens:
        return [token for token in tokens if token]
    return [match.group(0) for match in BARE_URI_PATTERN.finditer(value)]


def filename_from_uri(uri: str) -> str:
    """Best-effort filename: the last path segment, or a placeholder."""
    try:
        path = urlparse(uri).path
    except ValueError:
        return FALLBACK_FILENAME
    segment = unquote(path.rsplit("/", 1)[-1])
    return segment or FALLBACK_FILENAME


def resolve_uri(raw_uri: str, base: str) -> Tuple[str, str]:
    """Resolve ``raw_uri`` against ``base`` and derive a display filename."""
    if raw_uri.startswith("data:"):
        return raw_uri, DATA_URI_FILENAME
    try:
        absolute = urljoin(base, raw_uri.strip())
    except ValueError:
        logger.debug("Could not resolve %r against %s", raw_uri, base)
        return raw_uri, FALLBACK_FILENAME
    return absolute, filename_from_uri(absolute)


def _image_candidates(document, registry: IdentityRegistry) -> Iterator[Candidate]:
    for node in document.images():
        src = node.attribute("src")
        if src is None:
            continue
        yield Candidate(src, *registry.locate(node, SOURCE_IMAGE), SOURCE_IMAGE)


def _css_candidates(document, registry: IdentityRegistry) -> Iterator[Candidate]:
    for node in document.elements():
        value = node.background_image()
        if not value or value == "none":
            continue
        tokens = css_uri_tokens(value)
        if not tokens:
            continue
        selector, treeinfo = registry.locate(node, SOURCE_CSS)
        for token in tokens:
            yield Candidate(token, selector, treeinfo, SOURCE_CSS)


def _vector_candidates(document, registry: IdentityRegistry) -> Iterator[Candidate]:
    for node in document.vector_graphics():
        rendered = [tag for tag in node.child_tags() if tag != "defs"]
        if not rendered:
            continue
        markup = registry.strip_markers(node.serialize())
        encoded = base64.b64encode(markup.encode("utf-8")).decode("ascii")
        yield Candidate(
            f"data:image/svg+xml;base64,{encoded}",
            *registry.locate(node, SOURCE_VECTOR),
            SOURCE_VECTOR,
        )


def _canvas_candidates(document, registry: IdentityRegistry) -> Iterator[Candidate]:
    for node in document.canvases():
        try:
            data_url = node.to_data_url()
        except CanvasTaintedError:
            logger.debug("Skipping tainted canvas in %s", document.url)
            continue
        if not data_url:
            continue
        yield Candidate(data_url, *registry.locate(node, SOURCE_CANVAS), SOURCE_CANVAS)


def extract(document, registry: IdentityRegistry) -> Iterator[Candidate]:
    """Yield candidates from all four sources of a single document."""
    yield from _image_candidates(document, registry)
    yield from _css_candidates(document, registry)
    yield from _vector_candidates(document, registry)
    yield from _canvas_candidates(document, registry)


def to_records(candidates, base: str) -> Dict[str, ResourceRecord]:
    """Resolve candidates into records keyed by absolute URI (first seen wins)."""
    records: Dict[str, ResourceRecord] = {}
    for candidate in candidates:
        uri, filename = resolve_uri(candidate.raw_uri, base)
        if uri in records:
            continue
        records[uri] = ResourceRecord(
            uri=uri,
            filename=filename,
            selector=candidate.selector,
            treeinfo=candidate.treeinfo,
        )
    return records


async def harvest(
    document,
    registry: IdentityRegistry,
    max_depth: int = MAX_FRAME_DEPTH,
) -> Dict[str, ResourceRecord]:
    """Extract records from ``document`` and, recursively, its readable frames."""
    records = to_records(extract(document, registry), document.url)
    await document.commit()
    if max_depth <= 0:
        return records
    for frame in document.frames():
        try:
            sub_document = await frame.open()
            sub_records = await harvest(sub_document, registry, max_depth - 1)
        except (FrameAccessError, PlaywrightError) as exc:
            logger.debug("Skipping frame %s: %s", frame.url, exc)
            continue
        for key, record in sub_records.items():
            records.setdefault(key, record)
    logger.debug("Harvested %d resource(s) from %s", len(records), document.url)
    return records
