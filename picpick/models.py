"""Data models used throughout the harvesting pipeline."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger("picpick")

SOURCE_IMAGE = "img"
SOURCE_CSS = "css"
SOURCE_VECTOR = "svg"
SOURCE_CANVAS = "canvas"


@dataclass(frozen=True)
class Candidate:
    """Raw resource reference discovered while walking a document."""

    raw_uri: str
    selector: str
    treeinfo: str
    source: str


@dataclass(frozen=True)
class ResourceRecord:
    """A discovered resource keyed by its resolved absolute URI."""

    uri: str
    filename: str
    selector: str
    treeinfo: str
    payload: Optional[bytes] = field(default=None, repr=False)
    filesize: Optional[int] = None
    content_type: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.payload is not None

    def with_payload(
        self, payload: bytes, content_type: Optional[str], filename: str
    ) -> "ResourceRecord":
        return replace(
            self,
            payload=payload,
            filesize=len(payload),
            content_type=content_type,
            filename=filename,
        )

    def to_message(self) -> dict:
        """Payload-free representation used on the scan channel."""
        return {
            "uri": self.uri,
            "filename": self.filename,
            "selector": self.selector,
            "treeinfo": self.treeinfo,
        }

    @classmethod
    def from_message(cls, data: dict) -> "ResourceRecord":
        return cls(
            uri=data["uri"],
            filename=data["filename"],
            selector=data["selector"],
            treeinfo=data["treeinfo"],
        )


@dataclass
class ArchiveOutput:
    """A generated archive file that can be handed out and later released."""

    path: Path
    generated_at: dt.datetime
    entry_count: int
    encrypted: bool = False
    released: bool = False

    @property
    def uri(self) -> str:
        return self.path.resolve().as_uri()

    def release(self) -> None:
        """Revoke the output by deleting the underlying file."""
        if self.released:
            return
        self.released = True
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        logger.debug("Released archive output %s", self.path)


@dataclass(frozen=True)
class Idle:
    """No archive has been requested since the last reset."""


@dataclass(frozen=True)
class Loading:
    """An archive build for ``sequence`` is in flight."""

    sequence: int


@dataclass(frozen=True)
class Ready:
    """The archive for ``sequence`` is available."""

    output: ArchiveOutput
    generated_at: dt.datetime
    sequence: int


PipelineState = Union[Idle, Loading, Ready]
