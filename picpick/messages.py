"""Messages exchanged between the scanning context and the catalog context."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from .models import ResourceRecord

REQUEST_IMG_LIST = "requestImgList"
PUT_IMG_LIST = "putImgList"
SELECT_DOM_ELEMENT = "selectDOMElement"


@dataclass(frozen=True)
class RequestImgList:
    """Ask the scanning context for an immediate scan."""

    def to_dict(self) -> Dict[str, Any]:
        return {"command": REQUEST_IMG_LIST}


@dataclass(frozen=True)
class PutImgList:
    """Scan result: payload-free records keyed by resolved URI."""

    url: str
    imglist: Dict[str, ResourceRecord] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": PUT_IMG_LIST,
            "url": self.url,
            "imglist": {key: record.to_message() for key, record in self.imglist.items()},
        }


@dataclass(frozen=True)
class SelectDOMElement:
    """Highlight the node carrying ``selector`` in the scanned page."""

    selector: str

    def to_dict(self) -> Dict[str, Any]:
        return {"command": SELECT_DOM_ELEMENT, "selector": self.selector}


Message = Union[RequestImgList, PutImgList, SelectDOMElement]


def parse_message(data: Dict[str, Any]) -> Message:
    """Build a message from its wire dictionary."""
    command = data.get("command")
    if command == REQUEST_IMG_LIST:
        return RequestImgList()
    if command == PUT_IMG_LIST:
        imglist = {
            key: ResourceRecord.from_message(value)
            for key, value in (data.get("imglist") or {}).items()
        }
        return PutImgList(url=data["url"], imglist=imglist)
    if command == SELECT_DOM_ELEMENT:
        return SelectDOMElement(selector=data["selector"])
    raise ValueError(f"Unknown command {command!r}")


class Channel:
    """Two one-way queues: commands to the scanner, scan results back."""

    def __init__(self) -> None:
        self.to_scanner: "asyncio.Queue[Message]" = asyncio.Queue()
        self.to_catalog: "asyncio.Queue[Message]" = asyncio.Queue()
