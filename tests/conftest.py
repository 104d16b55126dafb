import base64
import io
from pathlib import Path
from typing import Callable, Dict, Tuple

import pytest
import requests
from PIL import Image

from picpick.config import HarvestConfig


def _png_bytes(color: Tuple[int, int, int] = (255, 0, 0), size: Tuple[int, int] = (4, 4)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def _data_uri(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


class FakeResponse:
    def __init__(self, content: bytes, content_type: str, status: int = 200) -> None:
        self.content = content
        self.headers = {"Content-Type": content_type}
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeHTTP:
    """Stands in for ``requests.Session``; unknown URLs fail to connect."""

    def __init__(self) -> None:
        self.routes: Dict[str, FakeResponse] = {}
        self.calls = []

    def add(self, url: str, content: bytes, content_type: str = "", status: int = 200) -> None:
        self.routes[url] = FakeResponse(content, content_type, status)

    def get(self, url: str, timeout: float = 0):
        self.calls.append(url)
        if url not in self.routes:
            raise requests.ConnectionError(f"cannot reach {url}")
        return self.routes[url]


@pytest.fixture
def png_bytes() -> Callable[..., bytes]:
    return _png_bytes


@pytest.fixture
def data_uri() -> Callable[..., str]:
    return _data_uri


@pytest.fixture
def fake_http() -> FakeHTTP:
    return FakeHTTP()


@pytest.fixture
def config(tmp_path: Path) -> HarvestConfig:
    return HarvestConfig(output_root=tmp_path / "out", scan_interval=0.01)
