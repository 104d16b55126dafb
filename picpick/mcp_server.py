"""MCP server exposing picpick scan/archive tools."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import HarvestConfig
from .crawler import archive_url, scan_urls

logger = logging.getLogger("picpick.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="picpick")


@mcp.tool()
async def scan(url: str) -> str:
    """Render a web page and list the image-like resources it displays as JSON."""
    results = await scan_urls([url], HarvestConfig())
    if not results:
        raise RuntimeError(f"Failed to scan {url}")
    result = results[0]
    return json.dumps(
        {
            "url": result.url,
            "resources": [
                {
                    "uri": record.uri if not record.uri.startswith("data:") else record.uri[:64],
                    "filename": record.filename,
                    "filesize": record.filesize,
                    "selector": record.selector,
                    "treeinfo": record.treeinfo,
                }
                for record in result.records
            ],
            "bad_uris": result.bad_uris,
        },
        indent=2,
    )


@mcp.tool()
async def archive(
    url: str,
    destination: str,
    convert: Optional[str] = None,
    password: str = "",
    match: Optional[str] = None,
) -> str:
    """Download the images of a web page into a zip archive and return its path."""
    target = Path(destination).expanduser().resolve()
    saved = await archive_url(
        url,
        HarvestConfig(),
        target,
        target=convert,
        password=password,
        match=match,
    )
    if saved is None:
        raise RuntimeError(f"Archive request for {url} was superseded")
    return str(saved)


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
