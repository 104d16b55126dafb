"""The scanning context: periodic and on-demand harvests of one document."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .config import HarvestConfig
from .extractor import harvest
from .identity import IdentityRegistry
from .messages import Channel, Message, PutImgList, RequestImgList, SelectDOMElement

logger = logging.getLogger("picpick.scanner")

DocumentProvider = Callable[[], Awaitable[object]]


class ScanAgent:
    """Answers scan/highlight commands and re-scans on a fixed interval.

    Scans never overlap: a request that arrives while one is running is
    folded into a single follow-up scan.
    """

    def __init__(
        self,
        provider: DocumentProvider,
        channel: Channel,
        config: HarvestConfig,
        registry: Optional[IdentityRegistry] = None,
    ) -> None:
        self.provider = provider
        self.channel = channel
        self.config = config
        self.registry = registry or IdentityRegistry(config.marker_prefix)
        self.scan_count = 0
        self._scanning = False
        self._pending = False
        self._document = None

    async def request_scan(self) -> bool:
        """Scan now, or mark a follow-up if a scan is running. Returns True if it scanned."""
        if self._scanning:
            self._pending = True
            return False
        self._scanning = True
        try:
            while True:
                self._pending = False
                try:
                    await self._scan_once()
                except Exception:  # pylint: disable=broad-except
                    logger.exception("Scan failed; will retry on the next request")
                if not self._pending:
                    break
        finally:
            self._scanning = False
        return True

    async def _scan_once(self) -> None:
        document = await self.provider()
        self._document = document
        records = await harvest(document, self.registry)
        self.scan_count += 1
        logger.debug("Scan %d of %s found %d record(s)", self.scan_count, document.url, len(records))
        await self.channel.to_catalog.put(PutImgList(url=document.url, imglist=records))

    async def select_element(self, selector: str) -> bool:
        if self._document is None:
            self._document = await self.provider()
        found = await self._document.highlight(selector)
        if not found:
            logger.debug("Selector %s no longer matches; highlight cleared", selector)
        return found

    async def handle(self, message: Message) -> None:
        if isinstance(message, RequestImgList):
            await self.request_scan()
        elif isinstance(message, SelectDOMElement):
            await self.select_element(message.selector)
        else:
            logger.warning("Scanner ignoring unexpected message %r", message)

    async def serve(self) -> None:
        while True:
            message = await self.channel.to_scanner.get()
            await self.handle(message)

    async def run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self.config.scan_interval)
            await self.request_scan()

    async def run(self) -> None:
        """Scan once (page load), then serve commands and the re-scan timer."""
        await self.request_scan()
        await asyncio.gather(self.serve(), self.run_periodic())
