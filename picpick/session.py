"""The catalog context: ingests scan results and exposes user operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Set

import requests

from .archive import resolve_record
from .config import HarvestConfig
from .coordinator import ArchiveCoordinator
from .images import FetchError, infer_image_extension
from .messages import Channel, PutImgList, RequestImgList, SelectDOMElement
from .models import ArchiveOutput, ResourceRecord
from .store import (
    AddRecords,
    CatalogState,
    CatalogStore,
    ClearArchiveOutput,
    MarkBadUris,
    RenameRecord,
    ResolvePayload,
    SetAddress,
    SetPassword,
    SetSelection,
)

logger = logging.getLogger("picpick.session")


class Session:
    """Owns the store, feeds it scan results and resolves payloads eagerly."""

    def __init__(
        self,
        channel: Channel,
        config: HarvestConfig,
        store: Optional[CatalogStore] = None,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.channel = channel
        self.config = config
        self.store = store or CatalogStore()
        self.http = http or requests.Session()
        self.coordinator = ArchiveCoordinator(self.store, config, self.http)
        self._semaphore = asyncio.Semaphore(config.fetch_concurrency)
        self._fetches: Set["asyncio.Task[None]"] = set()

    @property
    def state(self) -> CatalogState:
        return self.store.state

    # -- scan ingestion -----------------------------------------------------

    def ingest(self, message: PutImgList) -> List[str]:
        """Apply one scan result; returns the keys that were new to the catalog."""
        self.store.dispatch(SetAddress(message.url))
        before = self.store.state.items
        after = self.store.dispatch(AddRecords(tuple(message.imglist.values()))).items
        added = [uri for uri in after if uri not in before]
        for uri in added:
            self._schedule_fetch(after[uri], message.url)
        if added:
            logger.info("Discovered %d new resource(s) on %s", len(added), message.url)
        return added

    def drain(self) -> int:
        """Ingest every scan result currently queued on the channel."""
        count = 0
        while not self.channel.to_catalog.empty():
            message = self.channel.to_catalog.get_nowait()
            if isinstance(message, PutImgList):
                self.ingest(message)
                count += 1
        return count

    async def run(self) -> None:
        while True:
            message = await self.channel.to_catalog.get()
            if isinstance(message, PutImgList):
                self.ingest(message)
            else:
                logger.warning("Catalog ignoring unexpected message %r", message)

    def _schedule_fetch(self, record: ResourceRecord, url: str) -> None:
        task = asyncio.get_running_loop().create_task(self._fetch(record, url))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)

    async def _fetch(self, record: ResourceRecord, url: str) -> None:
        async with self._semaphore:
            try:
                resolved = await resolve_record(record, self.http, self.config)
            except FetchError as exc:
                if self.store.state.url == url:
                    logger.debug("Marking %s as bad: %s", record.uri[:120], exc)
                    self.store.dispatch(MarkBadUris((record.uri,)))
                return
        if self.store.state.url != url:
            return
        extension = infer_image_extension(resolved.content_type, resolved.payload)
        self.store.dispatch(
            ResolvePayload(
                resolved.uri, resolved.payload, resolved.content_type, extension
            )
        )

    async def wait_for_payloads(self) -> None:
        """Wait until every eager fetch started so far has finished."""
        while self._fetches:
            await asyncio.gather(*list(self._fetches))

    # -- presentation entry points -------------------------------------------

    def rename(self, uri: str, filename: str) -> None:
        self.store.dispatch(RenameRecord(uri, filename))

    def select(self, uris: Iterable[str]) -> List[ResourceRecord]:
        items = self.store.state.items
        records = tuple(items[uri] for uri in uris if uri in items)
        self.store.dispatch(SetSelection(records))
        return list(records)

    def set_password(self, password: str) -> None:
        self.store.dispatch(SetPassword(password))

    def request_archive(
        self, target: Optional[str] = None
    ) -> "asyncio.Task[Optional[ArchiveOutput]]":
        return self.coordinator.request_archive(target)

    def clear_archive(self) -> None:
        self.store.dispatch(ClearArchiveOutput())

    async def request_scan(self) -> None:
        await self.channel.to_scanner.put(RequestImgList())

    async def highlight(self, selector: str) -> None:
        await self.channel.to_scanner.put(SelectDOMElement(selector))

    def close(self) -> None:
        self.coordinator.close()
        self.clear_archive()
