"""Drive archive builds in response to ``RequestArchive`` events.

Only the most recent request counts. Every request gets the sequence number
the store assigned to it; a build whose sequence is no longer the one the
store is waiting for has its output discarded when it lands.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Sequence

import requests

from .archive import ArchiveBuildError, NothingSelectedError, build_archive
from .config import HarvestConfig
from .images import normalize_target
from .models import ArchiveOutput, Loading
from .store import (
    ArchiveFailed,
    ArchiveReady,
    CatalogState,
    CatalogStore,
    Event,
    MarkBadUris,
    RequestArchive,
)

logger = logging.getLogger("picpick.coordinator")


class ArchiveCoordinator:
    """Listens to the store and runs the archive pipeline for each request."""

    def __init__(
        self,
        store: CatalogStore,
        config: HarvestConfig,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.store = store
        self.config = config
        self.session = session or requests.Session()
        self._tasks: Dict[int, "asyncio.Task[Optional[ArchiveOutput]]"] = {}
        self._unsubscribe = store.subscribe(self._on_event)

    def close(self) -> None:
        self._unsubscribe()

    def request_archive(
        self, target: Optional[str] = None
    ) -> "asyncio.Task[Optional[ArchiveOutput]]":
        """Start a build of the current selection.

        The returned task resolves to the archive output, or to ``None`` when
        a newer request or a selection change superseded this one. Raises
        ``NothingSelectedError`` right away when the selection is empty.
        """
        target = normalize_target(target)
        if not self.store.state.selection:
            raise NothingSelectedError("nothing selected")
        # Without a running loop the build could never start; fail before Loading.
        asyncio.get_running_loop()
        state = self.store.dispatch(RequestArchive(target))
        return self._tasks[state.sequence]

    def _on_event(self, event: Event, old: CatalogState, new: CatalogState) -> None:
        if not isinstance(event, RequestArchive) or new.sequence == old.sequence:
            return
        sequence = new.sequence
        task = asyncio.get_running_loop().create_task(
            self._build(sequence, new, event.target),
            name=f"picpick-archive-{sequence}",
        )
        self._tasks[sequence] = task
        task.add_done_callback(self._finished)

    def _finished(self, task: "asyncio.Task[Optional[ArchiveOutput]]") -> None:
        for sequence, pending in list(self._tasks.items()):
            if pending is task:
                del self._tasks[sequence]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Archive task %s ended with %r", task.get_name(), task.exception())

    def _mark_bad(self, sequence: int, uris: Sequence[str]) -> None:
        # Stale builds may describe a page the catalog has since left.
        if uris and self.store.state.archive == Loading(sequence):
            self.store.dispatch(MarkBadUris(tuple(uris)))

    async def _build(
        self, sequence: int, state: CatalogState, target: Optional[str]
    ) -> Optional[ArchiveOutput]:
        logger.info(
            "Building archive #%d from %d selected record(s)",
            sequence,
            len(state.selection),
        )
        try:
            result = await build_archive(
                state.selection, target, state.password, self.session, self.config
            )
        except asyncio.CancelledError:
            self.store.dispatch(ArchiveFailed(sequence))
            raise
        except NothingSelectedError as exc:
            logger.warning("Archive #%d: nothing left to pack", sequence)
            self._mark_bad(sequence, exc.bad_uris)
            self.store.dispatch(ArchiveFailed(sequence))
            raise
        except ArchiveBuildError:
            logger.exception("Archive #%d failed", sequence)
            self.store.dispatch(ArchiveFailed(sequence))
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected error while building archive #%d", sequence)
            self.store.dispatch(ArchiveFailed(sequence))
            raise ArchiveBuildError(f"archive #{sequence} failed: {exc}") from exc

        self._mark_bad(sequence, result.bad_uris)
        new_state = self.store.dispatch(ArchiveReady(result.output, sequence))
        if new_state.output is not result.output:
            logger.info("Archive #%d was superseded", sequence)
            return None
        return result.output
