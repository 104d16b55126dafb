"""Catalog state, the events that change it, and the store that owns it.

``apply`` is a pure transition function. ``CatalogStore`` is the only
writer: it applies events one at a time, releases archive outputs that a
transition dropped, and notifies listeners with ``(event, old, new)``.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from .models import ArchiveOutput, Idle, Loading, PipelineState, Ready, ResourceRecord
from .utils import append_extension

logger = logging.getLogger("picpick.store")


@dataclass(frozen=True)
class SetAddress:
    url: str


@dataclass(frozen=True)
class AddRecords:
    records: Tuple[ResourceRecord, ...]


@dataclass(frozen=True)
class RenameRecord:
    uri: str
    filename: str


@dataclass(frozen=True)
class ResolvePayload:
    uri: str
    payload: bytes = field(repr=False)
    content_type: Optional[str]
    extension: str


@dataclass(frozen=True)
class MarkBadUris:
    uris: Tuple[str, ...]


@dataclass(frozen=True)
class SetSelection:
    records: Tuple[ResourceRecord, ...]


@dataclass(frozen=True)
class SetPassword:
    password: str


@dataclass(frozen=True)
class RequestArchive:
    target: Optional[str] = None


@dataclass(frozen=True)
class ArchiveReady:
    output: ArchiveOutput
    sequence: int
    generated_at: dt.datetime = field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc)
    )


@dataclass(frozen=True)
class ArchiveFailed:
    sequence: int


@dataclass(frozen=True)
class ClearArchiveOutput:
    pass


Event = Union[
    SetAddress,
    AddRecords,
    RenameRecord,
    ResolvePayload,
    MarkBadUris,
    SetSelection,
    SetPassword,
    RequestArchive,
    ArchiveReady,
    ArchiveFailed,
    ClearArchiveOutput,
]


@dataclass(frozen=True)
class CatalogState:
    """Read-only snapshot of everything the presentation layer may show."""

    url: str = ""
    items: Mapping[str, ResourceRecord] = field(default_factory=dict)
    selection: Tuple[ResourceRecord, ...] = ()
    bad_uris: FrozenSet[str] = frozenset()
    password: str = ""
    archive: PipelineState = Idle()
    sequence: int = 0

    @property
    def output(self) -> Optional[ArchiveOutput]:
        if isinstance(self.archive, Ready):
            return self.archive.output
        return None


def _refresh_selection(
    selection: Sequence[ResourceRecord], items: Mapping[str, ResourceRecord]
) -> Tuple[ResourceRecord, ...]:
    return tuple(items.get(record.uri, record) for record in selection)


def apply(state: CatalogState, event: Event) -> CatalogState:
    """Return the state that results from applying ``event`` to ``state``."""
    if isinstance(event, SetAddress):
        if event.url == state.url:
            return state
        return replace(
            state,
            url=event.url,
            items={},
            selection=(),
            bad_uris=frozenset(),
            archive=Idle(),
        )

    if isinstance(event, AddRecords):
        fresh = {
            record.uri: record
            for record in event.records
            if record.uri not in state.items and record.uri not in state.bad_uris
        }
        if not fresh:
            return state
        items: Dict[str, ResourceRecord] = dict(state.items)
        for uri, record in fresh.items():
            items.setdefault(uri, record)
        return replace(state, items=items)

    if isinstance(event, RenameRecord):
        current = state.items.get(event.uri)
        if current is None:
            return state
        items = dict(state.items)
        items[event.uri] = replace(current, filename=event.filename)
        return replace(
            state, items=items, selection=_refresh_selection(state.selection, items)
        )

    if isinstance(event, ResolvePayload):
        current = state.items.get(event.uri)
        if current is None or current.resolved:
            return state
        items = dict(state.items)
        items[event.uri] = current.with_payload(
            event.payload,
            event.content_type,
            append_extension(current.filename, event.extension),
        )
        return replace(
            state, items=items, selection=_refresh_selection(state.selection, items)
        )

    if isinstance(event, MarkBadUris):
        bad = frozenset(event.uris)
        items = {uri: record for uri, record in state.items.items() if uri not in bad}
        selection = tuple(record for record in state.selection if record.uri not in bad)
        return replace(
            state, items=items, selection=selection, bad_uris=state.bad_uris | bad
        )

    if isinstance(event, SetSelection):
        return replace(state, selection=tuple(event.records), archive=Idle())

    if isinstance(event, SetPassword):
        return replace(state, password=event.password)

    if isinstance(event, RequestArchive):
        if not state.selection:
            return state
        sequence = state.sequence + 1
        return replace(state, sequence=sequence, archive=Loading(sequence))

    if isinstance(event, ArchiveReady):
        if state.archive != Loading(event.sequence):
            return state
        return replace(
            state,
            archive=Ready(event.output, event.generated_at, event.sequence),
        )

    if isinstance(event, ArchiveFailed):
        if state.archive != Loading(event.sequence):
            return state
        return replace(state, archive=Idle())

    if isinstance(event, ClearArchiveOutput):
        if isinstance(state.archive, Idle):
            return state
        return replace(state, archive=Idle())

    raise TypeError(f"Unknown event {event!r}")


Listener = Callable[[Event, CatalogState, CatalogState], None]


class CatalogStore:
    """Single writer for ``CatalogState``."""

    def __init__(self, state: Optional[CatalogState] = None) -> None:
        self._state = state or CatalogState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> CatalogState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, event: Event) -> CatalogState:
        old = self._state
        new = apply(old, event)
        self._state = new
        self._release_dropped(event, old, new)
        for listener in list(self._listeners):
            listener(event, old, new)
        return new

    def _release_dropped(self, event: Event, old: CatalogState, new: CatalogState) -> None:
        held = new.output
        if old.output is not None and old.output is not held:
            old.output.release()
        if isinstance(event, ArchiveReady) and event.output is not held:
            logger.debug("Discarding superseded archive #%d", event.sequence)
            event.output.release()
