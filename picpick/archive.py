"""Fetch, convert and pack a selection of records into one zip archive."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pyzipper
import requests

from .config import HarvestConfig
from .images import (
    ConversionError,
    FetchError,
    convert_image,
    fetch_payload,
    infer_image_extension,
)
from .models import ArchiveOutput, ResourceRecord
from .utils import append_extension, change_extension, sanitize_filename, unique_names

logger = logging.getLogger("picpick.archive")

# Fixed entry timestamp keeps unencrypted archives byte-for-byte reproducible.
ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)


class NothingSelectedError(RuntimeError):
    """Raised when a build has no record left to pack."""

    def __init__(self, message: str = "nothing selected", bad_uris: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.bad_uris = list(bad_uris)


class ArchiveBuildError(RuntimeError):
    """Raised when the archive container itself cannot be written."""


@dataclass
class ArchiveResult:
    """Outcome of one pipeline run."""

    output: ArchiveOutput
    bad_uris: List[str] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)


async def resolve_record(
    record: ResourceRecord,
    session: requests.Session,
    config: HarvestConfig,
) -> ResourceRecord:
    """Ensure ``record`` has a payload and an extension matching its real type.

    Raises ``FetchError`` when the payload cannot be fetched or classified.
    """
    if record.payload is not None:
        data, content_type = record.payload, record.content_type
    else:
        data, content_type = await asyncio.to_thread(
            fetch_payload,
            record.uri,
            session,
            config.fetch_timeout,
            config.max_payload_bytes,
        )
    extension = infer_image_extension(content_type, data)
    if not extension:
        raise FetchError(f"undeterminable content type for {record.uri[:64]}")
    return record.with_payload(
        data, content_type, append_extension(record.filename, extension)
    )


async def _acquire(
    record: ResourceRecord,
    session: requests.Session,
    config: HarvestConfig,
) -> Optional[ResourceRecord]:
    try:
        return await resolve_record(record, session, config)
    except FetchError as exc:
        logger.warning("Dropping %s: %s", record.uri[:120], exc)
        return None


async def _convert(record: ResourceRecord, target: Optional[str]) -> Optional[Tuple[str, bytes]]:
    if not target:
        return record.filename, record.payload
    kind = infer_image_extension(record.content_type, record.payload)
    if kind == target:
        return record.filename, record.payload
    try:
        converted = await asyncio.to_thread(convert_image, record.payload, target)
    except ConversionError as exc:
        logger.warning("Excluding %s from archive: %s", record.filename, exc)
        return None
    return change_extension(record.filename, target), converted


def write_archive(path: Path, entries: Sequence[Tuple[str, bytes]], password: str) -> None:
    """Write ``entries`` into a deflated zip, AES-encrypted when ``password`` is set."""
    options = {"compression": pyzipper.ZIP_DEFLATED}
    if password:
        options["encryption"] = pyzipper.WZ_AES
    with pyzipper.AESZipFile(path, "w", **options) as archive:
        if password:
            archive.setpassword(password.encode("utf-8"))
        for name, data in entries:
            info = archive.zipinfo_cls(name, date_time=ENTRY_DATE_TIME)
            info.compress_type = pyzipper.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            archive.writestr(info, data)


async def build_archive(
    records: Sequence[ResourceRecord],
    target: Optional[str],
    password: str,
    session: requests.Session,
    config: HarvestConfig,
) -> ArchiveResult:
    """Run the fetch, convert, sanitize and pack stages over ``records``."""
    if not records:
        raise NothingSelectedError("nothing selected")

    acquired = await asyncio.gather(
        *(_acquire(record, session, config) for record in records)
    )
    bad_uris = [
        record.uri for record, result in zip(records, acquired) if result is None
    ]
    resolved = [result for result in acquired if result is not None]

    converted = await asyncio.gather(*(_convert(record, target) for record in resolved))
    excluded = [
        record.uri for record, result in zip(resolved, converted) if result is None
    ]
    survivors = [result for result in converted if result is not None]
    if not survivors:
        raise NothingSelectedError("nothing selected: no record could be packed", bad_uris)

    names = unique_names(sanitize_filename(name) for name, _ in survivors)
    entries = [(name, data) for name, (_, data) in zip(names, survivors)]

    config.output_root.mkdir(parents=True, exist_ok=True)
    path = config.output_root / f"{config.archive_name}-{uuid.uuid4().hex[:12]}.zip"
    try:
        await asyncio.to_thread(write_archive, path, entries, password)
    except (OSError, RuntimeError, ValueError) as exc:
        path.unlink(missing_ok=True)
        raise ArchiveBuildError(f"failed to write archive {path}: {exc}") from exc

    output = ArchiveOutput(
        path=path,
        generated_at=dt.datetime.now(dt.timezone.utc),
        entry_count=len(entries),
        encrypted=bool(password),
    )
    logger.info(
        "Packed %d file(s) into %s (%d dropped, %d excluded)",
        len(entries),
        path,
        len(bad_uris),
        len(excluded),
    )
    return ArchiveResult(output=output, bad_uris=bad_uris, excluded=excluded)
