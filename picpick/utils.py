"""Utility helpers for filename normalization."""

from __future__ import annotations

import re
from typing import Iterable, List, Set

RESERVED_PATTERN = re.compile(r'[\\/:*?"<>|]')

EXTENSION_ALIASES = {
    "jpg": ("jpg", "jpeg"),
    "tiff": ("tiff", "tif"),
}


def sanitize_filename(name: str) -> str:
    """Percent-encode characters that are unsafe inside an archive entry name."""
    return RESERVED_PATTERN.sub(lambda match: "%{:x}".format(ord(match.group(0))), name)


def has_extension(filename: str, extension: str) -> bool:
    """Return True if ``filename`` already ends with ``extension`` or an alias of it."""
    lowered = filename.lower()
    aliases = EXTENSION_ALIASES.get(extension, (extension,))
    return any(lowered.endswith("." + alias) for alias in aliases)


def append_extension(filename: str, extension: str) -> str:
    if has_extension(filename, extension):
        return filename
    return f"{filename}.{extension}"


def change_extension(filename: str, extension: str) -> str:
    """Replace the trailing extension of ``filename``, or append one if missing."""
    stem, dot, suffix = filename.rpartition(".")
    if dot and stem and "/" not in suffix:
        return f"{stem}.{extension}"
    return f"{filename}.{extension}"


def unique_names(names: Iterable[str]) -> List[str]:
    """Disambiguate repeated names with a ``-N`` suffix in first-seen order."""
    seen: Set[str] = set()
    result: List[str] = []
    for name in names:
        candidate = name
        counter = 1
        while candidate in seen:
            stem, dot, suffix = name.rpartition(".")
            if dot and stem:
                candidate = f"{stem}-{counter}.{suffix}"
            else:
                candidate = f"{name}-{counter}"
            counter += 1
        seen.add(candidate)
        result.append(candidate)
    return result
