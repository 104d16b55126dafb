"""Configuration objects and constants for harvesting and archiving."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger("picpick")

DEFAULT_MARKER_PREFIX = "picpickdl"
DEFAULT_ARCHIVE_NAME = "generated_zip_file"
DEFAULT_SCAN_INTERVAL = 3.0
MAX_PAYLOAD_BYTES = 25 * 1024 * 1024


def _resolve_env_output_root() -> Optional[Path]:
    override = os.getenv("PICPICK_OUTPUT_DIR")
    if not override:
        return None
    override_path = Path(override).expanduser()
    if override_path.is_dir():
        logger.debug("PICPICK_OUTPUT_DIR override detected at %s", override_path)
        return override_path
    logger.warning(
        "PICPICK_OUTPUT_DIR is set to %s but it is not a directory; ignoring it",
        override_path,
    )
    return None


def default_output_root() -> Path:
    return _resolve_env_output_root() or Path("output")


@dataclass
class HarvestConfig:
    """Top-level settings that control scanning, fetching and archiving."""

    output_root: Path = field(default_factory=default_output_root)
    wait_after_load: float = 1.0
    navigation_timeout: float = 30.0
    scan_interval: float = DEFAULT_SCAN_INTERVAL
    fetch_timeout: float = 15.0
    max_payload_bytes: int = MAX_PAYLOAD_BYTES
    fetch_concurrency: int = 6
    archive_name: str = DEFAULT_ARCHIVE_NAME
    marker_prefix: str = DEFAULT_MARKER_PREFIX
