"""High-level orchestration: render a page, harvest it, build an archive."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .config import HarvestConfig
from .dom import LiveDocument
from .messages import Channel
from .models import ArchiveOutput, ResourceRecord
from .scanner import ScanAgent
from .session import Session

logger = logging.getLogger("picpick")


@dataclass
class HarvestResult:
    """Catalog contents for one rendered page."""

    url: str
    records: List[ResourceRecord]
    bad_uris: List[str]


async def open_page(
    playwright: Playwright,
    url: str,
    config: HarvestConfig,
) -> Tuple[Browser, Page]:
    """Launch a browser and navigate to ``url``; the caller closes the browser."""
    browser = await playwright.chromium.launch(headless=True)
    page = await browser.new_page()
    page.set_default_navigation_timeout(config.navigation_timeout * 1000)
    try:
        logger.info("Loading %s", url)
        await page.goto(url, wait_until="networkidle")
        if config.wait_after_load:
            await page.wait_for_timeout(int(config.wait_after_load * 1000))
    except Exception:
        await browser.close()
        raise
    return browser, page


def attach(page: Page, config: HarvestConfig) -> Tuple[ScanAgent, Session]:
    """Wire a scanner for ``page`` and a catalog session over one channel."""
    channel = Channel()

    async def provider() -> LiveDocument:
        return await LiveDocument.capture(page.main_frame)

    return ScanAgent(provider, channel, config), Session(channel, config)


async def harvest_page(page: Page, config: HarvestConfig) -> Tuple[ScanAgent, Session]:
    """Scan ``page`` once and resolve every discovered payload."""
    agent, session = attach(page, config)
    await agent.request_scan()
    session.drain()
    await session.wait_for_payloads()
    return agent, session


def _result(session: Session) -> HarvestResult:
    state = session.state
    return HarvestResult(
        url=state.url,
        records=list(state.items.values()),
        bad_uris=sorted(state.bad_uris),
    )


async def scan_urls(urls: List[str], config: HarvestConfig) -> List[HarvestResult]:
    """Render each URL sequentially and report what was harvested."""
    results: List[HarvestResult] = []
    async with async_playwright() as playwright:
        for url in urls:
            try:
                browser, page = await open_page(playwright, url, config)
            except PlaywrightTimeoutError as exc:
                logger.error("Timeout while loading %s: %s", url, exc)
                continue
            except Exception:  # pylint: disable=broad-except
                logger.exception("Unexpected error loading %s", url)
                continue
            try:
                _, session = await harvest_page(page, config)
                results.append(_result(session))
                session.close()
            finally:
                await browser.close()
    return results


def matches(record: ResourceRecord, needle: Optional[str]) -> bool:
    if not needle:
        return True
    needle = needle.lower()
    return needle in record.uri.lower() or needle in record.filename.lower()


async def archive_url(
    url: str,
    config: HarvestConfig,
    destination: Path,
    target: Optional[str] = None,
    password: str = "",
    match: Optional[str] = None,
) -> Optional[Path]:
    """Harvest ``url``, select matching records and copy the archive to ``destination``."""
    async with async_playwright() as playwright:
        browser, page = await open_page(playwright, url, config)
        try:
            _, session = await harvest_page(page, config)
        finally:
            await browser.close()

    selected = session.select(
        uri for uri, record in session.state.items.items() if matches(record, match)
    )
    logger.info("Selected %d of %d resource(s)", len(selected), len(session.state.items))
    session.set_password(password)
    try:
        output: Optional[ArchiveOutput] = await session.request_archive(target)
        if output is None:
            return None
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(output.path, destination)
    finally:
        session.close()
    logger.info("Saved archive to %s", destination)
    return destination
