import asyncio

import pytest

from picpick.dom import StaticDocument
from picpick.messages import Channel, PutImgList, RequestImgList, SelectDOMElement
from picpick.scanner import ScanAgent

PAGE = "https://example.com/"


class SlowProvider:
    def __init__(self, document) -> None:
        self.document = document
        self.calls = 0
        self.release = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        if self.calls == 1:
            await self.release.wait()
        return self.document


@pytest.mark.asyncio
async def test_overlapping_scan_requests_are_coalesced(config) -> None:
    provider = SlowProvider(StaticDocument('<img src="a.png">', PAGE))
    channel = Channel()
    agent = ScanAgent(provider, channel, config)

    running = asyncio.create_task(agent.request_scan())
    await asyncio.sleep(0)
    assert await agent.request_scan() is False
    assert await agent.request_scan() is False
    provider.release.set()

    assert await running is True
    assert agent.scan_count == 2
    assert provider.calls == 2
    assert channel.to_catalog.qsize() == 2


@pytest.mark.asyncio
async def test_scan_posts_put_img_list(config) -> None:
    document = StaticDocument('<img src="a.png">', PAGE)
    channel = Channel()

    async def provider():
        return document

    agent = ScanAgent(provider, channel, config)
    await agent.handle(RequestImgList())

    message = channel.to_catalog.get_nowait()
    assert isinstance(message, PutImgList)
    assert message.url == PAGE
    assert list(message.imglist) == [PAGE + "a.png"]


@pytest.mark.asyncio
async def test_select_element_highlights_and_clears(config) -> None:
    document = StaticDocument('<img src="a.png">', PAGE)
    channel = Channel()

    async def provider():
        return document

    agent = ScanAgent(provider, channel, config)
    await agent.request_scan()
    selector = channel.to_catalog.get_nowait().imglist[PAGE + "a.png"].selector

    await agent.handle(SelectDOMElement(selector))
    assert document.highlighted == selector

    await agent.handle(SelectDOMElement(".picpickdlgone"))
    assert document.highlighted is None


@pytest.mark.asyncio
async def test_periodic_scans_run_on_interval(config) -> None:
    document = StaticDocument('<img src="a.png">', PAGE)
    channel = Channel()

    async def provider():
        return document

    agent = ScanAgent(provider, channel, config)
    runner = asyncio.create_task(agent.run())
    while agent.scan_count < 3:
        await asyncio.sleep(config.scan_interval)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    selectors = set()
    while not channel.to_catalog.empty():
        selectors.add(channel.to_catalog.get_nowait().imglist[PAGE + "a.png"].selector)
    assert len(selectors) == 1


@pytest.mark.asyncio
async def test_failed_scan_does_not_stop_the_agent(config) -> None:
    document = StaticDocument('<img src="a.png">', PAGE)
    channel = Channel()
    calls = []

    async def provider():
        calls.append(1)
        if len(calls) == 2:
            raise RuntimeError("Execution context was destroyed")
        return document

    agent = ScanAgent(provider, channel, config)
    runner = asyncio.create_task(agent.run())
    while agent.scan_count < 3:
        await asyncio.sleep(config.scan_interval)

    assert not runner.done()
    assert len(calls) >= 4
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner


@pytest.mark.asyncio
async def test_request_scan_survives_provider_error(config, caplog) -> None:
    channel = Channel()

    async def provider():
        raise RuntimeError("navigating")

    agent = ScanAgent(provider, channel, config)

    assert await agent.request_scan() is True
    assert agent.scan_count == 0
    assert channel.to_catalog.empty()
    assert "Scan failed" in caplog.text
    assert await agent.request_scan() is True
