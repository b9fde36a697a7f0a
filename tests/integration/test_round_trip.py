"""End-to-end tests over a real WebSocket.

The controller listens on an ephemeral localhost port and a puppet running on
an in-memory page connects to it from the same event loop.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from browser_puppeteer.agent.page import VirtualPage
from browser_puppeteer.agent.puppet import BrowserPuppet
from browser_puppeteer.codec import ScriptFunction
from browser_puppeteer.commands import Commands
from browser_puppeteer.config import PuppeteerSettings, PuppetSettings
from browser_puppeteer.controller.puppeteer import BrowserPuppeteer
from browser_puppeteer.errors import CommandExecutionFailure, ConnectionLost
from browser_puppeteer.messages import Upstream

pytestmark = pytest.mark.integration


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def assets_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "assets"
    directory.mkdir()
    (directory / "puppet.js").write_text("window.puppet = {};\n", encoding="utf-8")
    return directory


@pytest.fixture
async def puppeteer(assets_dir: Path):
    controller = BrowserPuppeteer(
        PuppeteerSettings(
            host="127.0.0.1",
            port=0,
            assets_dir=assets_dir,
            connection_poll_interval=0.05,
        )
    )
    await controller.start()
    yield controller
    await controller.stop()


@pytest.fixture
async def live_puppet(puppeteer: BrowserPuppeteer, page: VirtualPage, puppet_settings):
    settings = puppet_settings.model_copy(
        update={"server_url": f"ws://127.0.0.1:{puppeteer.port}"}
    )
    agent = BrowserPuppet(page, settings)
    agent.start()
    await puppeteer.wait_for_connection(timeout=5)
    yield agent
    await agent.stop()


async def http_get(port: int, path: str) -> bytes:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"GET {path} HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n".encode())
    await writer.drain()
    response = await asyncio.wait_for(reader.read(), timeout=5)
    writer.close()
    return response


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_set_then_get_value(
        self, puppeteer: BrowserPuppeteer, live_puppet: BrowserPuppet, page: VirtualPage
    ) -> None:
        assert await puppeteer.exec_command(Commands.set_value("#username", "alice")) is None
        assert await puppeteer.exec_command(Commands.get_value("#username")) == "alice"
        assert page.query("#username").value == "alice"

    @pytest.mark.asyncio
    async def test_failure_comes_back_as_exception(
        self, puppeteer: BrowserPuppeteer, live_puppet: BrowserPuppet
    ) -> None:
        with pytest.raises(CommandExecutionFailure) as exc_info:
            await puppeteer.exec_command(Commands.click("#nope"))
        assert exc_info.value.name == "CommandExecutionFailure"

        # the channel stays usable after a NAK
        assert await puppeteer.exec_command(Commands.is_visible("#username")) is True

    @pytest.mark.asyncio
    async def test_exec_function(
        self, puppeteer: BrowserPuppeteer, live_puppet: BrowserPuppet
    ) -> None:
        fn = ScriptFunction("return [len(query(selector)), data[::-1]]", ("selector", "data"))
        assert await puppeteer.exec_function(fn, ".item", b"abc") == [2, b"cba"]

    @pytest.mark.asyncio
    async def test_captured_events_are_pushed(
        self, puppeteer: BrowserPuppeteer, live_puppet: BrowserPuppet, page: VirtualPage
    ) -> None:
        received: asyncio.Queue = asyncio.Queue()
        puppeteer.on(Upstream.CAPTURED_EVENT, lambda data, raw: received.put_nowait(data))

        await puppeteer.set_transmit_events(True)
        page.click(page.query("button"))

        data = await asyncio.wait_for(received.get(), timeout=5)
        assert data["event"]["type"] == "click"
        assert data["event"]["selector"] == "button.btn.primary"

    @pytest.mark.asyncio
    async def test_terminate(
        self, puppeteer: BrowserPuppeteer, live_puppet: BrowserPuppet
    ) -> None:
        await puppeteer.terminate_puppet()

        await asyncio.wait_for(live_puppet.wait_terminated(), timeout=5)
        assert live_puppet.state.terminating is True
        assert puppeteer.is_puppet_connected() is False


class TestReconnect:
    @pytest.mark.asyncio
    async def test_agent_reconnects_after_discard(
        self, puppeteer: BrowserPuppeteer, live_puppet: BrowserPuppet
    ) -> None:
        puppeteer.discard_clients()
        assert puppeteer.is_puppet_connected() is False

        await puppeteer.wait_for_connection(timeout=5)
        assert await puppeteer.exec_command(Commands.get_value("#notes")) == "draft"

    @pytest.mark.asyncio
    async def test_reply_to_abandoned_request_is_not_replayed(
        self, puppeteer: BrowserPuppeteer, live_puppet: BrowserPuppet, set_spinner
    ) -> None:
        await puppeteer.set_selector_became_visible_selectors(["#spinner"])
        slow = ScriptFunction(
            "import asyncio\nawait asyncio.sleep(delay)\nreturn 'late'", ("delay",)
        )
        request = asyncio.create_task(puppeteer.exec_function(slow, 0.5))
        await asyncio.sleep(0.1)

        puppeteer.discard_clients()
        with pytest.raises(ConnectionLost):
            await request
        # pushed while the agent still holds the dead channel
        set_spinner(True)

        await puppeteer.wait_for_connection(timeout=5)
        assert await puppeteer.exec_command(Commands.get_value("#notes")) == "draft"
        assert await puppeteer.exec_command(Commands.is_visible("#spinner")) is True


class TestStaticAssets:
    @pytest.mark.asyncio
    async def test_serves_file(self, puppeteer: BrowserPuppeteer) -> None:
        response = await http_get(puppeteer.port, "/puppet.js")
        assert response.startswith(b"HTTP/1.1 200 OK")
        assert response.endswith(b"window.puppet = {};\n")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/missing.js", "/../secret.txt"])
    async def test_not_found(self, puppeteer: BrowserPuppeteer, path: str) -> None:
        response = await http_get(puppeteer.port, path)
        assert response.startswith(b"HTTP/1.1 404")
