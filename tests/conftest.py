"""Shared fixtures for browser-puppeteer tests."""

from __future__ import annotations

from typing import Any

import pytest

from browser_puppeteer.agent.page import VirtualPage
from browser_puppeteer.agent.puppet import BrowserPuppet
from browser_puppeteer.codec import decode
from browser_puppeteer.config import PuppetSettings

# Layout boxes do not overlap, so every rendered element is on top at its center.
FORM_HTML = """<html><body><form id="login" class="form">
  <input id="username" type="text" value="" style="left:10px;top:10px;width:200px;height:20px">
  <input name="password" type="password" style="left:10px;top:40px;width:200px;height:20px">
  <input id="avatar" type="file" style="left:10px;top:70px;width:200px;height:20px">
  <button class="btn primary" style="left:10px;top:100px;width:80px;height:20px">Log in</button>
</form>
<div id="spinner" style="display:none;left:600px;top:600px;width:50px;height:50px">Loading</div>
<div id="list" style="left:300px;top:0px;width:200px;height:100px">
  <p class="item" style="left:300px;top:0px;width:200px;height:20px">One</p>
  <p class="item" style="left:300px;top:30px;width:200px;height:20px">Two</p>
</div>
<textarea id="notes" style="left:10px;top:200px;width:200px;height:60px">draft</textarea>
</body></html>"""

SPINNER_SHOWN = "left:600px;top:600px;width:50px;height:50px"
SPINNER_HIDDEN = "display:none;" + SPINNER_SHOWN


@pytest.fixture
def page() -> VirtualPage:
    """A fresh in-memory page with a login form, a hidden spinner and a list."""
    return VirtualPage(FORM_HTML)


@pytest.fixture
def puppet_settings() -> PuppetSettings:
    """Agent settings with short timers so tests run fast."""
    return PuppetSettings(
        visibility_poll_interval=0.01,
        scroll_debounce=0.05,
        insert_assertion_debounce=0.05,
        wait_timeout=0.5,
        wait_poll_interval=0.01,
        reconnect_delay=0.01,
        max_reconnect_delay=0.05,
    )


@pytest.fixture
def puppet(page: VirtualPage, puppet_settings: PuppetSettings) -> BrowserPuppet:
    """A puppet with capture listeners attached but no connection."""
    p = BrowserPuppet(page, puppet_settings)
    p.attach_capture_listeners()
    return p


@pytest.fixture
def outbox(puppet: BrowserPuppet):
    """Return a callable draining the puppet's queued messages, decoded."""

    def drain() -> list[dict[str, Any]]:
        messages = []
        while not puppet._outbox.empty():
            item = puppet._outbox.get_nowait()
            if isinstance(item, str):
                messages.append(decode(item))
        return messages

    return drain


@pytest.fixture
def set_spinner(page: VirtualPage):
    """Return a callable showing or hiding the ``#spinner`` element."""

    def toggle(shown: bool) -> None:
        page.query("#spinner").tag["style"] = SPINNER_SHOWN if shown else SPINNER_HIDDEN

    return toggle
