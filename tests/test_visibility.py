"""Tests for selector visibility and the visibility poller."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from browser_puppeteer.agent.page import VirtualPage
from browser_puppeteer.agent.visibility import (
    VisibilityPoller,
    VisibilityState,
    is_selector_visible,
)


class TestIsSelectorVisible:
    def test_visible(self, page: VirtualPage) -> None:
        assert is_selector_visible(page, "#username")

    def test_no_match(self, page: VirtualPage) -> None:
        assert not is_selector_visible(page, "#nope")

    def test_display_none(self, page: VirtualPage) -> None:
        assert not is_selector_visible(page, "#spinner")

    def test_covered_element(self, page: VirtualPage) -> None:
        cover = page.create_element(
            "div", {"style": "left:0px;top:0px;width:400px;height:400px;z-index:10"}
        )
        page.append_to_body(cover)
        assert not is_selector_visible(page, "#username")

    def test_descendant_on_top_counts(self, page: VirtualPage) -> None:
        # #list's center is covered by neither item, so it is the top element there
        assert is_selector_visible(page, "#list")
        page.query("#list").tag["style"] = "left:300px;top:0px;width:200px;height:20px"
        # center (400, 10) now falls on the first item, a descendant
        assert is_selector_visible(page, "#list")

    def test_any_match_is_enough(self, page: VirtualPage) -> None:
        assert is_selector_visible(page, "#spinner, #username")


class TestVisibilityPoller:
    def test_first_poll_only_seeds(self, page: VirtualPage) -> None:
        callback = MagicMock()
        poller = VisibilityPoller(page, callback)
        poller.set_selectors(["#username", "#spinner"])

        poller.poll()

        callback.assert_not_called()
        states = {w.selector: w.previous_state for w in poller.watches}
        assert states == {
            "#username": VisibilityState.VISIBLE,
            "#spinner": VisibilityState.HIDDEN,
        }

    def test_reports_hidden_to_visible_once(self, page: VirtualPage, set_spinner) -> None:
        callback = MagicMock()
        poller = VisibilityPoller(page, callback)
        poller.set_selectors(["#spinner"])
        poller.poll()

        set_spinner(True)
        poller.poll()
        poller.poll()

        callback.assert_called_once_with("#spinner")

    def test_visible_to_hidden_is_silent_and_rearms(self, page: VirtualPage, set_spinner) -> None:
        callback = MagicMock()
        poller = VisibilityPoller(page, callback)
        poller.set_selectors(["#spinner"])
        poller.poll()
        set_spinner(True)
        poller.poll()

        set_spinner(False)
        poller.poll()
        assert callback.call_count == 1

        set_spinner(True)
        poller.poll()
        assert callback.call_count == 2

    def test_set_selectors_discards_state(self, page: VirtualPage, set_spinner) -> None:
        callback = MagicMock()
        poller = VisibilityPoller(page, callback)
        poller.set_selectors(["#spinner"])
        poller.poll()

        poller.set_selectors(["#spinner"])
        set_spinner(True)
        poller.poll()

        callback.assert_not_called()

    def test_invalid_selector_is_skipped(self, page: VirtualPage, set_spinner) -> None:
        callback = MagicMock()
        poller = VisibilityPoller(page, callback)
        poller.set_selectors(["[[[", "#spinner"])
        poller.poll()
        set_spinner(True)
        poller.poll()

        callback.assert_called_once_with("#spinner")

    @pytest.mark.asyncio
    async def test_background_polling(self, page: VirtualPage, set_spinner) -> None:
        callback = MagicMock()
        poller = VisibilityPoller(page, callback, interval=0.01)
        poller.set_selectors(["#spinner"])
        poller.start()
        try:
            await asyncio.sleep(0.05)
            set_spinner(True)
            await asyncio.sleep(0.05)
        finally:
            poller.stop()

        callback.assert_called_once_with("#spinner")
        assert poller.watches == []
