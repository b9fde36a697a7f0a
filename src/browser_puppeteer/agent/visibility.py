"""Periodic selector visibility diffing.

Each watched selector starts ``UNKNOWN``; the first poll only seeds its state.
After that, a ``HIDDEN -> VISIBLE`` transition reports the selector once;
``VISIBLE -> HIDDEN`` is silent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from browser_puppeteer.agent.page import Page

logger = logging.getLogger(__name__)


class VisibilityState(str, Enum):
    UNKNOWN = "unknown"
    HIDDEN = "hidden"
    VISIBLE = "visible"


@dataclass
class VisibilityWatch:
    selector: str
    previous_state: VisibilityState = VisibilityState.UNKNOWN


def is_selector_visible(page: Page, selector: str) -> bool:
    """True if *selector* matches, one match is rendered and one match is not
    covered at its center by an unrelated element.
    """
    elements = page.query_all(selector)
    if not elements:
        return False
    if not any(page.is_css_visible(element) for element in elements):
        return False

    for element in elements:
        x, y = element.rect.center
        topmost = page.element_from_point(x, y)
        if element.contains(topmost):
            return True
    return False


class VisibilityPoller:
    def __init__(
        self,
        page: Page,
        on_became_visible: Callable[[str], None],
        interval: float = 0.2,
    ) -> None:
        self._page = page
        self._on_became_visible = on_became_visible
        self._interval = interval
        self._watches: list[VisibilityWatch] = []
        self._task: asyncio.Task[None] | None = None

    @property
    def watches(self) -> list[VisibilityWatch]:
        return list(self._watches)

    def set_selectors(self, selectors: list[str]) -> None:
        """Replace the watch set; all previous state is discarded."""
        self._watches = [VisibilityWatch(str(selector)) for selector in selectors]

    def poll(self) -> None:
        """Run one tick over every watch."""
        for watch in list(self._watches):
            try:
                visible = is_selector_visible(self._page, watch.selector)
            except Exception:
                logger.exception("Visibility check failed for %r", watch.selector)
                continue

            if watch.previous_state is VisibilityState.HIDDEN and visible:
                self._on_became_visible(watch.selector)

            watch.previous_state = VisibilityState.VISIBLE if visible else VisibilityState.HIDDEN

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.poll()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._watches = []
