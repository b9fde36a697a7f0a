"""Selector locator: turns an element into a CSS selector that finds it again."""

from __future__ import annotations

from typing import Protocol

import soupsieve as sv

from browser_puppeteer.agent.page import Element, Page
from browser_puppeteer.errors import NoStableSelector


class SelectorLocator(Protocol):
    ignored_classes: list[str]

    def locate(self, element: Element) -> str:
        """Return a selector matching only *element*; raise NoStableSelector otherwise."""
        ...

    def full_selector_path(self, element: Element) -> str:
        """Return the root-to-element selector path."""
        ...


class UniqueSelector:
    """Default locator.

    Prefers ``#id``; otherwise climbs the ancestors building a ``>`` chain of
    ``tag#id.class`` segments, adding ``:nth-child()`` where siblings collide,
    until the chain matches the element alone.
    """

    def __init__(
        self,
        page: Page,
        ignored_classes: list[str] | None = None,
        max_depth: int = 12,
    ) -> None:
        self._page = page
        self.ignored_classes: list[str] = list(ignored_classes or [])
        self._max_depth = max_depth

    def _segment(self, element: Element) -> str:
        segment = element.tag_name.lower()
        if element.id:
            segment += f"#{sv.escape(element.id)}"
        for cls in element.classes:
            if cls not in self.ignored_classes:
                segment += f".{sv.escape(cls)}"
        return segment

    @staticmethod
    def _nth_child(element: Element) -> str:
        parent = element.parent
        if parent is None:
            return ""
        siblings = parent.children
        return f":nth-child({siblings.index(element) + 1})"

    def _is_unique(self, selector: str, element: Element) -> bool:
        found = self._page.query_all(selector)
        return len(found) == 1 and found[0] is element

    def locate(self, element: Element) -> str:
        if not self._page.is_attached(element):
            raise NoStableSelector(f"{element!r} is not attached to the document")

        if element.id:
            selector = f"#{sv.escape(element.id)}"
            if self._is_unique(selector, element):
                return selector

        path: list[str] = []
        node: Element | None = element
        for _ in range(self._max_depth):
            if node is None:
                break
            path.insert(0, self._segment(node))
            selector = " > ".join(path)
            if self._is_unique(selector, element):
                return selector

            path[0] += self._nth_child(node)
            selector = " > ".join(path)
            if self._is_unique(selector, element):
                return selector

            node = node.parent

        raise NoStableSelector(f"no unique selector for {element!r}")

    def full_selector_path(self, element: Element) -> str:
        nodes = [*reversed(element.ancestors()), element]
        return " > ".join(self._segment(node) + self._nth_child(node) for node in nodes)
