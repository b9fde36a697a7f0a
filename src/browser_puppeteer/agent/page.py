"""The page the agent lives in.

:class:`Page` is the capability the agent needs from its host page: CSS
queries, visibility and hit testing, event listeners, focus, cookies, local
storage and overlay insertion.  :class:`VirtualPage` implements it over an
in-memory DOM parsed with BeautifulSoup and queried with soupsieve.

Layout is declared with inline styles, in page coordinates::

    <button id="ok" style="left:10px;top:10px;width:80px;height:20px;z-index:2">

``display:none`` (or the ``hidden`` attribute) removes an element and its
subtree from layout; ``visibility:hidden`` and ``pointer-events:none`` keep it
rendered but take it out of hit testing.  An element without a width and a
height has an empty box and is not visible.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import soupsieve as sv
from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], None]


@dataclass(frozen=True)
class Rect:
    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def center(self) -> tuple[float, float]:
        return self.left + self.width / 2, self.top + self.height / 2

    def contains(self, x: float, y: float) -> bool:
        return (
            self.left <= x < self.left + self.width
            and self.top <= y < self.top + self.height
        )


@dataclass
class Event:
    type: str
    target: Element | None = None
    key_code: int = 0
    ctrl_key: bool = False
    shift_key: bool = False
    alt_key: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class UploadedFile:
    """File bytes bound to a file input."""

    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def _parse_style(style: str | None) -> dict[str, str]:
    rules: dict[str, str] = {}
    for declaration in (style or "").split(";"):
        name, sep, value = declaration.partition(":")
        if sep:
            rules[name.strip().lower()] = value.strip().lower()
    return rules


def _px(value: str | None) -> float:
    if not value:
        return 0.0
    try:
        return float(value.removesuffix("px"))
    except ValueError:
        return 0.0


class Element:
    """Live handle on a DOM node.

    Wraps a bs4 ``Tag`` and keeps the state that markup does not hold: the
    current value of form fields, the scroll offset and assigned files.
    """

    def __init__(self, page: VirtualPage, tag: Tag) -> None:
        self._page = page
        self.tag = tag
        self.scroll_top: float = 0.0
        self.files: list[UploadedFile] = []
        if tag.name == "textarea":
            self._value: str = tag.get_text()
        else:
            self._value = str(tag.get("value", ""))

    def __repr__(self) -> str:
        ident = f"#{self.id}" if self.id else ""
        return f"<Element {self.tag_name.lower()}{ident}>"

    # -- Projection ------------------------------------------------------

    @property
    def tag_name(self) -> str:
        return self.tag.name.upper()

    @property
    def id(self) -> str:
        return str(self.tag.get("id", ""))

    @property
    def classes(self) -> list[str]:
        value = self.tag.get("class") or []
        if isinstance(value, str):
            return value.split()
        return list(value)

    @property
    def class_name(self) -> str:
        return " ".join(self.classes)

    @property
    def type(self) -> str | None:
        value = self.tag.get("type")
        return str(value) if value is not None else None

    @property
    def inner_text(self) -> str:
        return self.tag.get_text()

    @property
    def value(self) -> str:
        return self._value

    @value.setter
    def value(self, value: str) -> None:
        self._value = value

    # -- Tree ------------------------------------------------------------

    @property
    def parent(self) -> Element | None:
        parent = self.tag.parent
        if isinstance(parent, Tag) and not isinstance(parent, BeautifulSoup):
            return self._page.wrap(parent)
        return None

    @property
    def children(self) -> list[Element]:
        return [self._page.wrap(child) for child in self.tag.find_all(True, recursive=False)]

    def ancestors(self) -> list[Element]:
        """Ancestors from the parent up to the root element."""
        result: list[Element] = []
        node = self.parent
        while node is not None:
            result.append(node)
            node = node.parent
        return result

    def contains(self, other: Element | None) -> bool:
        """True if *other* is this element or one of its descendants."""
        if other is None:
            return False
        return other is self or self in other.ancestors()

    # -- Layout ----------------------------------------------------------

    @property
    def style(self) -> dict[str, str]:
        return _parse_style(self.tag.get("style"))

    @property
    def rect(self) -> Rect:
        style = self.style
        return Rect(
            _px(style.get("left")),
            _px(style.get("top")),
            _px(style.get("width")),
            _px(style.get("height")),
        )

    def _displayed(self) -> bool:
        return self.style.get("display") != "none" and not self.tag.has_attr("hidden")

    def _inherited(self, prop: str) -> str | None:
        for node in [self, *self.ancestors()]:
            value = node.style.get(prop)
            if value is not None:
                return value
        return None

    @property
    def z_index(self) -> int:
        value = self._inherited("z-index")
        try:
            return int(value) if value is not None else 0
        except ValueError:
            return 0


class Page(Protocol):
    """Page capability used by the agent."""

    @property
    def active_element(self) -> Element | None: ...

    def query_all(self, selector: str) -> list[Element]: ...

    def matches(self, element: Element, selector: str) -> bool: ...

    def is_css_visible(self, element: Element) -> bool: ...

    def element_from_point(self, x: float, y: float) -> Element | None: ...

    def add_event_listener(self, event_type: str, handler: EventHandler) -> None: ...

    def add_window_listener(self, event_type: str, handler: EventHandler) -> None: ...

    def remove_event_listener(self, event_type: str, handler: EventHandler) -> None: ...

    def remove_window_listener(self, event_type: str, handler: EventHandler) -> None: ...

    def dispatch(self, event: Event) -> None: ...

    def click(self, element: Element) -> None: ...

    def focus(self, element: Element) -> None: ...

    def set_value(self, element: Element, value: str) -> None: ...

    def key_down(
        self,
        element: Element,
        key_code: int,
        ctrl_key: bool = False,
        shift_key: bool = False,
        alt_key: bool = False,
    ) -> None: ...

    def key_up(self, element: Element, key_code: int) -> None: ...

    def scroll_to(self, element: Element, scroll_top: float) -> None: ...

    def mouseover(self, element: Element) -> None: ...

    def set_files(self, element: Element, files: list[UploadedFile]) -> None: ...

    def create_element(self, tag_name: str, attrs: dict[str, str]) -> Element: ...

    def append_to_body(self, element: Element) -> None: ...

    def remove(self, element: Element) -> None: ...

    def is_attached(self, element: Element) -> bool: ...

    def clear_cookies(self) -> None: ...

    def clear_local_storage(self) -> None: ...

    @property
    def viewport(self) -> tuple[int, int]: ...


class VirtualPage:
    """In-memory page built from HTML."""

    def __init__(self, html: str = "", viewport: tuple[int, int] = (1280, 720)) -> None:
        self._soup = BeautifulSoup(html or "<html><body></body></html>", "html.parser")
        if self._soup.body is None:
            body = self._soup.new_tag("body")
            if self._soup.html is None:
                root = self._soup.new_tag("html")
                root.append(body)
                self._soup.append(root)
            else:
                self._soup.html.append(body)
        self._elements: dict[int, Element] = {}
        self._listeners: dict[str, list[EventHandler]] = {}
        self._window_listeners: dict[str, list[EventHandler]] = {}
        self._active: Element | None = None
        self._viewport = viewport
        self.cookies: dict[str, str] = {}
        self.local_storage: dict[str, str] = {}

    @classmethod
    def from_html(cls, html: str, **kwargs: Any) -> VirtualPage:
        return cls(html, **kwargs)

    def wrap(self, tag: Tag) -> Element:
        """Return the unique :class:`Element` for *tag*."""
        element = self._elements.get(id(tag))
        if element is None:
            element = Element(self, tag)
            self._elements[id(tag)] = element
        return element

    @property
    def body(self) -> Element:
        return self.wrap(self._soup.body)

    @property
    def viewport(self) -> tuple[int, int]:
        return self._viewport

    @property
    def active_element(self) -> Element | None:
        if self._active is not None and not self.is_attached(self._active):
            self._active = None
        return self._active if self._active is not None else self.body

    # -- Queries ---------------------------------------------------------

    def query_all(self, selector: str) -> list[Element]:
        return [self.wrap(tag) for tag in sv.select(selector, self._soup)]

    def query(self, selector: str) -> Element | None:
        tag = sv.select_one(selector, self._soup)
        return self.wrap(tag) if tag is not None else None

    def matches(self, element: Element, selector: str) -> bool:
        return sv.match(selector, element.tag)

    def is_attached(self, element: Element) -> bool:
        return any(parent is self._soup for parent in element.tag.parents)

    def _document_order(self) -> list[Element]:
        return [self.wrap(tag) for tag in self._soup.find_all(True)]

    # -- Layout ----------------------------------------------------------

    def is_css_visible(self, element: Element) -> bool:
        """Rendered with a non-empty box (jQuery's ``:visible``)."""
        if not self.is_attached(element):
            return False
        if not all(node._displayed() for node in [element, *element.ancestors()]):
            return False
        rect = element.rect
        return rect.width > 0 or rect.height > 0

    def _hit_testable(self, element: Element) -> bool:
        return (
            self.is_css_visible(element)
            and element._inherited("visibility") not in ("hidden", "collapse")
            and element._inherited("pointer-events") != "none"
        )

    def element_from_point(self, x: float, y: float) -> Element | None:
        """Topmost element at (x, y): highest z-index, later in the document wins ties."""
        best: Element | None = None
        best_key: tuple[int, int] | None = None
        for order, element in enumerate(self._document_order()):
            if not element.rect.contains(x, y) or not self._hit_testable(element):
                continue
            key = (element.z_index, order)
            if best_key is None or key > best_key:
                best, best_key = element, key
        return best

    # -- Events ----------------------------------------------------------

    def add_event_listener(self, event_type: str, handler: EventHandler) -> None:
        self._listeners.setdefault(event_type, []).append(handler)

    def remove_event_listener(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def add_window_listener(self, event_type: str, handler: EventHandler) -> None:
        self._window_listeners.setdefault(event_type, []).append(handler)

    def remove_window_listener(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._window_listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    @staticmethod
    def _invoke(handlers: list[EventHandler], event: Event) -> None:
        for handler in list(handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Error in %s listener", event.type)

    def dispatch(self, event: Event) -> None:
        """Deliver *event* to the document listeners for its type."""
        self._invoke(self._listeners.get(event.type, []), event)

    def dispatch_window(self, event: Event) -> None:
        self._invoke(self._window_listeners.get(event.type, []), event)

    # -- Interaction -----------------------------------------------------
    #
    # These are the primitives both command execution and simulated user
    # input go through, so listeners see the same events either way.

    def click(self, element: Element) -> None:
        self.dispatch(Event("click", element))

    def focus(self, element: Element) -> None:
        previous = self._active
        if previous is element:
            return
        self._active = element
        if previous is not None:
            self.dispatch(Event("blur", previous))
        self.dispatch(Event("focus", element))

    def blur_window(self) -> None:
        self.dispatch_window(Event("blur", None))

    def focus_window(self) -> None:
        """Regain window focus; the browser re-fires focus on the active element."""
        self.dispatch_window(Event("focus", None))
        if self._active is not None:
            self.dispatch(Event("focus", self._active))

    def type_text(self, element: Element, text: str) -> None:
        element.value = text
        self.dispatch(Event("input", element))

    def set_value(self, element: Element, value: str) -> None:
        element.value = value
        self.dispatch(Event("change", element))

    def key_down(
        self,
        element: Element,
        key_code: int,
        ctrl_key: bool = False,
        shift_key: bool = False,
        alt_key: bool = False,
    ) -> None:
        self.dispatch(Event("keydown", element, key_code, ctrl_key, shift_key, alt_key))

    def key_up(self, element: Element, key_code: int) -> None:
        self.dispatch(Event("keyup", element, key_code))

    def scroll_to(self, element: Element, scroll_top: float) -> None:
        element.scroll_top = scroll_top
        self.dispatch(Event("scroll", element))

    def mouseover(self, element: Element) -> None:
        self.dispatch(Event("mouseover", element))

    def set_files(self, element: Element, files: list[UploadedFile]) -> None:
        element.files = list(files)
        self.dispatch(Event("change", element))

    # -- Mutation --------------------------------------------------------

    # Only attached nodes are cached; the caller holds detached ones.

    def create_element(self, tag_name: str, attrs: dict[str, str]) -> Element:
        return Element(self, self._soup.new_tag(tag_name, attrs=dict(attrs)))

    def append_to_body(self, element: Element) -> None:
        self._soup.body.append(element.tag)
        self._elements[id(element.tag)] = element

    def remove(self, element: Element) -> None:
        element.tag.extract()
        for tag in (element.tag, *element.tag.find_all(True)):
            self._elements.pop(id(tag), None)

    # -- Storage ---------------------------------------------------------

    def clear_cookies(self) -> None:
        self.cookies.clear()

    def clear_local_storage(self) -> None:
        self.local_storage.clear()
