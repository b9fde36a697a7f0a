"""In-page agent.

``BrowserPuppet`` connects to the controller, executes the commands and
functions it receives, answers each message with exactly one ACK or NAK, and
pushes captured user interactions and visibility transitions upstream.

All outbound traffic (replies and pushed events) goes through one ordered
outbox, drained onto the WebSocket by the connection loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from browser_puppeteer.agent.debounce import Debouncer
from browser_puppeteer.agent.executor import CommandExecutor
from browser_puppeteer.agent.functions import evaluate, run_in_sequence
from browser_puppeteer.agent.locator import SelectorLocator, UniqueSelector
from browser_puppeteer.agent.page import Element, Event, Page
from browser_puppeteer.agent.visibility import VisibilityPoller
from browser_puppeteer.codec import decode_envelope, encode
from browser_puppeteer.commands import Command, FunctionInvocation
from browser_puppeteer.config import PuppetSettings
from browser_puppeteer.errors import AgentTerminating, NoStableSelector, UnknownMessageType
from browser_puppeteer.messages import (
    CapturedEvent,
    Downstream,
    TargetSnapshot,
    Upstream,
    envelope,
)

logger = logging.getLogger(__name__)

SHIFT_KEY = 16
CTRL_KEY = 17

_CLOSE = object()

# 1x1 opaque pixel, tiled over the 4x4 marker
SCREENSHOT_MARKER_IMAGE = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
_MARKER_SIZE = 4
_MARKER_Z_INDEX = 16777000


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


@dataclass
class PuppetState:
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    transmit_events: bool = False
    executing: bool = False
    terminating: bool = False


def error_descriptor(exc: BaseException) -> dict[str, Any]:
    """Describe *exc* for a NAK: its public encodable fields, message and class name."""
    descriptor: dict[str, Any] = {}
    for key, value in getattr(exc, "__dict__", {}).items():
        if key.startswith("_"):
            continue
        try:
            encode(value)
        except (TypeError, ValueError):
            continue
        descriptor[key] = value
    descriptor["message"] = str(exc)
    descriptor["name"] = type(exc).__name__
    return descriptor


def target_snapshot(target: Element, **extra: Any) -> TargetSnapshot:
    return TargetSnapshot(
        class_name=target.class_name,
        id=target.id,
        inner_text=target.inner_text,
        tag_name=target.tag_name,
        type=target.type,
        **extra,
    )


class BrowserPuppet:
    def __init__(
        self,
        page: Page,
        settings: PuppetSettings | None = None,
        locator: SelectorLocator | None = None,
    ) -> None:
        self._settings = settings or PuppetSettings()
        self.page = page
        self.state = PuppetState()
        self.locator: SelectorLocator = locator or UniqueSelector(
            page, self._settings.ignored_classes
        )
        # Values stored by uploadFileAndAssign, visible to executed functions
        self.variables: dict[str, Any] = {}

        self._executor = CommandExecutor(
            page,
            self.variables,
            wait_timeout=self._settings.wait_timeout,
            wait_poll_interval=self._settings.wait_poll_interval,
        )
        self._poller = VisibilityPoller(
            page,
            self._on_selector_became_visible,
            interval=self._settings.visibility_poll_interval,
        )
        self._scroll_debouncer = Debouncer(self._settings.scroll_debounce)
        self._assertion_debouncer = Debouncer(self._settings.insert_assertion_debounce)

        self._mouseover_selector: str | None = None
        self._mouseover_attached = False
        self._capture_attached = False
        self._active_element_before_window_blur: Element | None = None

        self._outbox: asyncio.Queue[Any] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

        width, height = page.viewport
        marker_style = (
            f"position:fixed;width:{_MARKER_SIZE}px;height:{_MARKER_SIZE}px;"
            f"z-index:{_MARKER_Z_INDEX};"
        )
        self._ss_marker_top_left = page.create_element(
            "div",
            {
                "class": "browser-puppet-ss-marker",
                "style": f"{marker_style}left:0;top:0;",
                "data-background": SCREENSHOT_MARKER_IMAGE,
            },
        )
        self._ss_marker_bottom_right = page.create_element(
            "div",
            {
                "class": "browser-puppet-ss-marker",
                "style": (
                    f"{marker_style}left:{width - _MARKER_SIZE}px;"
                    f"top:{height - _MARKER_SIZE}px;"
                ),
                "data-background": SCREENSHOT_MARKER_IMAGE,
            },
        )

    # -- Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Attach capture listeners, start visibility polling and connect."""
        self.attach_capture_listeners()
        self._poller.start()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._poller.stop()
        self._scroll_debouncer.cancel_all()
        self._assertion_debouncer.cancel_all()
        self.detach_capture_listeners()
        self.state.connection_state = ConnectionState.DISCONNECTED

    async def wait_terminated(self) -> None:
        """Wait for the connection loop to end after a TERMINATE_PUPPET."""
        if self._task is not None:
            await self._task

    async def run(self) -> None:
        """Stay connected to the controller, reconnecting until terminated."""
        url = self._settings.server_url
        delay = self._settings.reconnect_delay
        while not self.state.terminating:
            try:
                async with connect(url, compression=None, max_size=None) as ws:
                    self.state.connection_state = ConnectionState.CONNECTED
                    delay = self._settings.reconnect_delay
                    logger.info("Connected to %s", url)
                    await self._serve(ws)
            except (OSError, WebSocketException) as e:
                logger.debug("Connection to %s failed: %s", url, e)
            finally:
                self.state.connection_state = ConnectionState.DISCONNECTED

            if self.state.terminating:
                break
            logger.debug("Reconnecting in %.1fs", delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._settings.max_reconnect_delay)

        self._poller.stop()
        logger.info("Puppet terminated")

    async def _serve(self, ws: ClientConnection) -> None:
        # The connection takes over whatever was queued while disconnected;
        # replies queued on it never reach a later connection.
        outbox = self._outbox
        sender = asyncio.create_task(self._pump_outbox(ws, outbox))
        try:
            async for raw in ws:
                try:
                    await self.handle_message(raw)
                except AgentTerminating:
                    logger.warning("Dropping message received while terminating")
        finally:
            self._outbox = asyncio.Queue()
            if not self.state.terminating and not outbox.empty():
                logger.info("Connection ended with %d unsent message(s)", outbox.qsize())
            if not sender.done():
                # let queued replies (and a pending close) go out first
                if self.state.terminating:
                    with contextlib.suppress(asyncio.TimeoutError):
                        await asyncio.wait_for(asyncio.shield(sender), timeout=1.0)
                sender.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sender

    async def _pump_outbox(self, ws: ClientConnection, outbox: asyncio.Queue[Any]) -> None:
        while True:
            payload = await outbox.get()
            try:
                if payload is _CLOSE:
                    await ws.close()
                    return
                await ws.send(payload)
            except ConnectionClosed:
                logger.debug("Channel closed while sending")
                return

    # -- Outbound ------------------------------------------------------------

    @staticmethod
    def _put(outbox: asyncio.Queue[Any], message: dict[str, Any]) -> None:
        payload = encode(message)
        logger.debug("Sending %s", payload[:300])
        outbox.put_nowait(payload)

    def _send(self, message: dict[str, Any]) -> None:
        """Queue a pushed event for the current connection, or the next one."""
        if (
            self.state.connection_state is ConnectionState.DISCONNECTED
            and self._outbox.qsize() >= self._settings.max_queued_events
        ):
            logger.warning("Dropping %s while disconnected", message["type"])
            return
        self._put(self._outbox, message)

    def _reply(self, outbox: asyncio.Queue[Any], message_type: Upstream, **payload: Any) -> None:
        if outbox is not self._outbox:
            logger.warning("Dropping %s for a closed connection", message_type.value)
            return
        try:
            self._put(outbox, envelope(message_type, **payload))
        except (TypeError, ValueError) as exc:
            # the result itself could not be encoded
            self._put(outbox, envelope(Upstream.NAK, error=error_descriptor(exc)))

    # -- Inbound -------------------------------------------------------------

    async def handle_message(self, raw: str | bytes) -> None:
        """Process one downstream message and queue its single ACK or NAK.

        Raises:
            AgentTerminating: termination was already requested.
        """
        if self.state.terminating:
            raise AgentTerminating()

        # the reply belongs to the connection the message arrived on
        outbox = self._outbox
        try:
            data = decode_envelope(raw)
            result = await self._dispatch(data)
        except Exception as exc:
            logger.info("Sending NAK: %s", exc)
            self._reply(outbox, Upstream.NAK, error=error_descriptor(exc))
        else:
            logger.info("Sending ACK")
            self._reply(outbox, Upstream.ACK, result=result)
        finally:
            self.state.executing = False
            if self.state.terminating:
                outbox.put_nowait(_CLOSE)

    async def _dispatch(self, data: dict[str, Any]) -> Any:
        message_type = data["type"]

        if message_type == Downstream.EXEC_COMMAND:
            self.state.executing = True
            return await self.exec_command(data.get("command"))
        if message_type == Downstream.EXEC_FUNCTION:
            self.state.executing = True
            return await self.exec_function(data.get("fn"), data.get("args"))
        if message_type == Downstream.SET_SELECTOR_BECAME_VISIBLE_DATA:
            return self.set_on_selector_became_visible_selectors(data.get("selectors"))
        if message_type == Downstream.SHOW_SCREENSHOT_MARKER:
            return self.set_screenshot_marker_state(True)
        if message_type == Downstream.HIDE_SCREENSHOT_MARKER:
            return self.set_screenshot_marker_state(False)
        if message_type == Downstream.SET_TRANSMIT_EVENTS:
            return self.set_transmit_events(data.get("value"))
        if message_type == Downstream.CLEAR_PERSISTENT_DATA:
            return self.clear_persistent_data()
        if message_type == Downstream.SET_MOUSEOVER_SELECTORS:
            return self.set_mouseover_selectors(data.get("selectors"))
        if message_type == Downstream.SET_IGNORED_CLASSES:
            return self.set_ignored_classes(data.get("classes"))
        if message_type == Downstream.TERMINATE_PUPPET:
            self.state.terminating = True
            return None

        raise UnknownMessageType(message_type)

    # -- Operations ----------------------------------------------------------

    async def exec_command(self, command: Command | dict[str, Any]) -> Any:
        return await self._executor.execute(command)

    async def exec_function(self, fn: Any, args: list[Any] | None = None) -> Any:
        invocation = FunctionInvocation.from_wire(fn, args)
        namespace = {
            **self.variables,
            "driver": self,
            "page": self.page,
            "query": self.page.query_all,
            "run_in_sequence": run_in_sequence,
        }
        return await evaluate(invocation, namespace)

    def set_on_selector_became_visible_selectors(self, selectors: Any) -> None:
        if not isinstance(selectors, list):
            raise TypeError("selectors must be a list")
        self._poller.set_selectors(selectors)

    def set_transmit_events(self, value: Any) -> None:
        if not isinstance(value, bool):
            raise TypeError("transmit events value must be a bool")
        self.state.transmit_events = value

    def clear_persistent_data(self) -> None:
        self.page.clear_cookies()
        self.page.clear_local_storage()

    def set_mouseover_selectors(self, selectors: Any) -> None:
        if not isinstance(selectors, list):
            raise TypeError("selectors must be a list")
        self._mouseover_selector = ", ".join(selectors) or None
        if not self._mouseover_attached:
            self.page.add_event_listener("mouseover", self._on_mouseover_capture)
            self._mouseover_attached = True

    def set_ignored_classes(self, classes: Any) -> None:
        if not isinstance(classes, list):
            raise TypeError("classes must be a list")
        self.locator.ignored_classes = list(classes)

    def set_screenshot_marker_state(self, visible: bool) -> None:
        for marker in (self._ss_marker_top_left, self._ss_marker_bottom_right):
            attached = self.page.is_attached(marker)
            if visible and not attached:
                self.page.append_to_body(marker)
            elif not visible and attached:
                self.page.remove(marker)

    # -- Capture -------------------------------------------------------------

    def _can_capture(self) -> bool:
        return self.state.transmit_events and not self.state.executing

    def attach_capture_listeners(self) -> None:
        if self._capture_attached:
            return
        self.page.add_event_listener("click", self._on_click_capture)
        self.page.add_event_listener("focus", self._on_focus_capture)
        self.page.add_event_listener("input", self._on_input_capture)
        self.page.add_event_listener("scroll", self._on_scroll_capture)
        self.page.add_event_listener("keydown", self._on_keydown_capture)
        self.page.add_window_listener("blur", self._on_window_blur)
        self._capture_attached = True

    def detach_capture_listeners(self) -> None:
        self.page.remove_event_listener("click", self._on_click_capture)
        self.page.remove_event_listener("focus", self._on_focus_capture)
        self.page.remove_event_listener("input", self._on_input_capture)
        self.page.remove_event_listener("scroll", self._on_scroll_capture)
        self.page.remove_event_listener("keydown", self._on_keydown_capture)
        self.page.remove_window_listener("blur", self._on_window_blur)
        if self._mouseover_attached:
            self.page.remove_event_listener("mouseover", self._on_mouseover_capture)
            self._mouseover_attached = False
        self._capture_attached = False

    def _locate(self, target: Element) -> str | None:
        try:
            return self.locator.locate(target)
        except NoStableSelector as e:
            logger.warning("Not capturing event: %s", e)
            return None

    def _send_captured(self, event: CapturedEvent) -> None:
        self._send(envelope(Upstream.CAPTURED_EVENT, event=event.to_wire()))

    def _on_click_capture(self, event: Event) -> None:
        if not self._can_capture() or event.target is None:
            return
        target = event.target
        selector = self._locate(target)
        if selector is None:
            return
        self._send_captured(
            CapturedEvent(
                type="click",
                selector=selector,
                full_selector_path=self.locator.full_selector_path(target),
                target=target_snapshot(target),
            )
        )

    def _on_focus_capture(self, event: Event) -> None:
        if not self._can_capture() or event.target is None:
            return
        target = event.target

        if self._active_element_before_window_blur is target:
            logger.debug("focus capture prevented during window re-focus")
            self._active_element_before_window_blur = None
            return

        selector = self._locate(target)
        if selector is None:
            return
        self._send_captured(
            CapturedEvent(
                type="focus",
                selector=selector,
                full_selector_path=self.locator.full_selector_path(target),
                target=target_snapshot(target),
            )
        )

    def _on_input_capture(self, event: Event) -> None:
        if not self._can_capture() or event.target is None:
            return
        target = event.target
        selector = self._locate(target)
        if selector is None:
            return
        self._send_captured(
            CapturedEvent(
                type="input",
                selector=selector,
                value=target.value,
                target=target_snapshot(target),
            )
        )

    def _on_scroll_capture(self, event: Event) -> None:
        if not self._can_capture() or event.target is None:
            return
        self._scroll_debouncer.trigger(id(event.target), self._flush_scroll, event.target)

    def _flush_scroll(self, target: Element) -> None:
        if not self._can_capture():
            return
        selector = self._locate(target)
        if selector is None:
            return
        self._send_captured(
            CapturedEvent(
                type="scroll",
                selector=selector,
                target=target_snapshot(target, scroll_top=target.scroll_top),
            )
        )

    def _on_keydown_capture(self, event: Event) -> None:
        if not self._can_capture() or event.target is None:
            return

        if (event.key_code == SHIFT_KEY and event.ctrl_key) or (
            event.key_code == CTRL_KEY and event.shift_key
        ):
            self._assertion_debouncer.trigger("insert-assertion", self._send_insert_assertion)
            return

        target = event.target
        selector = self._locate(target)
        if selector is None:
            return
        self._send_captured(
            CapturedEvent(
                type="keydown",
                selector=selector,
                key_code=event.key_code,
                ctrl_key=event.ctrl_key,
                shift_key=event.shift_key,
                alt_key=event.alt_key,
                target=target_snapshot(target),
            )
        )

    def _on_mouseover_capture(self, event: Event) -> None:
        if not self._can_capture() or event.target is None or not self._mouseover_selector:
            return
        target = event.target
        if not self.page.matches(target, self._mouseover_selector):
            return
        selector = self._locate(target)
        if selector is None:
            return
        self._send_captured(
            CapturedEvent(type="mouseover", selector=selector, target=target_snapshot(target))
        )

    def _on_window_blur(self, event: Event) -> None:
        self._active_element_before_window_blur = self.page.active_element

    def _send_insert_assertion(self) -> None:
        self._send(envelope(Upstream.INSERT_ASSERTION))

    def _on_selector_became_visible(self, selector: str) -> None:
        self._send(envelope(Upstream.SELECTOR_BECAME_VISIBLE, selector=selector))
