"""Controller side of the channel.

``BrowserPuppeteer`` serves the WebSocket the agent connects to, sends one
request at a time and resolves it with the agent's ACK or NAK.  Events the
agent pushes on its own are handed to subscribers registered with :meth:`on`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.frames import CloseCode
from websockets.protocol import State

from browser_puppeteer.codec import ScriptFunction, decode_envelope, encode
from browser_puppeteer.commands import Command, FunctionInvocation, dump_command
from browser_puppeteer.config import PuppeteerSettings
from browser_puppeteer.controller.assets import static_asset_handler
from browser_puppeteer.errors import (
    CommandExecutionFailure,
    ConnectionLost,
    MalformedEnvelope,
    NotConnected,
    ProtocolError,
    RequestInFlight,
)
from browser_puppeteer.messages import EVENT_TYPES, Downstream, Upstream, envelope

logger = logging.getLogger(__name__)

PUPPET_CONNECTED = "puppet_connected"

EventHandler = Callable[[dict[str, Any], Any], Any]


class BrowserPuppeteer:
    def __init__(self, settings: PuppeteerSettings | None = None) -> None:
        self._settings = settings or PuppeteerSettings()
        self._server: Server | None = None
        self._session: ServerConnection | None = None
        self._clients: set[ServerConnection] = set()
        self._pending: asyncio.Future[Any] | None = None
        self._connected = asyncio.Event()
        self._handlers: dict[str, list[EventHandler]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def port(self) -> int:
        """Port actually bound (useful with ``port=0``)."""
        if self._server is None:
            raise RuntimeError("server not started")
        return self._server.sockets[0].getsockname()[1]

    @property
    def has_pending_request(self) -> bool:
        return self._pending is not None

    # -- Lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Listen for the agent on ``host:port``; static assets share the port."""
        self._server = await serve(
            self._handle_connection,
            self._settings.host,
            self._settings.port,
            process_request=static_asset_handler(self._settings.assets_dir),
            compression=None,
            max_size=None,
        )
        logger.info("Listening on %s:%d", self._settings.host, self.port)

    async def stop(self) -> None:
        self.discard_clients()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Stopped")

    def is_puppet_connected(self) -> bool:
        return self._session is not None and self._session.state is State.OPEN

    async def wait_for_connection(self, timeout: float | None = None) -> None:
        """Suspend until an agent session is open.

        Raises:
            TimeoutError: no session opened within *timeout* seconds.
        """
        poll = self._settings.connection_poll_interval

        async def _wait() -> None:
            while not self.is_puppet_connected():
                try:
                    await asyncio.wait_for(self._connected.wait(), poll)
                except TimeoutError:
                    continue
                if not self.is_puppet_connected():
                    await asyncio.sleep(poll)

        await asyncio.wait_for(_wait(), timeout)

    def discard_clients(self) -> None:
        """Forget the session and abort every open channel."""
        self._forget_session()
        self._reject_pending(ConnectionLost("Clients discarded"))
        for ws in list(self._clients):
            if ws.transport is not None:
                ws.transport.abort()
        self._clients.clear()

    def _forget_session(self) -> None:
        self._session = None
        self._connected.clear()

    # -- Events --------------------------------------------------------------

    def on(self, event: Upstream | str, handler: EventHandler) -> None:
        """Register *handler* for an upstream event type or ``puppet_connected``.

        Handlers are called as ``handler(data, raw)`` and may be coroutines.
        """
        key = event.value if isinstance(event, Upstream) else event
        self._handlers.setdefault(key, []).append(handler)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _emit(self, event: str, data: dict[str, Any], raw: Any) -> None:
        # Run handlers outside the receive loop so they may send requests
        for handler in self._handlers.get(event, []):
            self._spawn(self._call_handler(event, handler, data, raw))

    @staticmethod
    async def _call_handler(
        event: str, handler: EventHandler, data: dict[str, Any], raw: Any
    ) -> None:
        try:
            result = handler(data, raw)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Error in handler for event %s", event)

    # -- Channel -------------------------------------------------------------

    async def _handle_connection(self, ws: ServerConnection) -> None:
        previous = self._session
        self._clients.add(ws)
        self._session = ws
        self._connected.set()
        logger.info("Puppet connected from %s", ws.remote_address)

        if previous is not None and previous is not ws:
            logger.info("Replacing previous puppet session")
            self._reject_pending(ConnectionLost("Puppet session replaced"))
            # a half-dead peer must not hold up the new session
            self._spawn(previous.close())

        self._emit(PUPPET_CONNECTED, {"remote_address": ws.remote_address}, None)

        try:
            async for raw in ws:
                if ws is not self._session:
                    logger.warning("Dropping message from stale puppet session")
                    continue
                try:
                    self._on_upstream_message(raw)
                except ProtocolError as e:
                    logger.error("Closing puppet connection: %s", e)
                    await ws.close(CloseCode.PROTOCOL_ERROR, str(e))
                    break
        except ConnectionClosed as e:
            logger.debug("Puppet connection closed: %s", e)
        finally:
            self._clients.discard(ws)
            if ws is self._session:
                self._forget_session()
                self._reject_pending(ConnectionLost("Puppet connection closed"))
            logger.info("Puppet disconnected")

    def _on_upstream_message(self, raw: str | bytes) -> None:
        try:
            data = decode_envelope(raw)
        except MalformedEnvelope as e:
            logger.warning("Dropping malformed message: %s", e)
            return

        logger.debug("Received %s", str(raw)[:300])
        message_type = data["type"]

        if message_type == Upstream.ACK or message_type == Upstream.NAK:
            pending = self._pending
            if pending is None:
                raise ProtocolError(f"received {message_type} with no request pending")
            self._pending = None
            if pending.done():
                return
            if message_type == Upstream.ACK:
                pending.set_result(data.get("result"))
            else:
                pending.set_exception(CommandExecutionFailure.from_descriptor(data.get("error")))
            return

        if message_type in EVENT_TYPES:
            self._emit(message_type, data, raw)
            return

        logger.warning("Dropping message of unknown type %s", message_type)

    def _reject_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.set_exception(exc)

    async def send_message(self, message: dict[str, Any]) -> Any:
        """Send *message* and return the result carried by the agent's ACK.

        Raises:
            NotConnected: no agent session is open.
            RequestInFlight: another request is still awaiting its reply.
            CommandExecutionFailure: the agent answered with a NAK.
            ConnectionLost: the session dropped before the reply arrived.
        """
        session = self._session
        if session is None or not self.is_puppet_connected():
            raise NotConnected()
        if self._pending is not None:
            raise RequestInFlight("Cannot send multiple messages")

        payload = encode(message)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending = future
        logger.debug("Sending %s", payload[:300])
        try:
            await session.send(payload)
        except ConnectionClosed as e:
            if self._pending is future:
                self._pending = None
            if future.done():
                future.exception()
            else:
                future.cancel()
            raise ConnectionLost(str(e)) from e
        return await future

    # -- Convenience ---------------------------------------------------------

    async def exec_command(self, command: Command | dict[str, Any]) -> Any:
        return await self.send_message(
            envelope(Downstream.EXEC_COMMAND, command=dump_command(command))
        )

    async def exec_function(
        self, fn: FunctionInvocation | ScriptFunction | str, *args: Any
    ) -> Any:
        """Run a function in the agent.

        *fn* is a prepared :class:`FunctionInvocation`, or a function (or bare
        body) to call with *args*.
        """
        if isinstance(fn, FunctionInvocation):
            if args:
                raise TypeError("arguments are already bound to the invocation")
            invocation = fn
        else:
            invocation = FunctionInvocation.from_wire(fn, list(args))
        return await self.send_message(
            envelope(
                Downstream.EXEC_FUNCTION,
                fn=invocation.function,
                args=list(invocation.arg_values),
            )
        )

    async def set_transmit_events(self, value: bool) -> None:
        await self.send_message(envelope(Downstream.SET_TRANSMIT_EVENTS, value=value))

    async def set_selector_became_visible_selectors(self, selectors: list[str]) -> None:
        await self.send_message(
            envelope(Downstream.SET_SELECTOR_BECAME_VISIBLE_DATA, selectors=list(selectors))
        )

    async def set_mouseover_selectors(self, selectors: list[str]) -> None:
        await self.send_message(
            envelope(Downstream.SET_MOUSEOVER_SELECTORS, selectors=list(selectors))
        )

    async def set_ignored_classes(self, classes: list[str]) -> None:
        await self.send_message(envelope(Downstream.SET_IGNORED_CLASSES, classes=list(classes)))

    async def show_screenshot_marker(self) -> None:
        await self.send_message(envelope(Downstream.SHOW_SCREENSHOT_MARKER))

    async def hide_screenshot_marker(self) -> None:
        await self.send_message(envelope(Downstream.HIDE_SCREENSHOT_MARKER))

    async def clear_persistent_data(self) -> None:
        await self.send_message(envelope(Downstream.CLEAR_PERSISTENT_DATA))
        self._forget_session()

    async def terminate_puppet(self) -> None:
        await self.send_message(envelope(Downstream.TERMINATE_PUPPET))
        self._forget_session()
