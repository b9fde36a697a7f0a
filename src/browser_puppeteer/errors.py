"""Exception taxonomy shared by the controller and the agent."""

from __future__ import annotations

from typing import Any


class PuppeteerError(Exception):
    """Base class for every error raised by browser_puppeteer."""


class NotConnected(PuppeteerError):
    """No agent session is live."""

    def __init__(self, message: str = "Puppet not connected") -> None:
        super().__init__(message)


class RequestInFlight(PuppeteerError):
    """A second request was sent while one is still awaiting its reply."""


class ConnectionLost(PuppeteerError):
    """The session dropped while a request was pending."""


class ProtocolError(PuppeteerError):
    """The far side broke the request/reply contract (e.g. an unsolicited ACK)."""


class MalformedEnvelope(PuppeteerError):
    """A channel payload could not be decoded."""


class UnknownMessageType(PuppeteerError):
    def __init__(self, message_type: Any) -> None:
        super().__init__(f"unknown message type: {message_type}")
        self.message_type = message_type


class UnknownCommandType(PuppeteerError):
    def __init__(self, command_type: Any) -> None:
        super().__init__(f"Unknown command type: {command_type}")
        self.command_type = command_type


class TooManyArguments(PuppeteerError):
    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"Too many args: {count} (max {limit})")
        self.count = count
        self.limit = limit


class ArgumentMismatch(ValueError):
    """Declared argument names and supplied values differ in length."""


class NoStableSelector(PuppeteerError):
    """The locator could not produce a unique selector for an element."""


class AgentTerminating(PuppeteerError):
    def __init__(self) -> None:
        super().__init__("cannot process message, puppet is terminating")


class CommandExecutionFailure(PuppeteerError):
    """A command or function failed inside the page.

    On the controller side ``error`` holds the descriptor carried by the NAK:
    the original message, the exception class name and any public fields.
    """

    def __init__(self, message: str, error: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self._error: dict[str, Any] = error if error is not None else {"message": message}

    @classmethod
    def from_descriptor(cls, descriptor: Any) -> CommandExecutionFailure:
        if not isinstance(descriptor, dict):
            descriptor = {"message": str(descriptor)}
        return cls(str(descriptor.get("message", "")), descriptor)

    @property
    def error(self) -> dict[str, Any]:
        return self._error

    @property
    def name(self) -> str | None:
        return self._error.get("name")
