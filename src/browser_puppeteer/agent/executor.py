"""Command execution against the page.

``CommandExecutor.execute`` maps each command variant to a ``cmd_*`` handler
that drives the page primitives.  Commands address elements by selector; a
selector must match exactly one element.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from browser_puppeteer.agent.page import Element, Page, UploadedFile
from browser_puppeteer.agent.visibility import is_selector_visible
from browser_puppeteer.commands import (
    ClickCommand,
    Command,
    CompositeCommand,
    FocusCommand,
    GetValueCommand,
    IsVisibleCommand,
    MouseoverCommand,
    PressKeyCommand,
    ScrollCommand,
    SetValueCommand,
    UploadFileAndAssignCommand,
    WaitForVisibleCommand,
    WaitWhileVisibleCommand,
    parse_command,
)
from browser_puppeteer.errors import CommandExecutionFailure, UnknownCommandType

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class CommandExecutor:
    def __init__(
        self,
        page: Page,
        variables: dict[str, Any],
        wait_timeout: float = 10.0,
        wait_poll_interval: float = 0.1,
    ) -> None:
        self._page = page
        self._variables = variables
        self._wait_timeout = wait_timeout
        self._wait_poll_interval = wait_poll_interval

    # -- Dispatch ------------------------------------------------------------

    async def execute(self, command: Command | dict[str, Any]) -> Any:
        """Validate *command* and run it; returns the command's result value."""
        command = parse_command(command)
        method_name = "cmd_" + _CAMEL_BOUNDARY.sub("_", command.type).lower()
        handler = getattr(self, method_name, None)
        if handler is None:
            raise UnknownCommandType(command.type)
        logger.debug("Executing %s %s", command.type, getattr(command, "selector", ""))
        return await handler(command)

    def _find(self, selector: str) -> Element:
        elements = self._page.query_all(selector)
        if not elements:
            raise CommandExecutionFailure(f"Unable to find element: {selector}")
        if len(elements) > 1:
            raise CommandExecutionFailure(
                f"Selector {selector} is ambiguous: matches {len(elements)} elements"
            )
        return elements[0]

    async def _wait_until(self, selector: str, visible: bool, timeout: float | None) -> None:
        limit = timeout if timeout is not None else self._wait_timeout
        state = "visible" if visible else "hidden"
        try:
            async with asyncio.timeout(limit):
                while is_selector_visible(self._page, selector) != visible:
                    await asyncio.sleep(self._wait_poll_interval)
        except TimeoutError:
            raise CommandExecutionFailure(
                f"Timed out after {limit}s waiting for {selector} to be {state}"
            ) from None

    # -- Handlers ------------------------------------------------------------

    async def cmd_click(self, command: ClickCommand) -> None:
        self._page.click(self._find(command.selector))

    async def cmd_set_value(self, command: SetValueCommand) -> None:
        self._page.set_value(self._find(command.selector), command.value)

    async def cmd_get_value(self, command: GetValueCommand) -> str:
        return self._find(command.selector).value

    async def cmd_press_key(self, command: PressKeyCommand) -> None:
        element = self._find(command.selector)
        self._page.key_down(element, command.key_code)
        self._page.key_up(element, command.key_code)

    async def cmd_wait_for_visible(self, command: WaitForVisibleCommand) -> None:
        await self._wait_until(command.selector, True, command.timeout)

    async def cmd_wait_while_visible(self, command: WaitWhileVisibleCommand) -> None:
        await self._wait_until(command.selector, False, command.timeout)

    async def cmd_focus(self, command: FocusCommand) -> None:
        self._page.focus(self._find(command.selector))

    async def cmd_is_visible(self, command: IsVisibleCommand) -> bool:
        return is_selector_visible(self._page, command.selector)

    async def cmd_scroll(self, command: ScrollCommand) -> None:
        self._page.scroll_to(self._find(command.selector), command.scroll_top)

    async def cmd_mouseover(self, command: MouseoverCommand) -> None:
        self._page.mouseover(self._find(command.selector))

    async def cmd_upload_file_and_assign(self, command: UploadFileAndAssignCommand) -> None:
        element = self._find(command.selector)
        if element.tag_name != "INPUT" or element.type != "file":
            raise CommandExecutionFailure(f"{command.selector} is not a file input")
        data = command.file_data
        uploaded = UploadedFile(data.name, data.mime_type, data.contents)
        self._page.set_files(element, [uploaded])
        self._variables[command.destination_variable] = uploaded

    async def cmd_composite(self, command: CompositeCommand) -> list[Any]:
        # Children run in order; the first failure propagates and skips the rest
        results: list[Any] = []
        for child in command.commands:
            results.append(await self.execute(child))
        return results
