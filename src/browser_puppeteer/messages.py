"""Message catalog for the controller <-> agent channel.

Downstream messages flow controller -> agent and are each answered by exactly
one ACK or NAK.  Upstream messages flow agent -> controller; ACK/NAK are the
replies, everything else is pushed independently of any request.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Downstream(str, Enum):
    EXEC_COMMAND = "EXEC_COMMAND"
    EXEC_FUNCTION = "EXEC_FUNCTION"
    SET_SELECTOR_BECAME_VISIBLE_DATA = "SET_SELECTOR_BECAME_VISIBLE_DATA"
    SHOW_SCREENSHOT_MARKER = "SHOW_SCREENSHOT_MARKER"
    HIDE_SCREENSHOT_MARKER = "HIDE_SCREENSHOT_MARKER"
    SET_TRANSMIT_EVENTS = "SET_TRANSMIT_EVENTS"
    CLEAR_PERSISTENT_DATA = "CLEAR_PERSISTENT_DATA"
    SET_MOUSEOVER_SELECTORS = "SET_MOUSEOVER_SELECTORS"
    SET_IGNORED_CLASSES = "SET_IGNORED_CLASSES"
    TERMINATE_PUPPET = "TERMINATE_PUPPET"


class Upstream(str, Enum):
    ACK = "ACK"
    NAK = "NAK"
    CAPTURED_EVENT = "CAPTURED_EVENT"
    SELECTOR_BECAME_VISIBLE = "SELECTOR_BECAME_VISIBLE"
    INSERT_ASSERTION = "INSERT_ASSERTION"


# Upstream types that are replies to the pending request
REPLY_TYPES = frozenset({Upstream.ACK.value, Upstream.NAK.value})

# Upstream types pushed by the agent on its own
EVENT_TYPES = frozenset(
    {
        Upstream.CAPTURED_EVENT.value,
        Upstream.SELECTOR_BECAME_VISIBLE.value,
        Upstream.INSERT_ASSERTION.value,
    }
)


def envelope(message_type: Downstream | Upstream | str, **payload: Any) -> dict[str, Any]:
    """Build an envelope dict ``{"type": ..., **payload}``."""
    if isinstance(message_type, Enum):
        message_type = message_type.value
    return {"type": message_type, **payload}


# ---------------------------------------------------------------------------
# Captured events
# ---------------------------------------------------------------------------


CapturedEventType = Literal["click", "focus", "input", "scroll", "keydown", "mouseover"]


class TargetSnapshot(BaseModel):
    """Immutable projection of the event target taken at capture time."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    class_name: str = Field(default="", alias="className")
    id: str = ""
    inner_text: str = Field(default="", alias="innerText")
    tag_name: str = Field(alias="tagName")
    type: str | None = None
    scroll_top: float | None = Field(default=None, alias="scrollTop")


class CapturedEvent(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: CapturedEventType
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))
    selector: str
    full_selector_path: str | None = Field(default=None, alias="fullSelectorPath")
    target: TargetSnapshot
    value: str | None = None
    key_code: int | None = Field(default=None, alias="keyCode")
    ctrl_key: bool | None = Field(default=None, alias="ctrlKey")
    shift_key: bool | None = Field(default=None, alias="shiftKey")
    alt_key: bool | None = Field(default=None, alias="altKey")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
