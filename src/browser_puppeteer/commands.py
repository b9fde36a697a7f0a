"""Command vocabulary shared by the controller (which builds commands) and the
agent (which executes them).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from browser_puppeteer.codec import ScriptFunction
from browser_puppeteer.errors import ArgumentMismatch, TooManyArguments, UnknownCommandType

MAX_FUNCTION_ARGS = 6


class CommandType(str, Enum):
    CLICK = "click"
    SET_VALUE = "setValue"
    GET_VALUE = "getValue"
    PRESS_KEY = "pressKey"
    WAIT_FOR_VISIBLE = "waitForVisible"
    WAIT_WHILE_VISIBLE = "waitWhileVisible"
    FOCUS = "focus"
    IS_VISIBLE = "isVisible"
    SCROLL = "scroll"
    MOUSEOVER = "mouseover"
    UPLOAD_FILE_AND_ASSIGN = "uploadFileAndAssign"
    COMPOSITE = "composite"


COMMAND_TYPES = frozenset(t.value for t in CommandType)


class _Command(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ClickCommand(_Command):
    type: Literal["click"] = "click"
    selector: str


class SetValueCommand(_Command):
    type: Literal["setValue"] = "setValue"
    selector: str
    value: str


class GetValueCommand(_Command):
    type: Literal["getValue"] = "getValue"
    selector: str


class PressKeyCommand(_Command):
    type: Literal["pressKey"] = "pressKey"
    selector: str
    key_code: int = Field(alias="keyCode")


class WaitForVisibleCommand(_Command):
    type: Literal["waitForVisible"] = "waitForVisible"
    selector: str
    timeout: float | None = None


class WaitWhileVisibleCommand(_Command):
    type: Literal["waitWhileVisible"] = "waitWhileVisible"
    selector: str
    timeout: float | None = None


class FocusCommand(_Command):
    type: Literal["focus"] = "focus"
    selector: str


class IsVisibleCommand(_Command):
    type: Literal["isVisible"] = "isVisible"
    selector: str


class ScrollCommand(_Command):
    type: Literal["scroll"] = "scroll"
    selector: str
    scroll_top: float = Field(alias="scrollTop")


class MouseoverCommand(_Command):
    type: Literal["mouseover"] = "mouseover"
    selector: str


class FileData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    mime_type: str = Field(default="application/octet-stream", alias="mimeType")
    contents: bytes


class UploadFileAndAssignCommand(_Command):
    type: Literal["uploadFileAndAssign"] = "uploadFileAndAssign"
    selector: str
    file_data: FileData = Field(alias="fileData")
    destination_variable: str = Field(alias="destinationVariable")


class CompositeCommand(_Command):
    type: Literal["composite"] = "composite"
    selector: str | None = None
    commands: list[Command]


Command = Annotated[
    Union[
        ClickCommand,
        SetValueCommand,
        GetValueCommand,
        PressKeyCommand,
        WaitForVisibleCommand,
        WaitWhileVisibleCommand,
        FocusCommand,
        IsVisibleCommand,
        ScrollCommand,
        MouseoverCommand,
        UploadFileAndAssignCommand,
        CompositeCommand,
    ],
    Field(discriminator="type"),
]

CompositeCommand.model_rebuild()

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


def _check_command_types(data: Any) -> None:
    if not isinstance(data, dict):
        raise UnknownCommandType(type(data).__name__)
    command_type = data.get("type")
    if command_type not in COMMAND_TYPES:
        raise UnknownCommandType(command_type)
    if command_type == CommandType.COMPOSITE.value:
        for child in data.get("commands") or []:
            _check_command_types(child)


def parse_command(data: Any) -> Command:
    """Validate a wire command descriptor into its model.

    Raises:
        UnknownCommandType: the descriptor, or any nested child, has an unknown type.
        pydantic.ValidationError: the fields do not fit the variant.
    """
    if isinstance(data, BaseModel):
        return data  # type: ignore[return-value]
    _check_command_types(data)
    return _command_adapter.validate_python(data)


def dump_command(command: Command | dict[str, Any]) -> dict[str, Any]:
    """Turn a command model into its wire form (camelCase, unset fields dropped)."""
    if isinstance(command, dict):
        return command
    return command.model_dump(by_alias=True, exclude_none=True)


class Commands:
    """Constructors for every command variant."""

    @staticmethod
    def click(selector: str) -> ClickCommand:
        return ClickCommand(selector=selector)

    @staticmethod
    def set_value(selector: str, value: str) -> SetValueCommand:
        return SetValueCommand(selector=selector, value=value)

    @staticmethod
    def get_value(selector: str) -> GetValueCommand:
        return GetValueCommand(selector=selector)

    @staticmethod
    def press_key(selector: str, key_code: int) -> PressKeyCommand:
        return PressKeyCommand(selector=selector, key_code=key_code)

    @staticmethod
    def wait_for_visible(selector: str, timeout: float | None = None) -> WaitForVisibleCommand:
        return WaitForVisibleCommand(selector=selector, timeout=timeout)

    @staticmethod
    def wait_while_visible(selector: str, timeout: float | None = None) -> WaitWhileVisibleCommand:
        return WaitWhileVisibleCommand(selector=selector, timeout=timeout)

    @staticmethod
    def focus(selector: str) -> FocusCommand:
        return FocusCommand(selector=selector)

    @staticmethod
    def is_visible(selector: str) -> IsVisibleCommand:
        return IsVisibleCommand(selector=selector)

    @staticmethod
    def scroll(selector: str, scroll_top: float) -> ScrollCommand:
        return ScrollCommand(selector=selector, scroll_top=scroll_top)

    @staticmethod
    def mouseover(selector: str) -> MouseoverCommand:
        return MouseoverCommand(selector=selector)

    @staticmethod
    def upload_file_and_assign(
        selector: str,
        name: str,
        contents: bytes,
        destination_variable: str,
        mime_type: str = "application/octet-stream",
    ) -> UploadFileAndAssignCommand:
        return UploadFileAndAssignCommand(
            selector=selector,
            file_data=FileData(name=name, mime_type=mime_type, contents=contents),
            destination_variable=destination_variable,
        )

    @staticmethod
    def composite(*commands: Command) -> CompositeCommand:
        return CompositeCommand(commands=list(commands))


# ---------------------------------------------------------------------------
# Function invocations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FunctionInvocation:
    """A function body, its declared parameters and the values to call it with.

    Construction fails rather than truncating: more than six parameters raise
    :class:`TooManyArguments`, a names/values length mismatch raises
    :class:`ArgumentMismatch`.
    """

    body: str
    arg_names: tuple[str, ...] = ()
    arg_values: tuple[Any, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "arg_names", tuple(self.arg_names))
        object.__setattr__(self, "arg_values", tuple(self.arg_values))
        if len(self.arg_names) > MAX_FUNCTION_ARGS:
            raise TooManyArguments(len(self.arg_names), MAX_FUNCTION_ARGS)
        if len(self.arg_names) != len(self.arg_values):
            raise ArgumentMismatch(
                f"{len(self.arg_names)} argument names declared "
                f"but {len(self.arg_values)} values given"
            )

    @classmethod
    def from_wire(cls, fn: ScriptFunction | str, args: list[Any] | None) -> FunctionInvocation:
        if isinstance(fn, str):
            fn = ScriptFunction(fn)
        if not isinstance(fn, ScriptFunction):
            raise TypeError(f"expected a function, got {type(fn).__name__}")
        return cls(fn.body, fn.arg_names, tuple(args or ()))

    @property
    def function(self) -> ScriptFunction:
        return ScriptFunction(self.body, self.arg_names)
