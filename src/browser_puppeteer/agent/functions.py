"""Evaluation of function invocations sent by the controller.

The body is Python source compiled into ``async def`` with the declared
parameters, so it may ``await`` and ``return``.  It runs with full access to
the agent and the page: this is remote code execution by design, granted to
whoever controls the channel, and is not a sandbox.
"""

from __future__ import annotations

import inspect
import keyword
import textwrap
from collections.abc import Awaitable, Callable
from typing import Any

from browser_puppeteer.commands import FunctionInvocation

_FUNCTION_NAME = "__puppet_function__"


async def run_in_sequence(*steps: Any) -> list[Any]:
    """Run each step after the previous one finished.

    A step is a value, a callable, or something awaitable; callables are
    called and awaitable results awaited.  Returns the list of step results.
    """
    results: list[Any] = []
    for step in steps:
        result = step() if callable(step) else step
        if inspect.isawaitable(result):
            result = await result
        results.append(result)
    return results


def compile_function(
    invocation: FunctionInvocation,
    namespace: dict[str, Any],
) -> Callable[..., Awaitable[Any]]:
    for name in invocation.arg_names:
        if not name.isidentifier() or keyword.iskeyword(name):
            raise ValueError(f"invalid argument name: {name!r}")

    body = textwrap.dedent(invocation.body)
    if not body.strip():
        body = "pass"
    source = (
        f"async def {_FUNCTION_NAME}({', '.join(invocation.arg_names)}):\n"
        + textwrap.indent(body, "    ")
    )
    code = compile(source, "<puppet-function>", "exec")

    scope = dict(namespace)
    exec(code, scope)  # noqa: S102
    return scope[_FUNCTION_NAME]


async def evaluate(invocation: FunctionInvocation, namespace: dict[str, Any]) -> Any:
    function = compile_function(invocation, namespace)
    return await function(*invocation.arg_values)
