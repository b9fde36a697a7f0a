"""Remote control of a browser page through an in-page agent over one WebSocket."""

from browser_puppeteer.agent import BrowserPuppet, VirtualPage
from browser_puppeteer.codec import UNDEFINED, ScriptFunction
from browser_puppeteer.commands import Commands, FunctionInvocation
from browser_puppeteer.controller import BrowserPuppeteer
from browser_puppeteer.messages import Downstream, Upstream

__all__ = [
    "UNDEFINED",
    "BrowserPuppet",
    "BrowserPuppeteer",
    "Commands",
    "Downstream",
    "FunctionInvocation",
    "ScriptFunction",
    "Upstream",
    "VirtualPage",
]
