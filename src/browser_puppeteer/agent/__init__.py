"""In-page agent: command execution, event capture and visibility polling."""

from browser_puppeteer.agent.page import Element, Page, VirtualPage
from browser_puppeteer.agent.puppet import BrowserPuppet

__all__ = ["BrowserPuppet", "Element", "Page", "VirtualPage"]
