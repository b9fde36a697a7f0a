"""Controller: the WebSocket server the agent connects to."""

from browser_puppeteer.controller.puppeteer import BrowserPuppeteer

__all__ = ["BrowserPuppeteer"]
