"""Launch a Chrome window that loads the agent page.

The browser runs with a throwaway profile directory that is removed once the
process exits.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import tempfile
from collections.abc import Callable
from pathlib import Path

from browser_puppeteer.config import SpawnerConfig

logger = logging.getLogger(__name__)

CHROME_FLAGS = (
    "--no-default-browser-check",
    "--no-first-run",
    "--disable-default-apps",
    "--disable-popup-blocking",
    "--disable-translate",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-device-discovery-notifications",
)


def chrome_arguments(config: SpawnerConfig, profile_dir: Path, url: str) -> list[str]:
    """Command line arguments (without the executable) for opening *url*."""
    args = [f"--user-data-dir={profile_dir}", *CHROME_FLAGS]

    bounds = config.window_bounds
    if bounds is not None:
        args.append(f"--window-size={bounds.width},{bounds.height}")
        if bounds.x is not None and bounds.y is not None:
            args.append(f"--window-position={bounds.x},{bounds.y}")
    else:
        args.append("--start-maximized")

    args.extend(config.extra_args)
    args.append(url)
    return args


class AgentHost:
    """A running browser process."""

    def __init__(self, process: asyncio.subprocess.Process, profile_dir: Path) -> None:
        self.process = process
        self.profile_dir = profile_dir
        self.closed = asyncio.Event()
        self.returncode: int | None = None
        self._callbacks: list[Callable[[int | None], None]] = []
        self._watcher = asyncio.create_task(self._watch())

    @property
    def pid(self) -> int:
        return self.process.pid

    def on_closed(self, callback: Callable[[int | None], None]) -> None:
        """Call *callback(returncode)* once the process has exited."""
        if self.closed.is_set():
            callback(self.returncode)
            return
        self._callbacks.append(callback)

    async def _watch(self) -> None:
        self.returncode = await self.process.wait()
        logger.info("Browser (pid=%d) exited with code %s", self.pid, self.returncode)
        shutil.rmtree(self.profile_dir, ignore_errors=True)
        self.closed.set()
        for callback in self._callbacks:
            try:
                callback(self.returncode)
            except Exception:
                logger.exception("Error in closed callback")

    async def wait_closed(self) -> None:
        await self.closed.wait()

    async def terminate(self, timeout: float = 5.0) -> None:
        """Stop the browser; returns once it has exited and been cleaned up."""
        if not self.closed.is_set():
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self.closed.wait(), timeout)
            except TimeoutError:
                logger.warning("Browser (pid=%d) ignored SIGTERM, killing", self.pid)
                try:
                    self.process.kill()
                except ProcessLookupError:
                    pass
                await self.closed.wait()


class ChromeSpawner:
    def __init__(self, config: SpawnerConfig) -> None:
        self._config = config
        self._host: AgentHost | None = None

    @property
    def host(self) -> AgentHost | None:
        return self._host

    async def spawn(self, control_url: str) -> AgentHost:
        """Start the browser on *control_url*.

        Raises:
            RuntimeError: a browser started by this spawner is still running.
        """
        if self._host is not None and not self._host.closed.is_set():
            raise RuntimeError("Process is already running")

        if self._config.temp_profile_dir is not None:
            profile_dir = self._config.temp_profile_dir
            profile_dir.mkdir(parents=True, exist_ok=True)
        else:
            profile_dir = Path(tempfile.mkdtemp(prefix="browser_puppeteer_chrome_"))

        args = chrome_arguments(self._config, profile_dir, control_url)
        logger.info("Spawning %s %s", self._config.executable_path, " ".join(args))
        try:
            process = await asyncio.create_subprocess_exec(
                self._config.executable_path,
                *args,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError:
            shutil.rmtree(profile_dir, ignore_errors=True)
            raise

        self._host = AgentHost(process, profile_dir)
        return self._host
