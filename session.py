# ========================================================
# ================  session.py  ==========================
# ========================================================
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import submanagers  # registers channels
from config import ExporterConfig
from dispatcher import Dispatcher
from loggers import DEBUG_LOGGER
from models import ScanResult
from registry import CHANNELS
from stores import OutputStore
from submanagers import BaseChannel, DocumentScanner, PageBridge

try:
    from playwright.async_api import async_playwright
except ImportError:  # allow import in non-PW envs
    async_playwright = None


@dataclass
class SessionStatus:
    files_saved: int
    periodic_scan_running: bool
    browser_connected: bool
    output_dir: Path

    def lines(self) -> List[str]:
        return [
            "Current status:",
            f"  - Files saved: {self.files_saved}",
            f"  - Periodic scan: {'Running' if self.periodic_scan_running else 'Stopped'}",
            f"  - Browser status: {'Connected' if self.browser_connected else 'Disconnected'}",
            f"  - Output directory: {self.output_dir}",
        ]


class ExporterSession:
    """
    One browser, one context, one page, one Dispatcher.

    open() wires everything before the first navigation so init scripts and
    listeners see the page from its first byte:
      launch -> context -> dispatcher worker -> page bridge -> channel
      init scripts -> page -> page listeners

    close() is idempotent and safe to call from signal handlers, the
    disconnect listener and the CLI at the same time.
    """

    def __init__(self, config: Optional[ExporterConfig] = None, logger=None):
        self.config = config or ExporterConfig()
        self.logger = logger or DEBUG_LOGGER
        self.store = OutputStore(self.config.output_path)
        self.dispatcher = Dispatcher(
            self.store,
            fingerprint_samples=self.config.fingerprint_samples,
            logger=self.logger,
        )
        self.bridge = PageBridge(self.dispatcher, logger=self.logger)
        self.channels: Dict[str, BaseChannel] = CHANNELS.build(
            dispatcher=self.dispatcher, logger=self.logger, settings=self.config
        )

        self._playwright: Any = None
        self.browser: Any = None
        self.context: Any = None
        self.page: Any = None
        self._closing = False
        self._closed = asyncio.Event()

    def _log(self, msg: str) -> None:
        self.logger.log_message(f"[Session] {msg}")

    # ------------------------------ properties ------------------------------ #

    @property
    def scanner(self) -> DocumentScanner:
        return self.channels["scan"]  # type: ignore[return-value]

    @property
    def features_enabled(self) -> bool:
        return self.config.has_any_feature_enabled()

    @property
    def is_connected(self) -> bool:
        try:
            return self.browser is not None and bool(self.browser.is_connected())
        except Exception:
            return False

    # ------------------------------ lifecycle ------------------------------ #

    async def open(self) -> None:
        if async_playwright is None:
            raise RuntimeError("Playwright is not installed; run `pip install playwright` and `playwright install chromium`.")

        self._playwright = await async_playwright().start()
        self.browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=list(self.config.browser_args),
        )
        self.browser.on("disconnected", self._on_disconnected)
        self.context = await self.browser.new_context()

        await self.dispatcher.start()
        await self.instrument(self.context)

        self.page = await self.context.new_page()
        self.attach(self.page)

    async def instrument(self, context: Any) -> None:
        """Context-level wiring: page bridge + every enabled channel's init scripts."""
        if not self.features_enabled:
            self._log("All features are disabled; no instrumentation installed.")
            return
        await self.bridge.expose(context)
        for name, channel in self.channels.items():
            if not channel.enabled:
                continue
            try:
                await channel.install(context)
            except Exception as e:
                self._log(f"Channel '{name}' failed to install: {e}")

    def attach(self, page: Any) -> None:
        page.on("close", self._on_page_close)
        if not self.features_enabled:
            return
        for name, channel in self.channels.items():
            if not channel.enabled:
                continue
            try:
                channel.attach(page)
            except Exception as e:
                self._log(f"Channel '{name}' failed to attach: {e}")

    async def navigate(self, url: str) -> bool:
        self._log(f"Accessing URL: {url}")
        try:
            await self.page.goto(
                url,
                wait_until=self.config.goto_wait_until,
                timeout=self.config.goto_timeout_ms,
            )
            return True
        except Exception as e:
            self._log(f"Failed to access page: {e}")
            return False

    def _on_disconnected(self, *_: Any) -> None:
        self._log("Browser closed detected, exiting...")
        self._closed.set()

    def _on_page_close(self, *_: Any) -> None:
        if self.is_connected:
            self._log("Page closed")

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True

        for name, channel in self.channels.items():
            try:
                await channel.close()
            except Exception as e:
                self._log(f"Channel '{name}' close error: {e}")

        await self.dispatcher.stop()

        try:
            if self.is_connected:
                await self.browser.close()
        except Exception as e:
            self._log(f"Browser close error: {e}")

        try:
            if self._playwright is not None:
                await self._playwright.stop()
        except Exception as e:
            self._log(f"Playwright stop error: {e}")
        finally:
            self._playwright = None

        self._closed.set()

    # ------------------------------ control ------------------------------ #

    async def scan_now(self) -> Optional[ScanResult]:
        if not self.features_enabled:
            self._log("All features are disabled. Enable at least one feature to use scanning.")
            return None
        if not self.is_connected:
            self._log("Browser is closed, cannot scan")
            return None
        return await self.scanner.safe_scan(self.page)

    def start_periodic_scan(self, interval_ms: Optional[int] = None) -> bool:
        if not self.features_enabled:
            self._log("All features are disabled. Enable at least one feature to use scanning.")
            return False
        if not self.is_connected:
            self._log("Browser is closed, cannot start scanning")
            return False
        return self.scanner.start(interval_ms or self.config.scan_interval_ms)

    def stop_periodic_scan(self) -> bool:
        return self.scanner.stop()

    def status(self) -> SessionStatus:
        return SessionStatus(
            files_saved=self.dispatcher.files_saved,
            periodic_scan_running=self.scanner.running,
            browser_connected=self.is_connected,
            output_dir=self.store.root,
        )
