from __future__ import annotations

import asyncio
from dataclasses import dataclass, fields
from typing import Any, List, Optional

from dispatcher import Dispatcher
from instrumentation import (
    AUDIO_BUFFER_BINDING,
    DATA_URI_BINDING,
    DOCUMENT_SCAN_SCRIPT,
    hooks_for,
    install_hooks,
)
from loggers import DEBUG_LOGGER
from models import ScanResult
from registry import CHANNELS

try:
    from playwright.async_api import BrowserContext, Page, Request, Response
except ImportError:  # allow import in non-PW envs
    print("Playwright not installed. Browser sessions will be unavailable.")
    BrowserContext = Page = Request = Response = None


def extract_data_uri(url: Any) -> Optional[str]:
    if isinstance(url, str) and url.startswith("data:"):
        return url
    return None


# ======================================================================
# BaseChannel
# ======================================================================

class BaseChannel:
    """
    A detection channel: discovers candidates and hands them to the Dispatcher.

    Lifecycle, driven by ExporterSession:
      - install(context): context-level init scripts (before any page exists)
      - attach(page): page-level listeners (before navigation)
      - close(): stop background work

    Channels never write files or touch the ledger themselves.
    """

    @dataclass
    class Config:
        pass

    def __init__(
        self,
        dispatcher: Dispatcher,
        config: Optional[Any] = None,
        logger=None,
        *,
        settings: Optional[Any] = None,
    ):
        self.dispatcher = dispatcher
        if config is None:
            config = self.configure(settings) if settings is not None else self.Config()
        self.cfg = config
        self.logger = logger or DEBUG_LOGGER

    @classmethod
    def configure(cls, settings: Any) -> Any:
        """Build this channel's Config from the global settings, matching fields by name."""
        values = {f.name: getattr(settings, f.name) for f in fields(cls.Config) if hasattr(settings, f.name)}
        return cls.Config(**values)

    # ------------------------------ logging ------------------------------ #

    def _log(self, msg: str) -> None:
        full = f"[{type(self).__name__}] {msg}"
        try:
            if self.logger is not None:
                self.logger.log_message(full)
        except Exception:
            pass

    # ------------------------------ lifecycle ------------------------------ #

    @property
    def enabled(self) -> bool:
        return any(v is True for v in vars(self.cfg).values())

    async def install(self, context: "BrowserContext") -> None:
        return None

    def attach(self, page: "Page") -> None:
        return None

    async def close(self) -> None:
        return None


# ======================================================================
# PageBridge
# ======================================================================

class PageBridge:
    """
    The two callbacks page-side instrumentation calls to deliver candidates.

    Exposed once per context; every hook (runtime and DOM) reports through
    them and tags the payload with its origin.
    """

    def __init__(self, dispatcher: Dispatcher, logger=None):
        self.dispatcher = dispatcher
        self.logger = logger or DEBUG_LOGGER
        self.exposed: List[str] = []

    def _log(self, msg: str) -> None:
        self.logger.log_message(f"[PageBridge] {msg}")

    async def expose(self, context: "BrowserContext") -> List[str]:
        for name, callback in (
            (DATA_URI_BINDING, self.on_data_uri),
            (AUDIO_BUFFER_BINDING, self.on_audio_buffer),
        ):
            try:
                await context.expose_function(name, callback)
                self.exposed.append(name)
            except Exception as e:
                self._log(f"Failed to expose {name}: {e}")
        return self.exposed

    async def on_data_uri(self, uri: Any, origin: Any = "runtime") -> bool:
        return await self.dispatcher.submit(uri, source=str(origin or "runtime"))

    async def on_audio_buffer(self, payload: Any) -> bool:
        origin = "audio"
        if isinstance(payload, dict):
            origin = str(payload.get("origin") or origin)
        return await self.dispatcher.submit(payload, source=origin)


# ======================================================================
# NetworkSniffer
# ======================================================================

class NetworkSniffer(BaseChannel):
    """
    Transport observation: every request and response URL the page's network
    layer reports is checked, and data URIs are forwarded. Passive; sees
    nothing that stays in memory.
    """

    @dataclass
    class Config:
        intercept_request: bool = True
        intercept_response: bool = True

    def __init__(self, dispatcher: Dispatcher, config: Optional["NetworkSniffer.Config"] = None, logger=None, **kwargs):
        super().__init__(dispatcher, config, logger, **kwargs)
        self.forwarded = 0

    def attach(self, page: "Page") -> None:
        if self.cfg.intercept_request:
            page.on("request", self._on_request)
        if self.cfg.intercept_response:
            page.on("response", self._on_response)
        self._log(
            f"Attached (request={self.cfg.intercept_request}, response={self.cfg.intercept_response})"
        )

    async def _on_request(self, request: "Request") -> None:
        await self._forward(request.url, "request")

    async def _on_response(self, response: "Response") -> None:
        await self._forward(response.url, "response")

    async def _forward(self, url: Any, source: str) -> None:
        uri = extract_data_uri(url)
        if uri is None:
            return
        self.forwarded += 1
        await self.dispatcher.submit(uri, source=source)


# ======================================================================
# RuntimeSniffer
# ======================================================================

class RuntimeSniffer(BaseChannel):
    """
    Runtime-API interception.

    Covers:
      - fetch / XMLHttpRequest.open arguments that are data URIs
      - WebAudio construction points: decodeAudioData, createBuffer,
        AudioBufferSourceNode buffer/start, ScriptProcessorNode audio
        callbacks, OfflineAudioContext.startRendering

    Each interception point is its own init script; one failing to install
    leaves the others in place. Wrappers keep arguments, return values and
    promise behaviour of the wrapped API.
    """

    @dataclass
    class Config:
        intercept_fetch: bool = True
        intercept_xhr: bool = True
        intercept_audio_context: bool = True
        intercept_decode_audio_data: bool = True
        intercept_create_buffer: bool = True
        intercept_create_buffer_source: bool = True
        intercept_create_script_processor: bool = True
        intercept_offline_audio_context: bool = True
        fingerprint_samples: int = 1000

    hook_channel = "runtime"

    def __init__(self, dispatcher: Dispatcher, config: Optional[Any] = None, logger=None, **kwargs):
        super().__init__(dispatcher, config, logger, **kwargs)
        self.installed: List[str] = []

    async def install(self, context: "BrowserContext") -> None:
        hooks = hooks_for(self.hook_channel, self.cfg)
        if not hooks:
            self._log("All hooks disabled; nothing to install.")
            return
        self.installed = await install_hooks(
            context,
            hooks,
            fingerprint_samples=getattr(self.cfg, "fingerprint_samples", 1000),
            log=self._log,
        )
        self._log(f"Installed hooks: {', '.join(self.installed) or '(none)'}")


# ======================================================================
# MutationSniffer
# ======================================================================

class MutationSniffer(RuntimeSniffer):
    """
    DOM-mutation observation: a MutationObserver on the whole document that
    checks inserted elements, their descendants and src/href/style attribute
    changes for data URIs.
    """

    @dataclass
    class Config:
        use_mutation_observer: bool = True
        fingerprint_samples: int = 1000

    hook_channel = "dom"


# ======================================================================
# DocumentScanner
# ======================================================================

class DocumentScanner(BaseChannel):
    """
    Periodic full-document re-scan: the fallback net.

    Queries the whole live document (src/href attributes, inline styles and
    every readable stylesheet rule) once per page load and every
    `scan_interval_ms` while started. Overlaps the other channels on purpose.
    """

    @dataclass
    class Config:
        enable_periodic_scan: bool = True
        scan_on_load: bool = True
        scan_interval_ms: int = 2000

    def __init__(self, dispatcher: Dispatcher, config: Optional["DocumentScanner.Config"] = None, logger=None, **kwargs):
        super().__init__(dispatcher, config, logger, **kwargs)
        self._page: Optional["Page"] = None
        self._task: Optional[asyncio.Task] = None
        self._halt = asyncio.Event()
        self.last_result: Optional[ScanResult] = None

    def attach(self, page: "Page") -> None:
        self._page = page
        if self.cfg.scan_on_load:
            page.on("load", self._on_load)

    async def _on_load(self, *_: Any) -> None:
        self._log("Page loaded, scanning for data URIs...")
        result = await self.safe_scan()
        if result is not None:
            self._log(f"Scan complete: found {result.total} data URIs, {result.new} new")

    # ------------------------------ scanning ------------------------------ #

    async def scan(self, page: Optional["Page"] = None) -> ScanResult:
        target = page or self._page
        if target is None:
            raise RuntimeError("DocumentScanner has no page attached")

        found = await target.evaluate(DOCUMENT_SCAN_SCRIPT) or []
        result = ScanResult(total=len(found))
        for uri in found:
            if await self.dispatcher.submit(uri, source="scan"):
                result.new += 1
        self.last_result = result
        return result

    async def safe_scan(self, page: Optional["Page"] = None) -> Optional[ScanResult]:
        try:
            return await self.scan(page)
        except Exception as e:
            self._log(f"Scan failed: {e}")
            return None

    # ------------------------------ periodic ------------------------------ #

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._halt.is_set()

    def start(self, interval_ms: Optional[int] = None) -> bool:
        if not self.cfg.enable_periodic_scan:
            self._log("Periodic scan is disabled.")
            return False
        if interval_ms:
            self.cfg.scan_interval_ms = int(interval_ms)
        self.stop()
        self._halt = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._halt), name="periodic-scan")
        return True

    def stop(self) -> bool:
        """Cancel future firings. A scan already under way still hands all its findings over."""
        if not self.running:
            return False
        self._halt.set()
        return True

    async def _loop(self, halt: asyncio.Event) -> None:
        interval = max(0.05, self.cfg.scan_interval_ms / 1000.0)
        while not halt.is_set():
            try:
                await asyncio.wait_for(halt.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            result = await self.safe_scan()
            if result is not None and result.new > 0:
                self._log(f"[Periodic Scan] Found {result.new} new data URIs")

    async def close(self) -> None:
        task = self._task
        self.stop()
        self._task = None
        if task is not None:
            await task


CHANNELS.register("network", NetworkSniffer)
CHANNELS.register("runtime", RuntimeSniffer)
CHANNELS.register("dom", MutationSniffer)
CHANNELS.register("scan", DocumentScanner)

