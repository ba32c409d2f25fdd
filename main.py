# ========================================================
# ================  main.py  =============================
# ========================================================
from __future__ import annotations
import argparse
import asyncio
import signal
import sys
import threading
from typing import Optional

from config import ExporterConfig, normalize_url, parse_extras
from exceptions import ConfigError
from loggers import attach_console
from session import ExporterSession

COMMANDS_HELP = [
    "Commands:",
    "  - Enter / 'scan': scan the page for data URIs now",
    "  - 'stop': stop periodic scanning",
    "  - 'start': start periodic scanning",
    "  - 'status': show current status",
    "  - Ctrl+C or close the browser: exit",
]


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="datauri-exporter",
        description="Open a page in Chromium and save every base64 data URI and WebAudio buffer it produces.",
    )
    p.add_argument("target", nargs="?", default=None, help="URL or local HTML file (default: https://www.example.com)")
    p.add_argument("--output-dir", default=None, help="Directory for exported files (default: exported_files)")
    p.add_argument("--headless", action="store_true", help="Run Chromium without a window")
    p.add_argument("--scan-interval", type=int, default=None, help="Periodic scan interval in milliseconds")
    p.add_argument("--no-interactive", action="store_true", help="Do not read commands from stdin")
    p.add_argument("--extra", action="append", default=[], help="key=val setting override (e.g. intercept_xhr=false)")
    return p


def build_settings(args: argparse.Namespace) -> ExporterConfig:
    settings = ExporterConfig.from_env()
    if args.output_dir:
        settings.output_dir = args.output_dir
    if args.headless:
        settings.headless = True
    if args.scan_interval is not None:
        if args.scan_interval <= 0:
            raise ConfigError("--scan-interval must be a positive number of milliseconds")
        settings.scan_interval_ms = args.scan_interval
    settings.apply_extras(parse_extras(args.extra))
    return settings


async def handle_command(session: ExporterSession, raw: str) -> Optional[str]:
    """Run one interactive command; returns the text to print (None when nothing to say)."""
    command = raw.strip().lower()
    if not session.is_connected:
        return None

    if command in ("", "scan"):
        if not session.features_enabled:
            return "All features are disabled. Enable at least one feature to use scanning."
        result = await session.scan_now()
        if result is None:
            return "Scan failed."
        return f"Scan complete: found {result.total} data URIs, {result.new} new"
    if command == "stop":
        session.stop_periodic_scan()
        return "Periodic scanning stopped"
    if command == "start":
        if session.start_periodic_scan():
            return f"Periodic scanning started (every {session.config.scan_interval_ms} ms)"
        return "Periodic scanning is not available."
    if command == "status":
        return "\n".join(session.status().lines())
    return f"Unknown command: {command!r}"


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> threading.Thread:
    def _pump() -> None:
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, None)
        except RuntimeError:
            # loop already closed
            return

    t = threading.Thread(target=_pump, name="stdin-commands", daemon=True)
    t.start()
    return t


async def _command_loop(session: ExporterSession, lines: asyncio.Queue) -> None:
    while True:
        line = await lines.get()
        if line is None:
            return
        message = await handle_command(session, line)
        if message:
            print(message, flush=True)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, shutdown: asyncio.Event) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except (NotImplementedError, RuntimeError):
            # Windows: Ctrl+C surfaces as KeyboardInterrupt instead
            pass


async def run(url: str, settings: ExporterConfig, *, interactive: bool = True) -> int:
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()
    _install_signal_handlers(loop, shutdown)

    session = ExporterSession(settings)
    waiters = []
    try:
        await session.open()
        await session.navigate(url)

        if session.features_enabled and settings.enable_periodic_scan:
            session.start_periodic_scan()

        print("\nPage loaded. The browser stays open; resources are saved as they appear.", flush=True)
        print("\n".join(COMMANDS_HELP) + "\n", flush=True)

        waiters = [
            asyncio.create_task(session.wait_closed(), name="browser-closed"),
            asyncio.create_task(shutdown.wait(), name="shutdown"),
        ]
        if interactive:
            lines: asyncio.Queue = asyncio.Queue()
            _start_stdin_reader(loop, lines)
            waiters.append(asyncio.create_task(_command_loop(session, lines), name="commands"))

        await asyncio.wait(waiters[:2], return_when=asyncio.FIRST_COMPLETED)
        if shutdown.is_set():
            print("\nReceived exit signal, closing...", flush=True)
    finally:
        for task in waiters:
            task.cancel()
        await session.close()

    print("Script stopped", flush=True)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = build_settings(args)
    except ConfigError as e:
        parser.error(str(e))
        return 2

    attach_console()

    url = normalize_url(args.target)
    print(f"Input path: {args.target or '(none)'}")
    print(f"Accessing URL: {url}")
    print(f"Files will be saved to: {settings.output_path}")
    print("\n".join(settings.describe()) + "\n")

    try:
        return asyncio.run(run(url, settings, interactive=not args.no_interactive))
    except KeyboardInterrupt:
        print("\nReceived exit signal, closing...", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":

    raise SystemExit(main())
