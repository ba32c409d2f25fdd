from __future__ import annotations

import sys
from typing import Callable, Optional, TextIO

from PyQt5.QtCore import pyqtSignal, QObject


class DebugLogger(QObject):
    """
    Global Qt-based debug logger.

    Usage (anywhere in the exporter):

        from loggers import DEBUG_LOGGER

        DEBUG_LOGGER.log_message("[DocumentScanner] scan complete")

    The CLI hooks this logger to stderr via attach_console(); tests connect
    their own slot to capture messages.
    """
    message_signal = pyqtSignal(str)

    def __init__(self):
        super().__init__()

    def log_message(self, msg: str):
        self.message_signal.emit(str(msg).rstrip())


def attach_console(logger: Optional[DebugLogger] = None, stream: Optional[TextIO] = None) -> Callable[[str], None]:
    """Print every logged message to `stream` (stderr by default). Returns the connected slot."""
    target = logger or DEBUG_LOGGER

    def _print(msg: str) -> None:
        print(msg, file=stream or sys.stderr, flush=True)

    target.message_signal.connect(_print)
    return _print


DEBUG_LOGGER = DebugLogger()
