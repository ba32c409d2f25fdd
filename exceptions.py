"""Exceptions raised by the exporter.

Only ConfigError is meant to reach the user; the others are raised by the
decoders and caught at the Dispatcher boundary, where the candidate is logged
and dropped.
"""


class ExporterError(Exception):
    """Base exception for the exporter."""


class ResourceDecodeError(ExporterError):
    """Raised when a well-formed data URI carries a payload that is not valid base64."""

    def __init__(self, mime_type: str, original_error: Exception | None = None):
        self.mime_type = mime_type
        self.original_error = original_error
        detail = f": {original_error}" if original_error else ""
        super().__init__(f"Invalid base64 payload for {mime_type}{detail}")


class AudioShapeError(ExporterError):
    """Raised when an audio sample set does not match its declared shape.

    The declared channel count must equal the number of channel arrays, and
    every channel array must hold exactly frame_count samples.
    """


class ConfigError(ExporterError):
    """Raised for unknown or malformed configuration overrides."""
