# ========================================================
# ================  models.py  ===========================
# ========================================================
from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

from exceptions import AudioShapeError


@dataclass(frozen=True)
class InlineToken:
    """A data URI split into its media-type label and base64 payload. `text` is the identity."""
    text: str
    mime_type: str
    payload: str


@dataclass
class DecodedResource:
    data: bytes
    mime_type: str


@dataclass
class AudioSampleSet:
    """
    Raw float samples of one page-side AudioBuffer.

    channels holds one sequence per channel (lists or numpy arrays), each
    frame_count long. Nominal range is [-1.0, 1.0]; the encoder clamps.
    """
    sample_rate: int
    frame_count: int
    channel_count: int
    channels: List[Sequence[float]]

    @classmethod
    def from_page(cls, payload: Dict[str, Any]) -> "AudioSampleSet":
        """
        Build from the dictionary the page bridge delivers:
        {sampleRate, length, numberOfChannels, channels}.
        """
        try:
            sample_rate = payload["sampleRate"]
            length = payload["length"]
            number_of_channels = payload["numberOfChannels"]
        except KeyError as e:
            raise AudioShapeError(f"missing field {e.args[0]!r}") from e

        channels = payload.get("channels")
        if not isinstance(channels, (list, tuple)):
            raise AudioShapeError("missing channels array")

        return cls(
            sample_rate=_as_int(sample_rate, "sampleRate"),
            frame_count=_as_int(length, "length"),
            channel_count=_as_int(number_of_channels, "numberOfChannels"),
            channels=list(channels),
        )

    def validate(self) -> None:
        if self.sample_rate <= 0:
            raise AudioShapeError(f"sample rate must be positive, got {self.sample_rate}")
        if self.frame_count < 0:
            raise AudioShapeError(f"frame count must be non-negative, got {self.frame_count}")
        if self.channel_count <= 0:
            raise AudioShapeError(f"channel count must be positive, got {self.channel_count}")
        if len(self.channels) != self.channel_count:
            raise AudioShapeError(
                f"channel count mismatch ({len(self.channels)} vs {self.channel_count})"
            )
        for i, ch in enumerate(self.channels):
            if len(ch) != self.frame_count:
                raise AudioShapeError(
                    f"channel {i} has {len(ch)} samples, expected {self.frame_count}"
                )

    @property
    def duration_s(self) -> float:
        return self.frame_count / self.sample_rate if self.sample_rate else 0.0


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise AudioShapeError(f"{name} must be a number, got {value!r}")
    if isinstance(value, float) and (not math.isfinite(value) or not value.is_integer()):
        raise AudioShapeError(f"{name} must be an integer, got {value!r}")
    return int(value)


@dataclass(frozen=True)
class AudioFingerprint:
    """
    Identity of an audio buffer: its shape plus a digest of a prefix of channel 0.

    Two buffers with the same shape and the same leading samples collide.
    """
    sample_rate: int
    frame_count: int
    channel_count: int
    digest: str


@dataclass(frozen=True)
class Unrecognized:
    raw: Any
    reason: str


Candidate = Union[InlineToken, AudioSampleSet, Unrecognized]
ResourceIdentity = Union[str, AudioFingerprint]


@dataclass
class PersistedFile:
    sequence_index: int
    media_type: str
    path: Path
    source: str = "direct"


@dataclass
class ScanResult:
    total: int = 0
    new: int = 0
