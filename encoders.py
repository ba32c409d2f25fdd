# ========================================================
# ================  encoders.py  =========================
# ========================================================
from __future__ import annotations

import base64
import binascii
import re
import struct
from typing import Any, Dict, Optional

import numpy as np

from exceptions import ResourceDecodeError
from models import AudioSampleSet, DecodedResource, InlineToken

# ---------------- Data URIs ----------------

# MIME type -> file extension
MIME_TO_EXTENSION: Dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "font/woff": "woff",
    "font/woff2": "woff2",
    "application/font-woff": "woff",
    "application/font-woff2": "woff2",
    "application/x-font-woff": "woff",
    "application/x-font-woff2": "woff2",
    "font/ttf": "ttf",
    "application/x-font-ttf": "ttf",
    "font/otf": "otf",
    "application/x-font-opentype": "otf",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/wave": "wav",
    "audio/x-wav": "wav",
    "audio/ogg": "ogg",
    "audio/webm": "webm",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "application/pdf": "pdf",
    "text/css": "css",
    "application/javascript": "js",
    "text/javascript": "js",
}
FALLBACK_EXTENSION = "bin"
AUDIO_EXTENSION = "wav"

_DATA_URI_RX = re.compile(r"data:([^;]+);base64,(.+)")


def parse_data_uri(text: Any) -> Optional[InlineToken]:
    """Split a data URI into label + payload; None when it is not one."""
    if not isinstance(text, str):
        return None
    m = _DATA_URI_RX.fullmatch(text)
    if not m:
        return None
    return InlineToken(text=text, mime_type=m.group(1), payload=m.group(2))


def extension_for_mime(mime_type: str) -> str:
    return MIME_TO_EXTENSION.get((mime_type or "").strip().lower(), FALLBACK_EXTENSION)


def decode_data_uri(token: InlineToken) -> DecodedResource:
    try:
        data = base64.b64decode(token.payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ResourceDecodeError(token.mime_type, e) from e
    return DecodedResource(data=data, mime_type=token.mime_type)


# ---------------- PCM -> WAV ----------------

WAV_HEADER_SIZE = 44
_WAV_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")
_PCM_FORMAT = 1
_BITS_PER_SAMPLE = 16


def wav_header(sample_rate: int, frame_count: int, channel_count: int) -> bytes:
    data_size = frame_count * channel_count * 2
    return _WAV_HEADER.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk size
        _PCM_FORMAT,
        channel_count,
        sample_rate,
        sample_rate * channel_count * 2,  # byte rate
        channel_count * 2,  # block align
        _BITS_PER_SAMPLE,
        b"data",
        data_size,
    )


def pcm16_samples(samples: AudioSampleSet) -> bytes:
    """
    Interleave channels frame by frame as signed 16-bit little-endian.

    Negative samples scale by 32768 and the rest by 32767 so +1.0 does not
    overflow; the product is truncated toward zero.
    """
    frames = np.zeros((samples.frame_count, samples.channel_count), dtype=np.float64)
    for i, ch in enumerate(samples.channels):
        frames[:, i] = np.asarray(ch, dtype=np.float64)

    frames = np.nan_to_num(frames, nan=0.0, posinf=1.0, neginf=-1.0)
    clipped = np.clip(frames, -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.trunc(scaled).astype("<i2").tobytes()


def audio_to_wav(samples: AudioSampleSet) -> bytes:
    """Encode an AudioSampleSet as a 16-bit PCM WAV file. Pure and bit-reproducible."""
    samples.validate()
    return wav_header(samples.sample_rate, samples.frame_count, samples.channel_count) + pcm16_samples(samples)
