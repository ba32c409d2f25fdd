"""Data URI decoding and WAV encoding."""

from __future__ import annotations

import base64
import io
import struct
import wave

import pytest

from encoders import (
    FALLBACK_EXTENSION,
    WAV_HEADER_SIZE,
    audio_to_wav,
    decode_data_uri,
    extension_for_mime,
    parse_data_uri,
)
from exceptions import AudioShapeError, ResourceDecodeError
from models import AudioSampleSet


def _samples(sample_rate: int, *channels: list) -> AudioSampleSet:
    return AudioSampleSet(
        sample_rate=sample_rate,
        frame_count=len(channels[0]) if channels else 0,
        channel_count=len(channels),
        channels=list(channels),
    )


def _pcm(wav: bytes) -> tuple:
    body = wav[WAV_HEADER_SIZE:]
    return struct.unpack(f"<{len(body) // 2}h", body)


# ---------------- data URIs ----------------

@pytest.mark.parametrize(
    "uri",
    [
        "data:image/png;base64,iVBORw0KGgo=",
        "data:font/woff2;base64,d09GMgABAAAAAA==",
        "data:audio/mpeg;base64,SUQzBAAAAAAA",
    ],
)
def test_decode_reproduces_payload(uri: str) -> None:
    token = parse_data_uri(uri)
    assert token is not None
    resource = decode_data_uri(token)
    assert base64.b64encode(resource.data).decode("ascii") == token.payload
    assert resource.mime_type == token.mime_type


def test_parse_splits_label_and_payload() -> None:
    token = parse_data_uri("data:image/svg+xml;base64,PHN2Zy8+")
    assert token is not None
    assert token.mime_type == "image/svg+xml"
    assert token.payload == "PHN2Zy8+"
    assert token.text == "data:image/svg+xml;base64,PHN2Zy8+"


@pytest.mark.parametrize(
    "text",
    [
        "data:image/png,iVBORw0KGgo=",
        "data:;base64,AAAA",
        "data:image/png;base64,",
        "https://example.com/a.png",
        "",
        None,
        42,
    ],
)
def test_parse_rejects_non_tokens(text) -> None:
    assert parse_data_uri(text) is None


def test_invalid_base64_raises_without_partial_bytes() -> None:
    token = parse_data_uri("data:image/png;base64,iVBO!!Rw0KGgo=")
    assert token is not None
    with pytest.raises(ResourceDecodeError) as exc:
        decode_data_uri(token)
    assert exc.value.mime_type == "image/png"
    assert "image/png" in str(exc.value)


def test_extension_lookup_and_fallback() -> None:
    assert extension_for_mime("image/png") == "png"
    assert extension_for_mime("IMAGE/JPEG") == "jpg"
    assert extension_for_mime("application/unknown") == FALLBACK_EXTENSION == "bin"


# ---------------- WAV ----------------

def test_full_scale_samples_encode_to_int16_extremes() -> None:
    wav = audio_to_wav(_samples(44100, [1.0, -1.0]))
    assert len(wav) == 48
    assert wav[44:46] == struct.pack("<h", 32767)
    assert wav[46:48] == struct.pack("<h", -32768)


def test_empty_buffer_is_header_only() -> None:
    wav = audio_to_wav(AudioSampleSet(sample_rate=48000, frame_count=0, channel_count=1, channels=[[]]))
    assert len(wav) == WAV_HEADER_SIZE
    assert struct.unpack_from("<I", wav, 4)[0] == 36
    assert struct.unpack_from("<I", wav, 40)[0] == 0


def test_header_fields_follow_shape() -> None:
    wav = audio_to_wav(_samples(8000, [0.0, 0.1, 0.2], [0.0, -0.1, -0.2]))
    data_size = 3 * 2 * 2
    assert wav[0:4] == b"RIFF"
    assert struct.unpack_from("<I", wav, 4)[0] == 36 + data_size
    assert wav[8:16] == b"WAVEfmt "
    assert struct.unpack_from("<IHH", wav, 16) == (16, 1, 2)
    assert struct.unpack_from("<IIHH", wav, 24) == (8000, 8000 * 2 * 2, 4, 16)
    assert wav[36:40] == b"data"
    assert struct.unpack_from("<I", wav, 40)[0] == data_size
    assert len(wav) == WAV_HEADER_SIZE + data_size


def test_standard_reader_accepts_output() -> None:
    samples = _samples(22050, [0.25] * 100, [-0.25] * 100)
    with wave.open(io.BytesIO(audio_to_wav(samples)), "rb") as reader:
        assert reader.getnchannels() == 2
        assert reader.getframerate() == 22050
        assert reader.getsampwidth() == 2
        assert reader.getnframes() == 100
        assert len(reader.readframes(100)) == 100 * 2 * 2


def test_channels_are_interleaved_per_frame() -> None:
    wav = audio_to_wav(_samples(8000, [0.5, 0.0], [-0.5, 0.25]))
    assert _pcm(wav) == (16383, -16384, 0, 8191)


def test_out_of_range_and_non_finite_samples_are_clamped() -> None:
    wav = audio_to_wav(_samples(8000, [2.0, -3.0, float("nan"), float("inf"), float("-inf")]))
    assert _pcm(wav) == (32767, -32768, 0, 32767, -32768)


def test_scaling_truncates_toward_zero() -> None:
    wav = audio_to_wav(_samples(8000, [0.9999, -0.00001]))
    assert _pcm(wav) == (32763, 0)


def test_encoder_rejects_shape_mismatch() -> None:
    bad = AudioSampleSet(sample_rate=8000, frame_count=3, channel_count=2, channels=[[0.0, 0.0, 0.0]])
    with pytest.raises(AudioShapeError):
        audio_to_wav(bad)


def test_encoding_is_deterministic() -> None:
    samples = _samples(16000, [0.1, -0.2, 0.3, -0.4])
    assert audio_to_wav(samples) == audio_to_wav(samples)
