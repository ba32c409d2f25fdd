"""Resource ledger, audio fingerprints and the output directory."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from models import AudioFingerprint, AudioSampleSet
from stores import OutputStore, ResourceLedger, audio_fingerprint


def _mono(sample_rate: int, values: list) -> AudioSampleSet:
    return AudioSampleSet(sample_rate=sample_rate, frame_count=len(values), channel_count=1, channels=[values])


def test_check_and_record_is_idempotent() -> None:
    ledger = ResourceLedger()
    assert ledger.check_and_record("data:image/png;base64,AA==") is True
    assert ledger.check_and_record("data:image/png;base64,AA==") is False
    assert ledger.counts() == {"tokens": 1, "audio": 0}


def test_tokens_and_audio_are_tracked_separately() -> None:
    ledger = ResourceLedger()
    fp = audio_fingerprint(_mono(8000, [0.0, 0.5]))
    assert ledger.check_and_record("data:text/plain;base64,aGk=") is True
    assert ledger.check_and_record(fp) is True
    assert ledger.check_and_record(fp) is False
    assert ledger.counts() == {"tokens": 1, "audio": 1}


def test_unknown_identity_type_is_rejected() -> None:
    with pytest.raises(TypeError):
        ResourceLedger().check_and_record(123)  # type: ignore[arg-type]


def test_concurrent_records_admit_exactly_one() -> None:
    ledger = ResourceLedger()
    identity = "data:image/gif;base64,R0lGODlhAQABAAAAACw="
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: ledger.check_and_record(identity), range(64)))
    assert results.count(True) == 1


def test_fingerprint_covers_shape_and_prefix_only() -> None:
    a = _mono(8000, [0.1, 0.2, 0.3, 0.4, 0.5])
    b = _mono(8000, [0.1, 0.2, 0.3, 0.4, -0.5])
    assert audio_fingerprint(a, max_samples=4) == audio_fingerprint(b, max_samples=4)
    assert audio_fingerprint(a, max_samples=5) != audio_fingerprint(b, max_samples=5)


def test_fingerprint_distinguishes_shape() -> None:
    values = [0.0, 0.25, 0.5]
    assert audio_fingerprint(_mono(8000, values)) != audio_fingerprint(_mono(16000, values))
    stereo = AudioSampleSet(sample_rate=8000, frame_count=3, channel_count=2, channels=[values, values])
    assert audio_fingerprint(_mono(8000, values)) != audio_fingerprint(stereo)


def test_fingerprint_of_empty_buffer() -> None:
    fp = audio_fingerprint(AudioSampleSet(sample_rate=44100, frame_count=0, channel_count=2, channels=[[], []]))
    assert isinstance(fp, AudioFingerprint)
    assert (fp.sample_rate, fp.frame_count, fp.channel_count) == (44100, 0, 2)


def test_store_filename_uses_prefix_index_and_epoch_ms(tmp_path: Path) -> None:
    store = OutputStore(tmp_path / "out", clock=lambda: 1.5)
    assert store.filename("file", 3, "png") == "file_3_1500.png"
    assert store.filename("audio", 12, "wav") == "audio_12_1500.wav"


def test_store_creates_directory_on_first_write(tmp_path: Path) -> None:
    root = tmp_path / "nested" / "out"
    store = OutputStore(root, clock=lambda: 2.0)
    assert not root.exists()
    path = store.write("file", 1, "bin", b"\x00\x01")
    assert path == root / "file_1_2000.bin"
    assert path.read_bytes() == b"\x00\x01"
    assert sorted(p.name for p in root.iterdir()) == ["file_1_2000.bin"]
