# ======================= stores.py =======================
from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Set

import numpy as np

from models import AudioFingerprint, AudioSampleSet, ResourceIdentity

DEFAULT_FINGERPRINT_SAMPLES = 1000


def audio_fingerprint(samples: AudioSampleSet, max_samples: int = DEFAULT_FINGERPRINT_SAMPLES) -> AudioFingerprint:
    """
    Shape + SHA-1 of the first `max_samples` samples of channel 0.

    Only a prefix is hashed, so two buffers that share shape and leading
    samples map to the same identity.
    """
    n = max(0, min(int(max_samples), samples.frame_count))
    if samples.channels and n:
        head = np.asarray(samples.channels[0][:n], dtype="<f8")
    else:
        head = np.zeros(0, dtype="<f8")
    digest = hashlib.sha1(head.tobytes()).hexdigest()
    return AudioFingerprint(
        sample_rate=samples.sample_rate,
        frame_count=samples.frame_count,
        channel_count=samples.channel_count,
        digest=digest,
    )


class ResourceLedger:
    """
    Identities of everything persisted during this run.

    Two independent sets:
      - data URI text for inline resources
      - AudioFingerprint for audio buffers

    Append-only; a fresh ledger per Dispatcher.
    """

    def __init__(self) -> None:
        self._tokens: Set[str] = set()
        self._audio: Set[AudioFingerprint] = set()
        self._lock = threading.RLock()

    def check_and_record(self, identity: ResourceIdentity) -> bool:
        """True (and records) the first time `identity` is seen, False afterwards."""
        if isinstance(identity, AudioFingerprint):
            bucket = self._audio
        elif isinstance(identity, str):
            bucket = self._tokens
        else:
            raise TypeError(f"Unsupported identity type: {type(identity).__name__}")

        with self._lock:
            if identity in bucket:
                return False
            bucket.add(identity)
            return True

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return {"tokens": len(self._tokens), "audio": len(self._audio)}


@dataclass
class OutputStore:
    """
    Flat output directory. Created on first write.

    Files are named <prefix>_<index>_<epoch-ms>.<extension>.
    """
    root: Path
    clock: Callable[[], float] = field(default=time.time)
    _ready: bool = field(default=False, init=False, repr=False)

    def ensure(self) -> Path:
        if not self._ready:
            self.root.mkdir(parents=True, exist_ok=True)
            self._ready = True
        return self.root

    def filename(self, prefix: str, index: int, extension: str) -> str:
        return f"{prefix}_{index}_{int(self.clock() * 1000)}.{extension}"

    def write(self, prefix: str, index: int, extension: str, data: bytes) -> Path:
        path = self.ensure() / self.filename(prefix, index, extension)
        path.write_bytes(data)
        return path

