# ========================================================
# ================  dispatcher.py  =======================
# ========================================================
from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Tuple

from encoders import (
    AUDIO_EXTENSION,
    audio_to_wav,
    decode_data_uri,
    extension_for_mime,
    parse_data_uri,
)
from exceptions import AudioShapeError, ResourceDecodeError
from loggers import DEBUG_LOGGER
from models import AudioSampleSet, Candidate, InlineToken, PersistedFile, Unrecognized
from stores import DEFAULT_FINGERPRINT_SAMPLES, OutputStore, ResourceLedger, audio_fingerprint

_STOP = object()


class Dispatcher:
    """
    The single funnel every detection channel feeds.

    For each candidate:
      classify -> identity -> ledger -> decode/encode -> sequence index -> write

    Only the Dispatcher touches the ledger, the sequence counter and the
    output directory. Channels hand candidates over through `submit` / `post`;
    a single worker task drains the queue, so identity checks never interleave.
    """

    def __init__(
        self,
        store: OutputStore,
        ledger: Optional[ResourceLedger] = None,
        *,
        fingerprint_samples: int = DEFAULT_FINGERPRINT_SAMPLES,
        logger=None,
    ):
        self.store = store
        self.ledger = ledger or ResourceLedger()
        self.fingerprint_samples = int(fingerprint_samples)
        self.logger = logger or DEBUG_LOGGER
        self.saved: List[PersistedFile] = []
        self._sequence = 0
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._stopping = False

    # ------------------------------ logging ------------------------------ #

    def _log(self, msg: str) -> None:
        self.logger.log_message(f"[Dispatcher] {msg}")

    # ------------------------------ state ------------------------------ #

    @property
    def files_saved(self) -> int:
        return len(self.saved)

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def _next_index(self) -> int:
        self._sequence += 1
        return self._sequence

    # ------------------------------ classification ------------------------------ #

    def classify(self, raw: Any) -> Candidate:
        """Validate an untyped payload into InlineToken | AudioSampleSet | Unrecognized."""
        if isinstance(raw, (InlineToken, AudioSampleSet, Unrecognized)):
            return raw
        if isinstance(raw, str):
            token = parse_data_uri(raw)
            if token is None:
                return Unrecognized(raw, "not a base64 data URI")
            return token
        if isinstance(raw, dict):
            if "sampleRate" in raw or "numberOfChannels" in raw:
                try:
                    return AudioSampleSet.from_page(raw)
                except AudioShapeError as e:
                    return Unrecognized(raw, f"Audio data format error: {e}")
            return Unrecognized(raw, "dictionary without audio fields")
        return Unrecognized(raw, f"unsupported payload type {type(raw).__name__}")

    # ------------------------------ handling ------------------------------ #

    def handle_candidate(self, raw: Any, source: str = "direct") -> bool:
        """Persist `raw` if it is new. Never raises; returns whether a file was written."""
        candidate = self.classify(raw)
        try:
            if isinstance(candidate, InlineToken):
                return self._handle_token(candidate, source)
            if isinstance(candidate, AudioSampleSet):
                return self._handle_audio(candidate, source)
        except Exception as e:
            self._log(f"✗ Unexpected error handling candidate from {source}: {e}")
            return False

        if candidate.reason.startswith("Audio data format error"):
            self._log(f"✗ {candidate.reason} (from {source})")
        return False

    def _handle_token(self, token: InlineToken, source: str) -> bool:
        if not self.ledger.check_and_record(token.text):
            return False

        try:
            resource = decode_data_uri(token)
        except ResourceDecodeError as e:
            self._log(f"✗ Failed to parse data URI: {e}")
            return False

        index = self._next_index()
        try:
            path = self.store.write("file", index, extension_for_mime(resource.mime_type), resource.data)
        except OSError as e:
            self._log(f"✗ Failed to write file #{index}: {e}")
            return False

        self.saved.append(PersistedFile(index, resource.mime_type, path, source))
        self._log(f"✓ Saved: {path.name} ({resource.mime_type}) via {source}")
        return True

    def _handle_audio(self, samples: AudioSampleSet, source: str) -> bool:
        try:
            samples.validate()
        except AudioShapeError as e:
            self._log(f"✗ Audio data format error: {e} (from {source})")
            return False

        if not self.ledger.check_and_record(audio_fingerprint(samples, self.fingerprint_samples)):
            return False

        wav = audio_to_wav(samples)
        index = self._next_index()
        try:
            path = self.store.write("audio", index, AUDIO_EXTENSION, wav)
        except OSError as e:
            self._log(f"✗ Failed to save audio #{index}: {e}")
            return False

        self.saved.append(PersistedFile(index, "audio/wav", path, source))
        self._log(
            f"✓ Saved audio: {path.name} ({samples.sample_rate}Hz, {samples.channel_count}ch, "
            f"{samples.duration_s:.2f}s) via {source}"
        )
        return True

    # ------------------------------ queue / worker ------------------------------ #

    async def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(), name="dispatcher")

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            item: Tuple[Any, str, Optional[asyncio.Future]] = await self._queue.get()
            try:
                if item is _STOP:
                    return
                raw, source, fut = item
                result = self.handle_candidate(raw, source)
                if fut is not None and not fut.done():
                    fut.set_result(result)
            finally:
                self._queue.task_done()

    def _accepting(self) -> bool:
        return self.running and not self._stopping

    async def submit(self, raw: Any, source: str = "direct") -> bool:
        """Queue `raw` and wait for its outcome. Handles inline when no worker accepts work."""
        if not self._accepting():
            return self.handle_candidate(raw, source)
        fut = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((raw, source, fut))
        return await fut

    def post(self, raw: Any, source: str = "direct") -> None:
        """Queue `raw` without waiting for the outcome."""
        if not self._accepting():
            self.handle_candidate(raw, source)
            return
        self._queue.put_nowait((raw, source, None))

    async def drain(self) -> None:
        if self.running:
            await self._queue.join()

    async def stop(self) -> None:
        """Finish everything already queued, then end the worker. Later arrivals are handled inline."""
        if not self.running or self._stopping:
            return
        self._stopping = True
        self._queue.put_nowait(_STOP)
        try:
            await self._worker
        finally:
            self._worker = None
            self._stopping = False
