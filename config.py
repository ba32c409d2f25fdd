# ========================================================
# ================  config.py  ===========================
# ========================================================
from __future__ import annotations

import json as _json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from exceptions import ConfigError
from loggers import DEBUG_LOGGER

load_dotenv()

DEFAULT_URL = "https://www.example.com"
DEFAULT_BROWSER_ARGS = [
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process",
]


@dataclass
class ExporterConfig:
    """
    Feature switches and runtime settings for one export session.

    Every detection point can be turned off on its own; channels pick the
    fields they care about by name (see BaseChannel.configure).
    """

    # Network interception
    intercept_request: bool = True
    intercept_response: bool = True

    # API interception
    intercept_fetch: bool = True
    intercept_xhr: bool = True

    # WebAudio interception
    intercept_audio_context: bool = True
    intercept_decode_audio_data: bool = True
    intercept_create_buffer: bool = True
    intercept_create_buffer_source: bool = True
    intercept_create_script_processor: bool = True
    intercept_offline_audio_context: bool = True

    # DOM monitoring
    use_mutation_observer: bool = True

    # Scanning
    enable_periodic_scan: bool = True
    scan_on_load: bool = True
    scan_interval_ms: int = 2000

    # Output / browser
    output_dir: str = "exported_files"
    headless: bool = False
    browser_args: List[str] = field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))
    goto_wait_until: str = "networkidle"
    goto_timeout_ms: int = 60000

    # Audio identity: how many leading samples of channel 0 feed the fingerprint
    fingerprint_samples: int = 1000

    FEATURE_FLAGS = (
        "intercept_request",
        "intercept_response",
        "intercept_fetch",
        "intercept_xhr",
        "intercept_audio_context",
        "intercept_decode_audio_data",
        "intercept_create_buffer",
        "intercept_create_buffer_source",
        "intercept_create_script_processor",
        "intercept_offline_audio_context",
        "use_mutation_observer",
        "enable_periodic_scan",
    )

    @classmethod
    def from_env(cls) -> "ExporterConfig":
        cfg = cls()
        if os.getenv("DATAURI_EXPORT_DIR"):
            cfg.output_dir = os.getenv("DATAURI_EXPORT_DIR", cfg.output_dir)
        if os.getenv("DATAURI_HEADLESS"):
            cfg.headless = os.getenv("DATAURI_HEADLESS", "").strip().lower() in ("1", "true", "yes")
        if os.getenv("DATAURI_SCAN_INTERVAL_MS"):
            try:
                cfg.scan_interval_ms = int(os.getenv("DATAURI_SCAN_INTERVAL_MS", ""))
            except ValueError as e:
                raise ConfigError(f"DATAURI_SCAN_INTERVAL_MS must be an integer: {e}") from e
        return cfg

    def has_any_feature_enabled(self) -> bool:
        return any(getattr(self, name) is True for name in self.FEATURE_FLAGS)

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir).expanduser().resolve()

    def apply_extras(self, extras: Dict[str, Any]) -> None:
        """Override fields from parsed `--extra key=value` pairs."""
        known = {f.name: f for f in fields(self)}
        for key, value in extras.items():
            name = key.strip().lower().replace("-", "_")
            if name not in known:
                raise ConfigError(f"Unknown setting '{key}'. Available: {', '.join(sorted(known))}")
            current = getattr(self, name)
            if isinstance(current, bool):
                if not isinstance(value, bool):
                    raise ConfigError(f"Setting '{name}' expects true/false, got {value!r}")
            elif isinstance(current, int):
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ConfigError(f"Setting '{name}' expects a number, got {value!r}")
                value = int(value)
            elif isinstance(current, list):
                if isinstance(value, str):
                    value = [value]
                if not isinstance(value, list):
                    raise ConfigError(f"Setting '{name}' expects a list, got {value!r}")
            else:
                value = str(value)
            setattr(self, name, value)

    def describe(self) -> List[str]:
        def mark(flag: bool) -> str:
            return "✓" if flag else "✗"

        return [
            "Configuration:",
            "  Network:",
            f"    - Request interception: {mark(self.intercept_request)}",
            f"    - Response interception: {mark(self.intercept_response)}",
            "  API Interception:",
            f"    - Fetch: {mark(self.intercept_fetch)}",
            f"    - XMLHttpRequest: {mark(self.intercept_xhr)}",
            "  WebAudio:",
            f"    - AudioContext: {mark(self.intercept_audio_context)}",
            f"    - decodeAudioData: {mark(self.intercept_decode_audio_data)}",
            f"    - createBuffer: {mark(self.intercept_create_buffer)}",
            f"    - createBufferSource: {mark(self.intercept_create_buffer_source)}",
            f"    - createScriptProcessor: {mark(self.intercept_create_script_processor)}",
            f"    - OfflineAudioContext: {mark(self.intercept_offline_audio_context)}",
            "  DOM Monitoring:",
            f"    - MutationObserver: {mark(self.use_mutation_observer)}",
            "  Scanning:",
            f"    - Periodic scan: {mark(self.enable_periodic_scan)} (every {self.scan_interval_ms} ms)",
        ]


def parse_extras(items: List[str]) -> Dict[str, Any]:
    def _coerce(v: str) -> Any:
        s = v.strip()
        low = s.lower()
        if low in ("true", "false"):
            return low == "true"
        try:
            if s.isdigit():
                return int(s)
            return float(s)
        except ValueError:
            pass
        if (s.startswith("'") and s.endswith("'")) or (s.startswith('"') and s.endswith('"')):
            return s[1:-1]
        if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
            try:
                return _json.loads(s)
            except ValueError:
                return s
        return s

    out: Dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise ConfigError(f"Expected key=value, got {item!r}")
        k, v = item.split("=", 1)
        out[k.strip()] = _coerce(v)
    return out


def normalize_url(target: Optional[str], *, cwd: Optional[str] = None, logger=None) -> str:
    """
    Turn a start target into something the browser can open.

    Web and file URLs pass through; local paths become absolute file:// URIs.
    A missing local file is only warned about, the browser still tries it.
    """
    if not target:
        return DEFAULT_URL

    if target.startswith(("http://", "https://", "file://")):
        return target

    path = Path(target).expanduser()
    if not path.is_absolute():
        path = Path(cwd or os.getcwd()) / path
    path = Path(os.path.normpath(path))

    if not path.exists():
        log = logger or DEBUG_LOGGER
        log.log_message(f"[Config] Warning: File does not exist: {path}")
        log.log_message("[Config] Trying to access it anyway...")

    return path.as_uri()
