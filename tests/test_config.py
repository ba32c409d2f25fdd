"""Settings, --extra overrides, environment and start-target normalisation."""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from config import DEFAULT_URL, ExporterConfig, normalize_url, parse_extras
from exceptions import ConfigError


def test_defaults_enable_everything() -> None:
    cfg = ExporterConfig()
    assert cfg.has_any_feature_enabled()
    assert cfg.scan_interval_ms == 2000
    assert cfg.output_dir == "exported_files"
    assert all("✓" in line for line in cfg.describe() if line.startswith("    - "))


def test_all_flags_off_means_no_features() -> None:
    cfg = ExporterConfig(**{name: False for name in ExporterConfig.FEATURE_FLAGS})
    assert not cfg.has_any_feature_enabled()
    assert not any("✓" in line for line in cfg.describe())


def test_parse_extras_coerces_values() -> None:
    extras = parse_extras(
        ["intercept_xhr=false", "scan_interval_ms=500", "output_dir='out dir'", 'browser_args=["--mute-audio"]']
    )
    assert extras == {
        "intercept_xhr": False,
        "scan_interval_ms": 500,
        "output_dir": "out dir",
        "browser_args": ["--mute-audio"],
    }


def test_parse_extras_requires_key_value() -> None:
    with pytest.raises(ConfigError):
        parse_extras(["intercept_xhr"])


def test_apply_extras_normalises_keys_and_types() -> None:
    cfg = ExporterConfig()
    cfg.apply_extras({"Intercept-XHR": False, "scan_interval_ms": 750.0, "browser_args": "--mute-audio"})
    assert cfg.intercept_xhr is False
    assert cfg.scan_interval_ms == 750
    assert cfg.browser_args == ["--mute-audio"]


@pytest.mark.parametrize(
    "extras",
    [
        {"no_such_setting": True},
        {"intercept_fetch": "yes"},
        {"scan_interval_ms": True},
        {"scan_interval_ms": "fast"},
    ],
)
def test_apply_extras_rejects_bad_overrides(extras: dict) -> None:
    with pytest.raises(ConfigError):
        ExporterConfig().apply_extras(extras)


def test_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DATAURI_EXPORT_DIR", str(tmp_path / "env-out"))
    monkeypatch.setenv("DATAURI_HEADLESS", "true")
    monkeypatch.setenv("DATAURI_SCAN_INTERVAL_MS", "1500")
    cfg = ExporterConfig.from_env()
    assert cfg.output_path == (tmp_path / "env-out").resolve()
    assert cfg.headless is True
    assert cfg.scan_interval_ms == 1500


def test_from_env_rejects_bad_interval(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATAURI_SCAN_INTERVAL_MS", "soon")
    with pytest.raises(ConfigError):
        ExporterConfig.from_env()


def test_normalize_url_defaults_and_passthrough() -> None:
    assert normalize_url(None) == DEFAULT_URL
    assert normalize_url("") == DEFAULT_URL
    assert normalize_url("https://example.org/page") == "https://example.org/page"
    assert normalize_url("file:///tmp/page.html") == "file:///tmp/page.html"


def test_normalize_url_resolves_local_files(tmp_path: Path, log_messages: List[str]) -> None:
    page = tmp_path / "page.html"
    page.write_text("<html></html>")
    assert normalize_url("page.html", cwd=str(tmp_path)) == page.as_uri()
    assert normalize_url(str(page)) == page.as_uri()
    assert log_messages == []


def test_normalize_url_warns_for_missing_file(tmp_path: Path, log_messages: List[str]) -> None:
    url = normalize_url("sub/../missing.html", cwd=str(tmp_path))
    assert url == (tmp_path / "missing.html").as_uri()
    assert any("File does not exist" in m for m in log_messages)
    assert any("Trying to access it anyway" in m for m in log_messages)
