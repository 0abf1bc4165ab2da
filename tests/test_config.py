import os

import pytest
import yaml

from nuditytagger.config import ConfigError, load_config
from nuditytagger.models import SeverityLevel


def _write(tmp_path, payload):
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")
    return str(path)


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("NT_CONFIG_PATH", raising=False)
    monkeypatch.setenv("NT_DATA_DIR", str(tmp_path))

    cfg = load_config()

    assert cfg.tagging.enabled is True
    assert cfg.tagging.minimum_severity_to_tag is SeverityLevel.MILD
    assert cfg.tagging.tag_prefix == ""
    assert cfg.cache.dir == os.path.join(str(tmp_path), "cache")
    assert cfg.cache.duration_hours == 168
    assert cfg.http.max_retries == 3
    assert cfg.http.request_delay_ms == 2000
    assert "sensual" in cfg.classifier.keywords.sexual_content


def test_yaml_overrides_are_merged(tmp_path):
    path = _write(
        tmp_path,
        {
            "tagging": {"minimum_severity_to_tag": "moderate", "tag_prefix": "  CW: "},
            "cache": {"dir": str(tmp_path / "c")},
            "http": {"base_url": "https://example.test/title"},
        },
    )

    cfg = load_config(path)

    assert cfg.tagging.minimum_severity_to_tag is SeverityLevel.MODERATE
    assert cfg.tagging.tag_prefix == "CW:"
    assert cfg.tagging.set_tagline is True
    assert cfg.cache.dir == str(tmp_path / "c")
    assert cfg.http.base_url == "https://example.test/title/"
    assert cfg.http.timeout_seconds == 30


def test_config_path_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("NT_CONFIG_PATH", _write(tmp_path, {"tagging": {"enabled": False}}))
    assert load_config().tagging.enabled is False


def test_out_of_range_values_are_clamped(tmp_path):
    path = _write(
        tmp_path,
        {
            "cache": {"duration_hours": 0},
            "http": {"max_retries": 50, "request_delay_ms": 100},
        },
    )

    cfg = load_config(path)

    assert cfg.cache.duration_hours == 1
    assert cfg.http.max_retries == 10
    assert cfg.http.request_delay_ms == 500


def test_invalid_threshold_defaults_to_mild(tmp_path):
    cfg = load_config(_write(tmp_path, {"tagging": {"minimum_severity_to_tag": "Unknown"}}))
    assert cfg.tagging.minimum_severity_to_tag is SeverityLevel.MILD


def test_long_prefix_is_truncated(tmp_path):
    cfg = load_config(_write(tmp_path, {"tagging": {"tag_prefix": "p" * 60}}))
    assert cfg.tagging.tag_prefix == "p" * 50


def test_keywords_are_normalized(tmp_path):
    cfg = load_config(
        _write(tmp_path, {"classifier": {"keywords": {"brief": [" Brief ", "brief", "", "Glimpse"]}}})
    )
    assert cfg.classifier.keywords.brief == ["brief", "glimpse"]


def test_unknown_keys_rejected(tmp_path):
    with pytest.raises(ConfigError) as excinfo:
        load_config(_write(tmp_path, {"tagging": {"bogus": True}}))
    assert "unknown config.tagging.bogus" in str(excinfo.value)


def test_wrong_types_rejected(tmp_path):
    with pytest.raises(ConfigError) as excinfo:
        load_config(_write(tmp_path, {"cache": {"duration_hours": "weekly"}, "tagging": {"enabled": "yes"}}))
    message = str(excinfo.value)
    assert "config.cache.duration_hours must be an integer" in message
    assert "config.tagging.enabled must be a boolean" in message


def test_missing_file_rejected(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "absent.yml"))


def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path))
