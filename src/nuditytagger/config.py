from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .models import THRESHOLD_LABELS, SeverityLevel
from .utils import clamp, log_event


class ConfigError(ValueError):
    pass


CACHE_HOURS_RANGE = (1, 8760)
REQUEST_DELAY_MS_RANGE = (500, 60000)
MAX_RETRIES_RANGE = (1, 10)
MAX_PREFIX_LENGTH = 50


@dataclass(frozen=True)
class TaggingConfig:
    enabled: bool
    minimum_severity_to_tag: SeverityLevel
    tag_prefix: str
    skip_already_tagged: bool
    set_tagline: bool


@dataclass(frozen=True)
class CacheConfig:
    dir: str
    duration_hours: int
    enable_cleanup: bool


@dataclass(frozen=True)
class HttpConfig:
    base_url: str
    user_agent: str
    accept_language: str
    timeout_seconds: int
    max_retries: int
    request_delay_ms: int


@dataclass(frozen=True)
class KeywordsConfig:
    full_nudity: list[str]
    graphic_sex: list[str]
    sexual_content: list[str]
    brief: list[str]


@dataclass(frozen=True)
class ClassifierConfig:
    keywords: KeywordsConfig


@dataclass(frozen=True)
class Config:
    tagging: TaggingConfig
    cache: CacheConfig
    http: HttpConfig
    classifier: ClassifierConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "tagging": {
        "enabled": True,
        "minimum_severity_to_tag": "Mild",
        "tag_prefix": "",
        "skip_already_tagged": True,
        "set_tagline": True,
    },
    "cache": {
        "dir": "",
        "duration_hours": 168,
        "enable_cleanup": True,
    },
    "http": {
        "base_url": "https://www.imdb.com/title/",
        "user_agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        "accept_language": "en-US,en;q=0.9",
        "timeout_seconds": 30,
        "max_retries": 3,
        "request_delay_ms": 2000,
    },
    "classifier": {
        "keywords": {
            "full_nudity": [
                "full frontal",
                "fully nude",
                "completely nude",
                "full nudity",
                "genitalia",
                "genital",
                "penis",
                "vagina",
                "pubic",
            ],
            "graphic_sex": [
                "graphic sex",
                "explicit sex",
                "sex scene",
                "sexual intercourse",
                "thrusting",
                "orgasm",
                "ejaculation",
                "masturbation",
            ],
            "sexual_content": [
                "sexual",
                "sex",
                "intercourse",
                "making love",
                "intimate",
                "moaning",
                "passion",
                "sensual",
                "erotic",
            ],
            "brief": [
                "brief",
                "quick",
                "fleeting",
                "glimpse",
                "blink",
                "moment",
                "background",
                "distant",
                "unclear",
            ],
        },
    },
}


def default_cache_dir() -> str:
    data_dir = os.environ.get("NT_DATA_DIR", "/data")
    return os.path.join(data_dir, "cache")


def load_config(path: str | None = None, logger: logging.Logger | None = None) -> Config:
    logger = logger or logging.getLogger("nuditytagger.config")
    config_path = path or os.environ.get("NT_CONFIG_PATH")
    overrides: dict[str, Any] = {}
    if config_path:
        overrides = _read_yaml(Path(config_path))
    cfg = _deep_merge(copy.deepcopy(DEFAULT_CONFIG), overrides)
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return build_config(cfg, logger)


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file is not valid YAML: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigError("config file must contain a mapping")
    return payload


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        for item in value:
            if not isinstance(item, str):
                errors.append(f"{path} must be a list of strings")
                break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, str):
        if value is not None and not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def build_config(cfg: dict[str, Any], logger: logging.Logger) -> Config:
    tagging_cfg = cfg["tagging"]
    cache_cfg = cfg["cache"]
    http_cfg = cfg["http"]
    keywords_cfg = cfg["classifier"]["keywords"]

    tagging = TaggingConfig(
        enabled=bool(tagging_cfg["enabled"]),
        minimum_severity_to_tag=_sanitize_severity(tagging_cfg["minimum_severity_to_tag"], logger),
        tag_prefix=_sanitize_prefix(tagging_cfg["tag_prefix"], logger),
        skip_already_tagged=bool(tagging_cfg["skip_already_tagged"]),
        set_tagline=bool(tagging_cfg["set_tagline"]),
    )

    cache = CacheConfig(
        dir=str(cache_cfg["dir"] or default_cache_dir()),
        duration_hours=_clamped(cache_cfg["duration_hours"], CACHE_HOURS_RANGE, "cache.duration_hours", logger),
        enable_cleanup=bool(cache_cfg["enable_cleanup"]),
    )

    http = HttpConfig(
        base_url=_ensure_trailing_slash(str(http_cfg["base_url"])),
        user_agent=str(http_cfg["user_agent"]),
        accept_language=str(http_cfg["accept_language"]),
        timeout_seconds=max(1, int(http_cfg["timeout_seconds"])),
        max_retries=_clamped(http_cfg["max_retries"], MAX_RETRIES_RANGE, "http.max_retries", logger),
        request_delay_ms=_clamped(
            http_cfg["request_delay_ms"], REQUEST_DELAY_MS_RANGE, "http.request_delay_ms", logger
        ),
    )

    keywords = KeywordsConfig(
        full_nudity=_normalize_keywords(keywords_cfg["full_nudity"]),
        graphic_sex=_normalize_keywords(keywords_cfg["graphic_sex"]),
        sexual_content=_normalize_keywords(keywords_cfg["sexual_content"]),
        brief=_normalize_keywords(keywords_cfg["brief"]),
    )

    return Config(
        tagging=tagging,
        cache=cache,
        http=http,
        classifier=ClassifierConfig(keywords=keywords),
    )


def _clamped(value: int, bounds: tuple[int, int], path: str, logger: logging.Logger) -> int:
    lower, upper = bounds
    result = clamp(int(value), lower, upper)
    if result != value:
        log_event(logger, logging.WARNING, "config_value_clamped", key=path, value=value, clamped=result)
    return result


def _sanitize_severity(value: str | None, logger: logging.Logger) -> SeverityLevel:
    for label in THRESHOLD_LABELS:
        if value and value.strip().lower() == label.lower():
            return SeverityLevel.parse(label)
    log_event(
        logger,
        logging.WARNING,
        "config_value_invalid",
        key="tagging.minimum_severity_to_tag",
        value=value,
        default="Mild",
    )
    return SeverityLevel.MILD


def _sanitize_prefix(value: str | None, logger: logging.Logger) -> str:
    prefix = (value or "").strip()
    if len(prefix) > MAX_PREFIX_LENGTH:
        log_event(
            logger,
            logging.WARNING,
            "config_value_truncated",
            key="tagging.tag_prefix",
            max_length=MAX_PREFIX_LENGTH,
        )
        prefix = prefix[:MAX_PREFIX_LENGTH]
    return prefix


def _normalize_keywords(values: list[str]) -> list[str]:
    normalized: list[str] = []
    for value in values:
        keyword = value.strip().lower()
        if keyword and keyword not in normalized:
            normalized.append(keyword)
    return normalized


def _ensure_trailing_slash(url: str) -> str:
    return url if url.endswith("/") else url + "/"
