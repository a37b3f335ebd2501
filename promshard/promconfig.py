"""Loading, hashing and reloading of Prometheus configuration files."""

import dataclasses
import hashlib
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

import yaml

from .relabel import RelabelConfig

DEFAULT_SCRAPE_INTERVAL = 60.0
DEFAULT_SCRAPE_TIMEOUT = 10.0
DEFAULT_EVALUATION_INTERVAL = 60.0

_TOP_LEVEL_KEYS = {
    "global",
    "alerting",
    "rule_files",
    "scrape_configs",
    "remote_write",
    "remote_read",
}
_GLOBAL_KEYS = {
    "scrape_interval",
    "scrape_timeout",
    "evaluation_interval",
    "external_labels",
    "query_log_file",
}

_DURATION = re.compile(
    r"(?:(\d+)y)?(?:(\d+)w)?(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?(?:(\d+)ms)?"
)
_DURATION_UNITS = (365 * 86400, 7 * 86400, 86400, 3600, 60, 1, 0.001)
_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")


class ConfigError(ValueError):
    """Raised when configuration content cannot be loaded."""


def _parse_duration(value: Any) -> Optional[float]:
    if value is None:
        return None
    text = str(value)
    if text == "0":
        return 0.0
    match = _DURATION.fullmatch(text)
    if not text or match is None:
        raise ConfigError(f"not a valid duration string: {text!r}")
    return float(
        sum(int(group) * unit for group, unit in zip(match.groups(), _DURATION_UNITS) if group)
    )


def _parse_labels(data: Any) -> dict[str, str]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("labels must be a mapping")
    labels = {}
    for name, value in data.items():
        name = str(name)
        if not _LABEL_NAME.fullmatch(name):
            raise ConfigError(f"{name!r} is not a valid label name")
        labels[name] = "" if value is None else str(value)
    return labels


def _parse_relabel_list(data: Any, what: str) -> list[RelabelConfig]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigError(f"{what} must be a list")
    try:
        return [RelabelConfig.from_dict(item) for item in data]
    except ValueError as exc:
        raise ConfigError(f"{what}: {exc}") from exc


@dataclass
class ScrapeConfig:
    """One scrape job; the original mapping is kept in ``raw``."""

    job_name: str
    honor_labels: bool = False
    honor_timestamps: bool = True
    scrape_interval: Optional[float] = None
    scrape_timeout: Optional[float] = None
    metrics_path: str = "/metrics"
    scheme: str = "http"
    params: dict[str, Any] = field(default_factory=dict)
    sample_limit: int = 0
    proxy_url: Optional[str] = None
    bearer_token: str = ""
    relabel_configs: list[RelabelConfig] = field(default_factory=list)
    metric_relabel_configs: list[RelabelConfig] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "ScrapeConfig":
        """Build a scrape config from its YAML mapping form."""
        if data is None:
            raise ConfigError("empty or null scrape config section")
        if not isinstance(data, dict):
            raise ConfigError("scrape config must be a mapping")
        job_name = data.get("job_name")
        if not job_name:
            raise ConfigError("job_name is empty")
        honor_timestamps = data.get("honor_timestamps")
        return cls(
            job_name=str(job_name),
            honor_labels=bool(data.get("honor_labels", False)),
            honor_timestamps=True if honor_timestamps is None else bool(honor_timestamps),
            scrape_interval=_parse_duration(data.get("scrape_interval")) or None,
            scrape_timeout=_parse_duration(data.get("scrape_timeout")) or None,
            metrics_path=str(data.get("metrics_path") or "/metrics"),
            scheme=str(data.get("scheme") or "http"),
            params=dict(data.get("params") or {}),
            sample_limit=int(data.get("sample_limit") or 0),
            proxy_url=data.get("proxy_url") or None,
            bearer_token=str(data.get("bearer_token") or ""),
            relabel_configs=_parse_relabel_list(data.get("relabel_configs"), "relabel_configs"),
            metric_relabel_configs=_parse_relabel_list(
                data.get("metric_relabel_configs"), "metric_relabel_configs"
            ),
            raw=dict(data),
        )


@dataclass
class ConfigInfo:
    """A loaded configuration with its raw content and hash."""

    raw_content: bytes = b""
    config_hash: str = ""
    scrape_interval: float = DEFAULT_SCRAPE_INTERVAL
    scrape_timeout: float = DEFAULT_SCRAPE_TIMEOUT
    evaluation_interval: float = DEFAULT_EVALUATION_INTERVAL
    external_labels: dict[str, str] = field(default_factory=dict)
    query_log_file: str = ""
    scrape_configs: list[ScrapeConfig] = field(default_factory=list)
    document: dict[str, Any] = field(default_factory=dict)


DEFAULT_CONFIG = ConfigInfo(
    raw_content=b"\nglobal:\n  external_labels:\n    status: default\n",
)


def _canonical(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _canonical(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(item) for item in value]
    return value


def _config_hash(info: ConfigInfo) -> str:
    """Hash everything in the configuration except the external labels."""
    payload = {
        key: val
        for key, val in info.document.items()
        if key not in ("global", "scrape_configs")
    }
    payload["global"] = {
        "scrape_interval": info.scrape_interval,
        "scrape_timeout": info.scrape_timeout,
        "evaluation_interval": info.evaluation_interval,
        "query_log_file": info.query_log_file,
    }
    payload["scrape_configs"] = [dataclasses.asdict(sc) for sc in info.scrape_configs]
    blob = json.dumps(_canonical(payload), sort_keys=True, default=str)
    digest = hashlib.md5(blob.encode()).digest()
    return str(int.from_bytes(digest[:8], "big"))


def load_config(text: Union[str, bytes]) -> ConfigInfo:
    """Parse and validate configuration text, filling in defaults."""
    raw = text if isinstance(text, bytes) else text.encode()
    try:
        document = yaml.safe_load(raw.decode("utf-8"))
    except (yaml.YAMLError, UnicodeDecodeError) as exc:
        raise ConfigError(f"parse config: {exc}") from exc
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ConfigError("config must be a mapping")
    unknown = set(map(str, document)) - _TOP_LEVEL_KEYS
    if unknown:
        raise ConfigError(f"unknown config fields: {', '.join(sorted(unknown))}")

    global_section = document.get("global") or {}
    if not isinstance(global_section, dict):
        raise ConfigError("global section must be a mapping")
    unknown = set(map(str, global_section)) - _GLOBAL_KEYS
    if unknown:
        raise ConfigError(f"unknown global fields: {', '.join(sorted(unknown))}")

    interval = _parse_duration(global_section.get("scrape_interval")) or DEFAULT_SCRAPE_INTERVAL
    timeout = _parse_duration(global_section.get("scrape_timeout")) or 0.0
    if timeout > interval:
        raise ConfigError("global scrape timeout greater than scrape interval")
    if not timeout:
        timeout = interval if DEFAULT_SCRAPE_TIMEOUT > interval else DEFAULT_SCRAPE_TIMEOUT
    evaluation = (
        _parse_duration(global_section.get("evaluation_interval")) or DEFAULT_EVALUATION_INTERVAL
    )

    sections = document.get("scrape_configs") or []
    if not isinstance(sections, list):
        raise ConfigError("scrape_configs must be a list")
    scrape_configs = []
    seen = set()
    for section in sections:
        scrape = ScrapeConfig.from_dict(section)
        if scrape.job_name in seen:
            raise ConfigError(f"found multiple scrape configs with job name {scrape.job_name!r}")
        seen.add(scrape.job_name)
        if scrape.scrape_interval is None:
            scrape.scrape_interval = interval
        if scrape.scrape_timeout is None:
            scrape.scrape_timeout = (
                scrape.scrape_interval if timeout > scrape.scrape_interval else timeout
            )
        if scrape.scrape_timeout > scrape.scrape_interval:
            raise ConfigError(
                "scrape timeout greater than scrape interval for scrape config "
                f"with job name {scrape.job_name!r}"
            )
        scrape_configs.append(scrape)

    info = ConfigInfo(
        raw_content=raw,
        scrape_interval=interval,
        scrape_timeout=timeout,
        evaluation_interval=evaluation,
        external_labels=_parse_labels(global_section.get("external_labels")),
        query_log_file=str(global_section.get("query_log_file") or ""),
        scrape_configs=scrape_configs,
        document=document,
    )
    info.config_hash = _config_hash(info)
    return info


class ConfigManager:
    """Holds the current configuration and notifies callbacks on reload."""

    def __init__(self) -> None:
        self._callbacks: list[Callable[[ConfigInfo], Any]] = []
        self._current = ConfigInfo()

    def reload_from_file(self, path: Union[str, Path]) -> None:
        """Reload from a file and run every callback."""
        self.reload_from_raw(Path(path).read_bytes())

    def reload_from_raw(self, data: Union[str, bytes]) -> None:
        """Reload from raw content and run every callback."""
        if not data:
            raise ConfigError("config content is empty")
        self._current = load_config(data)
        for callback in self._callbacks:
            callback(self._current)

    def config_info(self) -> ConfigInfo:
        """Return the current configuration."""
        return self._current

    def add_reload_callbacks(self, *args: Callable[[ConfigInfo], Any]) -> None:
        """Register callbacks run after every successful load."""
        self._callbacks.extend(args)