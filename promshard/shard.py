"""A Prometheus shard as seen by the coordinator, reached through its sidecar API."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union

import requests

Logger = Union[logging.Logger, logging.LoggerAdapter]

_FRACTION = re.compile(r"\.(\d+)")


class ShardError(Exception):
    """Raised when a shard cannot be queried or updated."""


def _parse_time(text: str) -> datetime:
    """Parse an RFC 3339 timestamp, allowing a ``Z`` suffix and nanoseconds."""
    value = text.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise ShardError(f"invalid time {text!r}") from exc


def _unwrap(url: str, response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        body = response.json()
    except ValueError as exc:
        raise ShardError(f"request {url} returned invalid JSON") from exc
    if isinstance(body, dict) and "status" in body:
        if body.get("status") == "error":
            message = body.get("err") or body.get("error") or ""
            raise ShardError(f"request {url} failed: {message}")
        return body.get("data")
    return body


def _api_get(url: str) -> Any:
    """GET ``url`` and return the ``data`` field of the API result."""
    try:
        response = requests.get(url)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise ShardError(f"get {url}: {exc}") from exc
    return _unwrap(url, response)


def _api_post(url: str, payload: Any = None) -> Any:
    """POST ``payload`` as JSON to ``url`` and return the ``data`` field."""
    try:
        response = requests.post(url, json=payload)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise ShardError(f"post {url}: {exc}") from exc
    return _unwrap(url, response)


@dataclass
class RuntimeInfo:
    """Running status of a shard."""

    head_series: int = 0
    config_hash: str = ""
    idle_start_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "RuntimeInfo":
        """Build from the JSON form returned by the sidecar."""
        data = data or {}
        idle = data.get("IdleStartAt")
        return cls(
            head_series=int(data.get("headSeries") or 0),
            config_hash=str(data.get("ConfigHash") or ""),
            idle_start_at=_parse_time(idle) if idle else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form."""
        out: dict[str, Any] = {"headSeries": self.head_series, "ConfigHash": self.config_hash}
        if self.idle_start_at is not None:
            out["IdleStartAt"] = self.idle_start_at.isoformat()
        return out


@dataclass
class UpdateTargetsRequest:
    """All targets a shard should scrape, by job name, in their JSON form."""

    targets: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form."""
        return {"Targets": self.targets}


@dataclass
class UpdateConfigRequest:
    """Request to replace a shard's configuration with raw content."""

    raw_content: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form."""
        return {"rawContent": self.raw_content}


class Shard:
    """One Prometheus shard reached through its sidecar.

    ``api_get`` and ``api_post`` perform the HTTP requests and may be replaced.
    ``scraping`` caches the target status fetched last time, keyed by hash.
    """

    def __init__(self, id: str, url: str, ready: bool, log: Optional[Logger]) -> None:
        self.id = id
        self.url = url
        self.ready = ready
        self.log: Logger = log if log is not None else logging.getLogger(__name__)
        self.api_get: Callable[[str], Any] = _api_get
        self.api_post: Callable[[str, Any], Any] = _api_post
        self.scraping: dict[int, dict[str, Any]] = {}

    def runtime_info(self) -> RuntimeInfo:
        """Return the runtime status of this shard."""
        try:
            data = self.api_get(self.url + "/api/v1/shard/runtimeinfo/")
        except Exception as exc:
            raise ShardError(f"get runtime info from {self.id} failed : {exc}") from exc
        return RuntimeInfo.from_dict(data)

    def target_status(self) -> dict[int, dict[str, Any]]:
        """Return the scrape status of every target this shard scrapes."""
        try:
            data = self.api_get(self.url + "/api/v1/shard/targets/")
        except Exception as exc:
            raise ShardError(
                f"get targets status info from {self.id} failed, url = {self.url}: {exc}"
            ) from exc
        status = {int(key): dict(value or {}) for key, value in (data or {}).items()}
        self.scraping = {key: dict(value) for key, value in status.items()}
        return status

    def update_config(self, request: UpdateConfigRequest) -> None:
        """Send new configuration content to the shard."""
        self.api_post(self.url + "/api/v1/status/config", request.to_dict())

    def update_target(self, request: UpdateTargetsRequest) -> None:
        """Send targets to the shard unless the cached status shows no change."""
        new_targets = {
            int(tar["Hash"]): tar for targets in request.targets.values() for tar in targets
        }
        if not self._need_update(new_targets):
            return
        if new_targets or self.scraping:
            self.log.info("%s need update targets", self.id)
        self.api_post(self.url + "/api/v1/shard/targets/", request.to_dict())

    def _need_update(self, targets: Mapping[int, Mapping[str, Any]]) -> bool:
        if len(targets) != len(self.scraping) or not targets:
            return True
        for key, tar in targets.items():
            current = self.scraping.get(key)
            if current is None:
                return True
            if (current.get("TargetState") or "") != (tar.get("TargetState") or ""):
                return True
        return False