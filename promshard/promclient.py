"""Client for the HTTP API of a Prometheus server."""

from dataclasses import dataclass, field
from typing import Any

import requests


@dataclass
class TSDBInfo:
    """Head block statistics reported by ``/api/v1/status/tsdb``."""

    num_series: int = 0


@dataclass
class TargetDiscovery:
    """Targets reported by ``/api/v1/targets``."""

    active_targets: list[dict[str, Any]] = field(default_factory=list)
    dropped_targets: list[dict[str, Any]] = field(default_factory=list)


def _get(url: str) -> Any:
    response = requests.get(url)
    response.raise_for_status()
    body = response.json()
    if isinstance(body, dict):
        if body.get("status") == "error":
            raise ValueError(f"request {url} failed: {body.get('error', '')}")
        return body.get("data")
    return body


def _post(url: str) -> None:
    response = requests.post(url)
    response.raise_for_status()


class Client:
    """Issues API requests against one Prometheus base URL."""

    def __init__(self, url: str) -> None:
        self.url = url

    def tsdb_info(self) -> TSDBInfo:
        """Return the current head status of the server."""
        data = _get(self.url + "/api/v1/status/tsdb") or {}
        head = data.get("headStats") or {}
        return TSDBInfo(num_series=int(head.get("numSeries", 0)))

    def targets(self, state: str) -> TargetDiscovery:
        """Return the targets, optionally filtered by ``state``."""
        url = self.url + "/api/v1/targets"
        if state:
            url += "?state=" + state
        data = _get(url) or {}
        return TargetDiscovery(
            active_targets=list(data.get("activeTargets") or []),
            dropped_targets=list(data.get("droppedTargets") or []),
        )

    def config_reload(self) -> None:
        """Ask the server to reload its configuration."""
        _post(self.url + "/-/reload")