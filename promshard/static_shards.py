"""Shards listed in a static YAML file."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import yaml

from .shard import Logger, Shard, ShardError


@dataclass
class ShardConfig:
    """One shard: its unique id and the URL the coordinator talks to."""

    id: str
    url: str


class StaticShardManager:
    """A replica made of a fixed list of shards; it cannot change scale."""

    def __init__(self, shards: Optional[Iterable[ShardConfig]], log: Optional[Logger]) -> None:
        self._shards = list(shards or [])
        self.log: Logger = log if log is not None else logging.getLogger(__name__)

    def shards(self) -> list[Shard]:
        """Return the shards of this replica."""
        return [
            Shard(sd.id, sd.url, True, logging.LoggerAdapter(self.log, {"shard": sd.id}))
            for sd in self._shards
        ]

    def change_scale(self, expected: int) -> int:
        """Leave the replica as it is and return its unchanged shard count.

        Static shards cannot change scale, so the request is ignored.
        """
        current = len(self._shards)
        if expected != current:
            self.log.debug(
                "static shards cannot change scale, keeping %d instead of %d",
                current,
                expected,
            )
        return current


def _scalar(value: Any, what: str) -> str:
    if isinstance(value, (dict, list)):
        raise ShardError(f"wrong format of shard config: {what} must be a scalar")
    return "" if value is None else str(value)


def _parse_replicas(document: Any) -> list[list[ShardConfig]]:
    if document is None:
        return []
    if not isinstance(document, dict):
        raise ShardError("wrong format of shard config: must be a mapping")
    replicas = document.get("replicas")
    if replicas is None:
        return []
    if not isinstance(replicas, list):
        raise ShardError("wrong format of shard config: replicas must be a list")
    result = []
    for replica in replicas:
        if replica is None:
            replica = {}
        if not isinstance(replica, dict):
            raise ShardError("wrong format of shard config: replica must be a mapping")
        shards = replica.get("shards") or []
        if not isinstance(shards, list):
            raise ShardError("wrong format of shard config: shards must be a list")
        configs = []
        for item in shards:
            if item is None:
                item = {}
            if not isinstance(item, dict):
                raise ShardError("wrong format of shard config: shard must be a mapping")
            configs.append(
                ShardConfig(id=_scalar(item.get("id"), "id"), url=_scalar(item.get("url"), "url"))
            )
        result.append(configs)
    return result


class StaticReplicasManager:
    """Reads replicas and their shards from a YAML file on every call."""

    def __init__(self, path: Union[str, Path], log: Optional[Logger]) -> None:
        self.path = Path(path)
        self.log: Logger = log if log is not None else logging.getLogger(__name__)

    def replicas(self) -> list[StaticShardManager]:
        """Return one shard manager per replica listed in the file."""
        try:
            content = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ShardError(f"read config file: {exc}") from exc
        try:
            document = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ShardError(f"wrong format of shard config: {exc}") from exc
        return [StaticShardManager(shards, self.log) for shards in _parse_replicas(document)]