import logging

import pytest

from promshard.shard import ShardError
from promshard.static_shards import ShardConfig, StaticReplicasManager, StaticShardManager

CONTENT = """
replicas:
- shards:
  - id: shard-0
    url: http://1.1.1.1
- shards:
  - id: shard-1
    url: http://2.2.2.2
"""


def test_replicas_success(tmp_path):
    path = tmp_path / "shards.yaml"
    path.write_text(CONTENT)
    res = StaticReplicasManager(path, logging.getLogger("test")).replicas()
    assert len(res) == 2
    shards = [sd for rep in res for sd in rep.shards()]
    assert [(sd.id, sd.url, sd.ready) for sd in shards] == [
        ("shard-0", "http://1.1.1.1", True),
        ("shard-1", "http://2.2.2.2", True),
    ]


def test_replicas_wrong_format(tmp_path):
    path = tmp_path / "shards.yaml"
    path.write_text("replicas : a")
    with pytest.raises(ShardError):
        StaticReplicasManager(path, logging.getLogger("test")).replicas()


def test_replicas_missing_file(tmp_path):
    with pytest.raises(ShardError, match="read config file"):
        StaticReplicasManager(tmp_path / "shards.yaml", None).replicas()


def test_shard_manager_shards():
    shards = [ShardConfig(id="0", url="http://1.1.1.1")]
    m = StaticShardManager(shards, logging.getLogger("test"))
    sd = m.shards()
    assert len(sd) == 1
    assert sd[0].id == shards[0].id
    assert sd[0].url == "http://1.1.1.1"


def test_shard_manager_change_scale_keeps_shards():
    m = StaticShardManager([ShardConfig(id="a", url="u")], None)
    assert m.change_scale(0) is None
    assert [sd.id for sd in m.shards()] == ["a"]


def test_shard_manager_empty():
    assert StaticShardManager(None, None).shards() == []