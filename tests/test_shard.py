import json
import logging
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from promshard.shard import (
    RuntimeInfo,
    Shard,
    ShardError,
    UpdateConfigRequest,
    UpdateTargetsRequest,
)


def new_shard():
    return Shard("0", "", True, logging.getLogger("test"))


def test_runtime_info():
    s = new_shard()
    s.api_get = lambda url: {"headSeries": 10}
    res = s.runtime_info()
    assert res.head_series == 10
    assert res.idle_start_at is None


def test_runtime_info_error():
    s = new_shard()

    def failing(url):
        raise RuntimeError("boom")

    s.api_get = failing
    with pytest.raises(ShardError, match="get runtime info from 0 failed"):
        s.runtime_info()


def test_target_status():
    s = new_shard()
    st = {
        "LastError": "test",
        "LastScrape": "0001-01-01T00:00:00Z",
        "LastScrapeDuration": 10,
        "Health": "down",
        "Series": 100,
    }
    s.api_get = lambda url: {"1": dict(st)}
    ret = s.target_status()
    assert ret[1] == st
    ret[1]["Series"] = 5
    assert s.scraping[1]["Series"] == 100


def test_target_status_error():
    s = new_shard()

    def failing(url):
        raise RuntimeError("boom")

    s.api_get = failing
    with pytest.raises(ShardError):
        s.target_status()


@pytest.mark.parametrize(
    "scraping, targets, want_update",
    [
        ({}, {"job1": [{"Hash": 1}]}, True),
        ({1: {}}, {"job1": [{"Hash": 1, "TargetState": "in_transfer"}]}, True),
        ({1: {}}, {"job1": [{"Hash": 1}]}, False),
        ({}, {}, True),
    ],
)
def test_update_target(scraping, targets, want_update):
    s = new_shard()
    s.scraping = scraping
    calls = []
    s.api_post = lambda url, req: calls.append((url, req))
    s.update_target(UpdateTargetsRequest(targets=targets))
    assert bool(calls) == want_update
    if want_update:
        assert calls[0] == ("/api/v1/shard/targets/", {"Targets": targets})


def test_update_config():
    s = Shard("a", "http://shard", True, None)
    calls = []
    s.api_post = lambda url, req: calls.append((url, req))
    s.update_config(UpdateConfigRequest(raw_content="global: {}"))
    assert calls == [("http://shard/api/v1/status/config", {"rawContent": "global: {}"})]


def test_runtime_info_from_dict_time():
    info = RuntimeInfo.from_dict(
        {"headSeries": 3, "ConfigHash": "h", "IdleStartAt": "2021-01-02T03:04:05.123456789Z"}
    )
    assert info.idle_start_at == datetime(2021, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)
    assert RuntimeInfo.from_dict(info.to_dict()) == info


def test_runtime_info_to_dict_omits_idle():
    assert RuntimeInfo(head_series=2, config_hash="x").to_dict() == {
        "headSeries": 2,
        "ConfigHash": "x",
    }


@pytest.fixture
def server():
    received = []

    class Handler(BaseHTTPRequestHandler):
        def _send(self, body):
            data = json.dumps(body).encode()
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def do_GET(self):
            self._send({"status": "success", "data": {"headSeries": 7, "ConfigHash": "abc"}})

        def do_POST(self):
            length = int(self.headers.get("Content-Length") or 0)
            received.append((self.path, json.loads(self.rfile.read(length) or b"null")))
            self._send({"status": "success", "data": None})

        def log_message(self, *args):
            pass

    httpd = HTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_port}", received
    httpd.shutdown()
    httpd.server_close()


def test_default_api_over_http(server):
    url, received = server
    s = Shard("s", url, True, None)
    info = s.runtime_info()
    assert info.head_series == 7
    assert info.config_hash == "abc"
    s.update_config(UpdateConfigRequest(raw_content="c"))
    assert received == [("/api/v1/status/config", {"rawContent": "c"})]