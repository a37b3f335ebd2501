import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from promshard.promclient import Client


@pytest.fixture
def serve():
    servers = []

    def start(body, status=200):
        seen = []

        class Handler(BaseHTTPRequestHandler):
            def _reply(self):
                seen.append((self.command, self.path))
                payload = body.encode()
                self.send_response(status)
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            do_GET = _reply
            do_POST = _reply

            def log_message(self, *args):
                pass

        server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return f"http://127.0.0.1:{server.server_address[1]}", seen

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


def test_tsdb_info(serve):
    url, seen = serve(
        '{"status": "success", "data": {"headStats": {"numSeries": 508}}}'
    )
    info = Client(url).tsdb_info()
    assert info.num_series == 508
    assert seen == [("GET", "/api/v1/status/tsdb")]


def test_config_reload(serve):
    url, seen = serve("")
    assert Client(url).config_reload() is None
    assert seen == [("POST", "/-/reload")]


TARGETS_BODY = """{
  "status": "success",
  "data": {
    "activeTargets": [
      {
        "discoveredLabels": {
          "__address__": "127.0.0.1:9090",
          "__metrics_path__": "/metrics",
          "__scheme__": "http",
          "job": "prometheus"
        },
        "labels": {"instance": "127.0.0.1:9090", "job": "prometheus"},
        "scrapePool": "prometheus",
        "scrapeUrl": "http://127.0.0.1:9090/metrics",
        "lastError": "",
        "lastScrape": "2017-01-17T15:07:44.723715405+01:00",
        "lastScrapeDuration": 0.050688943,
        "health": "up"
      }
    ],
    "droppedTargets": [
      {
        "discoveredLabels": {
          "__address__": "127.0.0.1:9100",
          "__metrics_path__": "/metrics",
          "__scheme__": "http",
          "job": "node"
        }
      }
    ]
  }
}"""


def test_targets(serve):
    url, seen = serve(TARGETS_BODY)
    result = Client(url).targets("all")
    assert len(result.active_targets) == 1
    assert len(result.dropped_targets) == 1
    assert result.active_targets[0]["scrapePool"] == "prometheus"
    assert seen == [("GET", "/api/v1/targets?state=all")]


def test_targets_without_state(serve):
    url, seen = serve(TARGETS_BODY)
    result = Client(url).targets("")
    assert len(result.active_targets) == 1
    assert len(result.dropped_targets) == 1
    assert seen == [("GET", "/api/v1/targets")]


def test_http_error_raises(serve):
    url, _ = serve("", status=500)
    with pytest.raises(requests.HTTPError):
        Client(url).tsdb_info()


def test_api_error_raises(serve):
    url, _ = serve('{"status": "error", "error": "bad"}')
    with pytest.raises(ValueError, match="bad"):
        Client(url).tsdb_info()