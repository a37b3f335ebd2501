"""Scraping of metric targets on behalf of a Prometheus shard."""

import dataclasses
import gzip
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Iterable, Optional
from urllib.parse import urlsplit

import requests

from .promconfig import ConfigInfo, ScrapeConfig
from .relabel import RelabelConfig, process

ACCEPT_HEADER = (
    "application/openmetrics-text; version=0.0.1,text/plain;version=0.0.4;q=0.5,*/*;q=0.1"
)
USER_AGENT = "promshard-sidecar"
_CHUNK_SIZE = 64 * 1024


class ScrapeError(Exception):
    """Raised when a target cannot be scraped or its response cannot be parsed."""


class TeeReader:
    """Wraps a binary reader and copies every chunk read to the writers."""

    def __init__(self, reader: BinaryIO, *args: Any) -> None:
        self._reader = reader
        self.writers = list(args)

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes and copy them to every writer."""
        data = self._reader.read(size)
        if data:
            for writer in self.writers:
                view = memoryview(data)
                while view:
                    written = writer.write(view)
                    if written is None or written >= len(view):
                        break
                    view = view[written:]
        return data

    def close(self) -> None:
        """Close the wrapped reader."""
        self._reader.close()

    def __enter__(self) -> "TeeReader":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


@dataclass
class Row:
    """One sample line of the text exposition format."""

    metric: str
    tags: list[tuple[str, str]] = field(default_factory=list)
    value: float = 0.0
    timestamp: Optional[int] = None


@dataclass
class JobInfo:
    """The scrape config of a job and the HTTP session used to scrape it.

    ``proxy_url`` keeps the proxy set in the config when ``SCRAPE_PROXY``
    overrides it; it is sent in the ``Origin-Proxy`` header.
    """

    config: ScrapeConfig
    session: requests.Session
    proxy_url: Optional[str] = None


def new_job_info(cfg: ScrapeConfig) -> JobInfo:
    """Create the session for a job, routing it through ``SCRAPE_PROXY`` if set."""
    proxy = os.environ.get("SCRAPE_PROXY", "")
    old_proxy = cfg.proxy_url
    cfg = dataclasses.replace(cfg)
    if proxy:
        try:
            urlsplit(proxy)
        except ValueError as exc:
            raise ScrapeError(f"proxy parse failed: {exc}") from exc
        cfg.proxy_url = proxy

    session = requests.Session()
    session.trust_env = False
    if cfg.proxy_url:
        session.proxies = {"http": cfg.proxy_url, "https": cfg.proxy_url}
    if cfg.bearer_token:
        session.headers["Authorization"] = f"Bearer {cfg.bearer_token}"
    return JobInfo(config=cfg, session=session, proxy_url=old_proxy or None)


def _skip_spaces(line: str, pos: int) -> int:
    while pos < len(line) and line[pos] in " \t":
        pos += 1
    return pos


_ESCAPES = {"n": "\n", "\\": "\\", '"': '"'}


def _parse_tags(line: str, pos: int) -> tuple[list[tuple[str, str]], int]:
    """Parse ``key="value",...}`` starting after ``{``; return tags and next index."""
    tags: list[tuple[str, str]] = []
    size = len(line)
    while True:
        pos = _skip_spaces(line, pos)
        if pos >= size:
            raise ScrapeError(f"missing '}}' in line {line!r}")
        if line[pos] == "}":
            return tags, pos + 1
        equals = line.find("=", pos)
        if equals < 0:
            raise ScrapeError(f"missing '=' after tag name in line {line!r}")
        key = line[pos:equals].strip()
        if not key:
            raise ScrapeError(f"empty tag name in line {line!r}")
        pos = _skip_spaces(line, equals + 1)
        if pos >= size or line[pos] != '"':
            raise ScrapeError(f"tag value must start with '\"' in line {line!r}")
        pos += 1
        value = []
        while True:
            if pos >= size:
                raise ScrapeError(f"unterminated tag value in line {line!r}")
            char = line[pos]
            if char == '"':
                pos += 1
                break
            if char == "\\" and pos + 1 < size:
                nxt = line[pos + 1]
                value.append(_ESCAPES.get(nxt, "\\" + nxt))
                pos += 2
                continue
            value.append(char)
            pos += 1
        tags.append((key, "".join(value)))
        pos = _skip_spaces(line, pos)
        if pos < size and line[pos] == ",":
            pos += 1
            continue
        if pos < size and line[pos] == "}":
            return tags, pos + 1
        raise ScrapeError(f"unexpected character after tag value in line {line!r}")


def _parse_line(line: str) -> Row:
    end = next((i for i, ch in enumerate(line) if ch in "{ \t"), len(line))
    metric = line[:end]
    if not metric:
        raise ScrapeError(f"metric name cannot be empty in line {line!r}")
    tags: list[tuple[str, str]] = []
    pos = end
    if pos < len(line) and line[pos] == "{":
        tags, pos = _parse_tags(line, pos + 1)
    fields = line[pos:].split()
    if len(fields) not in (1, 2):
        raise ScrapeError(f"expected value and optional timestamp in line {line!r}")
    try:
        value = float(fields[0])
    except ValueError:
        raise ScrapeError(f"cannot parse value {fields[0]!r} in line {line!r}") from None
    timestamp = None
    if len(fields) == 2:
        try:
            timestamp = int(fields[1])
        except ValueError:
            raise ScrapeError(
                f"cannot parse timestamp {fields[1]!r} in line {line!r}"
            ) from None
    return Row(metric=metric, tags=tags, value=value, timestamp=timestamp)


def parse_metrics(text: str) -> list[Row]:
    """Parse text exposition format; comments and blank lines are skipped."""
    rows = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        rows.append(_parse_line(line))
    return rows


def statistic_series(rows: Iterable[Row], relabel_configs: Iterable[RelabelConfig]) -> int:
    """Count the rows that survive the metric relabel rules."""
    configs = list(relabel_configs or [])
    total = 0
    for row in rows:
        labels = {"__name__": row.metric}
        labels.update(row.tags)
        if process(labels, configs) is not None:
            total += 1
    return total


class Scraper:
    """Performs one scrape; ``request_to`` must be called before ``parse_response``."""

    def __init__(self, job: Optional[JobInfo], url: str, log: Optional[logging.Logger]) -> None:
        self.job = job
        self.url = url
        self.log = log
        self.writers: list[Any] = []
        self.http_response: Optional[requests.Response] = None
        self._reader: Optional[TeeReader] = None

    def with_raw_writer(self, *args: Any) -> None:
        """Add writers that receive the decoded body while it is parsed."""
        self.writers.extend(args)

    def request_to(self) -> None:
        """Send the scrape request; the response is kept in ``http_response``."""
        if self.job is None:
            raise ScrapeError("no job to scrape")
        timeout = self.job.config.scrape_timeout or 0.0
        headers = {
            "Accept": ACCEPT_HEADER,
            "Accept-Encoding": "gzip",
            "User-Agent": USER_AGENT,
            "X-Prometheus-Scrape-Timeout-Seconds": f"{timeout:f}",
        }
        if self.job.proxy_url:
            headers["Origin-Proxy"] = self.job.proxy_url
        if timeout <= 0:
            raise ScrapeError("do http: context deadline exceeded")

        try:
            response = self.job.session.get(
                self.url, headers=headers, timeout=timeout, stream=True
            )
        except (requests.RequestException, ValueError) as exc:
            raise ScrapeError(f"do http: {exc}") from exc
        self.http_response = response

        if response.status_code != 200:
            response.close()
            raise ScrapeError(
                f"server returned HTTP status {response.status_code} {response.reason}"
            )

        body: BinaryIO = response.raw
        if response.headers.get("Content-Encoding") == "gzip":
            body = gzip.GzipFile(fileobj=response.raw, mode="rb")
        self._reader = TeeReader(body, *self.writers)

    def parse_response(self, handler: Callable[[list[Row]], Any]) -> None:
        """Read and parse the body, passing the rows to ``handler``."""
        if self._reader is None or self.http_response is None:
            raise ScrapeError("request_to must succeed before parse_response")
        reader, response = self._reader, self.http_response
        try:
            try:
                data = b"".join(iter(lambda: reader.read(_CHUNK_SIZE), b""))
            except (OSError, EOFError, requests.RequestException) as exc:
                raise ScrapeError(f"read response: {exc}") from exc
            rows = parse_metrics(data.decode("utf-8", errors="replace"))
            now = int(time.time() * 1000)
            for row in rows:
                if row.timestamp is None:
                    row.timestamp = now
            if rows:
                handler(rows)
        finally:
            self._reader = None
            response.close()


class ScrapeManager:
    """Keeps the job information of every scrape job in the configuration."""

    def __init__(self, log: logging.Logger) -> None:
        self.log = log
        self._jobs: dict[str, JobInfo] = {}

    def apply_config(self, info: ConfigInfo) -> None:
        """Rebuild all jobs from ``info``; jobs that fail are logged and skipped."""
        jobs = {}
        for cfg in info.scrape_configs:
            try:
                jobs[cfg.job_name] = new_job_info(cfg)
            except ScrapeError as exc:
                self.log.error("%s", exc)
        self._jobs = jobs

    def get_job(self, name: str) -> Optional[JobInfo]:
        """Return the job named ``name``, or None if there is none."""
        return self._jobs.get(name)