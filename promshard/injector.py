"""Generation of the configuration file handed to a Prometheus shard.

Every scrape job is rewritten so that the shard scrapes only the targets it
was assigned, through the sidecar proxy, and a job that scrapes the shard
itself can be added.
"""

import copy
import logging
import os
import threading
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union
from urllib.parse import urlsplit

import yaml

from .promconfig import DEFAULT_CONFIG, ConfigError, ConfigInfo

PARAM_JOB_NAME = "_jobName"
PARAM_HASH = "_hash"
PARAM_SCHEME = "_scheme"

ADDRESS_LABEL = "__address__"
SCHEME_LABEL = "__scheme__"
PARAM_LABEL_PREFIX = "__param_"

# Label names that are not valid in Prometheus carry this prefix; the
# injected relabel rule strips it again.
INVALID_LABEL_PREFIX = "invalid_label_"

SELF_MONITOR_JOB = "prometheus_shards"

_REMOVED_CLIENT_KEYS = ("bearer_token", "basic_auth", "authorization", "tls_config")

Logger = Union[logging.Logger, logging.LoggerAdapter]


@dataclass
class InjectConfigOptions:
    """What to inject into the generated configuration."""

    proxy_url: str = ""
    prometheus_url: str = ""


def _label_items(labels: Any) -> Iterable[tuple[str, str]]:
    """Yield name and value pairs from a mapping or a list of label objects."""
    if not labels:
        return []
    if isinstance(labels, Mapping):
        return [(str(name), str(value)) for name, value in labels.items()]
    items = []
    for label in labels:
        if isinstance(label, Mapping):
            items.append((str(label.get("name", "")), str(label.get("value", ""))))
        else:
            name, value = label
            items.append((str(name), str(value)))
    return items


def targets_to_groups(job: str, targets: Optional[Iterable[Mapping[str, Any]]]) -> list[dict]:
    """Turn targets into static config groups that scrape through the proxy.

    The real scheme, the job name and the target hash travel as URL
    parameters; the scheme used towards the proxy is always ``http``.
    """
    groups = []
    for tar in targets or []:
        labels: dict[str, str] = {}
        scheme = "http"
        address = ""
        for name, value in _label_items(tar.get("Labels")):
            if name == SCHEME_LABEL:
                scheme = value
            if name == ADDRESS_LABEL:
                address = value
            labels[name] = value

        labels[SCHEME_LABEL] = "http"
        labels[PARAM_LABEL_PREFIX + PARAM_SCHEME] = scheme
        labels[PARAM_LABEL_PREFIX + PARAM_JOB_NAME] = job
        labels[PARAM_LABEL_PREFIX + PARAM_HASH] = str(tar.get("Hash", 0))

        groups.append({"targets": [address], "labels": labels})
    return groups


class Injector:
    """Writes the injected configuration whenever targets or config change."""

    def __init__(
        self,
        out_file: Union[str, Path],
        options: InjectConfigOptions,
        log: Optional[Logger] = None,
    ) -> None:
        self.out_file = Path(out_file)
        self.options = options
        self.log: Logger = log if log is not None else logging.getLogger(__name__)
        self.inject_total: Counter = Counter()
        self._lock = threading.Lock()
        self._targets: dict[str, list[Mapping[str, Any]]] = {}
        self._config: ConfigInfo = DEFAULT_CONFIG

    def update_targets(self, targets: Mapping[str, list[Mapping[str, Any]]]) -> None:
        """Set the targets of every job and rewrite the file."""
        self._targets = dict(targets)
        self._inject()

    def apply_config(self, info: ConfigInfo) -> None:
        """Set the configuration and rewrite the file."""
        self._config = info
        self._inject()

    def _inject(self) -> None:
        success = False
        try:
            with self._lock:
                self._write()
            success = True
        finally:
            self.inject_total["true" if success else "false"] += 1

    def _write(self) -> None:
        # An empty default config keeps Prometheus and its companions running.
        if self._config is DEFAULT_CONFIG:
            self.out_file.write_bytes(self._config.raw_content)
            return

        try:
            document = yaml.safe_load(self._config.raw_content.decode("utf-8"))
        except (yaml.YAMLError, UnicodeDecodeError) as exc:
            raise ConfigError(f"unmarshal config: {exc}") from exc
        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise ConfigError("unmarshal config: config must be a mapping")
        document = copy.deepcopy(document)

        self._inject_jobs(document)
        self._inject_self_monitor(document)

        data = yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
        self.out_file.write_text(data, encoding="utf-8")
        self.log.info("config inject completed")

    def _inject_jobs(self, document: dict) -> None:
        jobs = document.get("scrape_configs") or []
        if not isinstance(jobs, list):
            raise ConfigError("inject jobs: scrape_configs must be a list")
        if self.options.proxy_url:
            urlsplit(self.options.proxy_url)

        for job in jobs:
            if not isinstance(job, dict):
                raise ConfigError("inject jobs: scrape config must be a mapping")
            if self.options.proxy_url:
                job["proxy_url"] = self.options.proxy_url

            for key in [k for k in job if str(k).endswith("_sd_configs")]:
                del job[key]
            job_name = str(job.get("job_name", ""))
            job["static_configs"] = targets_to_groups(job_name, self._targets.get(job_name))

            job["scheme"] = "http"
            for key in _REMOVED_CLIENT_KEYS:
                job.pop(key, None)

            job["relabel_configs"] = [
                {
                    "separator": ";",
                    "regex": INVALID_LABEL_PREFIX + "(.+)",
                    "replacement": "$1",
                    "action": "labelmap",
                }
            ]
        if jobs:
            document["scrape_configs"] = jobs

    def _inject_self_monitor(self, document: dict) -> None:
        if not self.options.prometheus_url:
            return
        host = urlsplit(self.options.prometheus_url).netloc
        pod_name = os.environ.get("POD_NAME", "")
        shard = pod_name.split("-")[-1]
        jobs = document.get("scrape_configs") or []
        jobs.append(
            {
                "job_name": SELF_MONITOR_JOB,
                "static_configs": [
                    {
                        "targets": [host],
                        "labels": {"replicate": pod_name, "shard": shard},
                    }
                ],
            }
        )
        document["scrape_configs"] = jobs