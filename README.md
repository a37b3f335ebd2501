# promshard

Building blocks for running Prometheus as a set of shards, each scraping a
share of the targets. The package is a library; it has no command of its own.

## Modules

- `promshard.promconfig` – `load_config(text)` parses and validates a
  Prometheus configuration into a `ConfigInfo` (global settings, a list of
  `ScrapeConfig`, the raw content and a `config_hash` that ignores external
  labels). `ConfigManager` keeps the current configuration, reloads it with
  `reload_from_file(path)` or `reload_from_raw(data)` and runs the callbacks
  registered with `add_reload_callbacks(...)`. Invalid or empty content raises
  `ConfigError`.
- `promshard.relabel` – `RelabelConfig` (built directly or with
  `RelabelConfig.from_dict`) and `process(labels, configs)`, which applies the
  rules in order and returns the new labels, or `None` if the set was dropped.
  The actions are listed in `RelabelAction`.
- `promshard.promclient` – `Client(url)` for the Prometheus HTTP API:
  `tsdb_info()` returns a `TSDBInfo`, `targets(state)` a `TargetDiscovery`,
  and `config_reload()` posts to `/-/reload`.
- `promshard.scrape` – `Scraper` fetches a target's metrics
  (`request_to()`, then `parse_response(handler)`), decoding gzip bodies and
  copying the decoded body to any writers added with `with_raw_writer(...)`.
  `parse_metrics(text)` parses the text exposition format into `Row` objects,
  `statistic_series(rows, relabel_configs)` counts rows that survive metric
  relabelling, and `ScrapeManager` builds a `JobInfo` per job
  (`apply_config(info)`, `get_job(name)`). When the `SCRAPE_PROXY`
  environment variable is set, scrapes go through it and the proxy from the
  config is sent in the `Origin-Proxy` header. Failures raise `ScrapeError`.
- `promshard.shard` – `Shard(id, url, ready, log)` talks to a shard's sidecar
  API: `runtime_info()`, `target_status()`, `update_config(request)` and
  `update_target(request)`, which skips the request when the cached target
  status shows nothing changed. Its `api_get` and `api_post` attributes can
  be replaced, for example in tests. Failures raise `ShardError`.
- `promshard.static_shards` – `StaticReplicasManager(path, log)` reads
  replicas from a YAML file; each is a `StaticShardManager` whose `shards()`
  returns `Shard` objects. `change_scale(expected)` leaves the layout as it is
  and returns the current shard count.
- `promshard.injector` – `Injector(out_file, options, log)` writes a
  configuration in which every job scrapes only its assigned targets as static
  configs, through `InjectConfigOptions.proxy_url` if set, with the real
  scheme, job name and target hash passed as `_scheme`, `_jobName` and `_hash`
  URL parameters. With `prometheus_url` set it adds a `prometheus_shards` job
  labelled from the `POD_NAME` environment variable. `targets_to_groups(job,
  targets)` builds the static groups on their own.
- Small helpers: `promshard.encode.md5_hex`, `promshard.strutil.find_string`
  and `find_string_vague`, `promshard.wait.run_until` (calls a function at an
  interval until a `threading.Event` is set, logging its errors) and
  `promshard.k8sutil.is_pod_ready` (for a pod in its JSON form).

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from promshard.promconfig import ConfigManager

manager = ConfigManager()
manager.add_reload_callbacks(lambda info: print("new hash", info.config_hash))
manager.reload_from_file("prometheus.yml")
```

A static shard layout file looks like this:

```yaml
replicas:
- shards:
  - id: shard-0
    url: http://127.0.0.1:8080
```

```python
import logging

from promshard.static_shards import StaticReplicasManager

log = logging.getLogger("shards")
for replica in StaticReplicasManager("shards.yaml", log).replicas():
    for shard in replica.shards():
        print(shard.id, shard.runtime_info().head_series)
```

## What it does not do

The package provides the pieces but not the running parts around them. There
is no HTTP server: no sidecar API that answers the requests `Shard` sends, no
scrape proxy endpoint that serves the injected `_jobName`/`_hash` URLs, and
no coordinator that assigns targets to shards. There is no shard manager for
Kubernetes StatefulSets, only the static file layout, and no command-line
program.