"""Building blocks for sharded Prometheus scraping: config loading, relabelling, scraping, shard clients, static layouts and config injection."""

__version__ = "0.1.0"