[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "promshard"
version = "0.1.0"
description = "Building blocks for sharded Prometheus scraping: config loading and hashing, relabelling, target scraping, shard clients, static shard layouts and config injection."
requires-python = ">=3.10"
keywords = ["prometheus", "sharding", "monitoring", "scrape", "relabel"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "pyyaml",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["promshard"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
