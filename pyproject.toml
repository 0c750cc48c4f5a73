[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slatekv"
version = "0.1.0"
description = "Storage building blocks for an object-store-backed key-value database: write batches, table blocks and a disk-cached object store."
requires-python = ">=3.10"
dependencies = []
keywords = ["key-value", "lsm", "object-store", "cache", "database", "sstable"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["slatekv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
