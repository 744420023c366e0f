[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "quantashared"
version = "0.1.0"
description = "Shared building blocks for a distributed bitmap index: query trees, intermediate results, table schemas, sampling and a schema catalog over a key/value store."
requires-python = ">=3.10"
keywords = ["bitmap", "index", "query", "schema", "sampling", "catalog"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Typing :: Typed",
]
dependencies = [
    "pyyaml",
    "python-dateutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["quantashared"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
