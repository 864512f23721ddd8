[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nutskv"
version = "0.1.0"
description = "B+ tree index, root index and bucket metadata primitives for an embeddable key/value store"
requires-python = ">=3.10"
dependencies = []
keywords = ["key-value", "database", "b+tree", "index", "embedded"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["nutskv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
