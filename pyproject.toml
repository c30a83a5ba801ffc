[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "partlog"
version = "0.1.0"
description = "A small partitioned message log broker over TCP with producers and consumers"
requires-python = ">=3.10"
dependencies = []
keywords = ["message broker", "log", "partitions", "producer", "consumer", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[project.scripts]
partlog-server = "partlog.server:main"
partlog-produce = "partlog.client:main"

[tool.hatch.build.targets.wheel]
packages = ["partlog"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
