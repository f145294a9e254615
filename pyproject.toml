[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "taskdispatch"
version = "0.1.0"
description = "Thread dispatch primitives (run-once guard, parallel apply, reference-counted objects, benchmarking) with a Game of Life and a small web server built on them"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "dispatch",
    "concurrency",
    "threads",
    "parallel",
    "once",
    "benchmark",
    "game-of-life",
    "http-server",
]
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
    "Topic :: Software Development :: Libraries",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
taskdispatch-life = "taskdispatch.life:main"
taskdispatch-server = "taskdispatch.server:main"

[tool.hatch.build.targets.wheel]
packages = ["taskdispatch"]

[tool.hatch.build.targets.sdist]
include = ["taskdispatch", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
