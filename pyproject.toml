[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cctrack"
version = "0.1.0"
description = "Track the cost of Claude Code usage from local session logs and serve it as a JSON API with live updates"
requires-python = ">=3.10"
keywords = ["claude", "cost", "usage", "tokens", "monitoring", "websocket"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Operating System :: MacOS",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "aiohttp>=3.9",
    "watchdog>=3.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
cctrack = "cctrack.server:main"

[tool.hatch.build.targets.wheel]
packages = ["cctrack"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
