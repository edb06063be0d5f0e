[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wsredis"
version = "0.2.0"
description = "WebSocket relay server that shares per-table actions through Redis pub/sub"
requires-python = ">=3.10"
keywords = ["websocket", "redis", "pubsub", "aiohttp", "realtime"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "aiohttp>=3.9",
    "redis>=5.0.1",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
wsredis = "wsredis.server:main"

[tool.hatch.build.targets.wheel]
packages = ["wsredis"]

[tool.pytest.ini_options]
addopts = "-ra"
