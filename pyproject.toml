[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "remotesupport"
version = "0.1.0"
description = "Remote support server and factory client: work orders, simulated device telemetry, chat, file transfer and stream relaying over a length-prefixed JSON protocol"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "remote-support",
    "work-order",
    "ticketing",
    "telemetry",
    "tcp",
    "json",
    "sqlite",
    "asyncio",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Manufacturing",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Communications",
    "Topic :: Database",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
remotesupport-server = "remotesupport.servercore:main"

[tool.hatch.build.targets.wheel]
packages = ["remotesupport"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
