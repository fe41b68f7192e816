[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "apfsds"
version = "0.2.0"
description = "Control-plane building blocks for a distributed proxy network: authentication, key rotation, exit-node selection, traffic noise, billing and metrics."
requires-python = ">=3.10"
keywords = [
    "proxy",
    "exit-node",
    "geoip",
    "key-rotation",
    "ed25519",
    "obfuscation",
    "metrics",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Security :: Cryptography",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]
dependencies = [
    "cryptography>=41",
    "aiohttp>=3.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[tool.hatch.build.targets.wheel]
packages = ["apfsds"]

[tool.hatch.build.targets.sdist]
include = ["apfsds", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
