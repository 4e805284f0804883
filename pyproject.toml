[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "signalpilot"
version = "0.1.0"
description = "Traffic-light-aware speed planning for a vehicle approaching a signalised intersection"
requires-python = ">=3.10"
dependencies = []
keywords = ["vehicle", "traffic light", "trajectory", "speed planning", "sensor fusion"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
signalpilot-controller = "signalpilot.signal_io:main"
signalpilot-sender = "signalpilot.sender:main"

[tool.hatch.build.targets.wheel]
packages = ["signalpilot"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
