[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "silentcast"
version = "0.1.0"
description = "Core services for a hotkey launcher: logging, notifications, usage statistics, OS permissions and self-updates"
requires-python = ">=3.10"
dependencies = []
keywords = ["hotkeys", "launcher", "statistics", "updater", "notifications", "permissions", "logging"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Utilities",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["silentcast"]

[tool.pytest.ini_options]
addopts = "-ra"
