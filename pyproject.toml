[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sysstatsmon"
version = "0.1.0"
description = "System statistics monitor that samples CPU, memory, disk, network, host and OS feature metrics"
requires-python = ">=3.10"
dependencies = [
    "psutil",
]
keywords = ["monitoring", "metrics", "procfs", "cpu", "memory", "disk", "network", "node"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["sysstatsmon"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
