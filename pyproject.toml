[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "alpenglow"
version = "0.1.0"
description = "All-to-all broadcast protocols and Rotor bandwidth, latency and safety simulations for the Alpenglow consensus protocol."
requires-python = ">=3.10"
keywords = ["alpenglow", "consensus", "distributed-systems", "simulation", "broadcast"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Framework :: AsyncIO",
]
dependencies = []

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["alpenglow"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
