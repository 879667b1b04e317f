[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "minikit"
version = "0.10.0"
description = "Building blocks for a single-node local Kubernetes cluster: docker-env output, server lifecycle, certificate and endpoint checks, and SkyDNS records"
requires-python = ">=3.10"
dependencies = [
    "cryptography",
    "psutil",
]
keywords = ["kubernetes", "local cluster", "localkube", "docker-env", "skydns"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["minikit"]

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
