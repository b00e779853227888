[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ipswkit"
version = "0.1.0"
description = "Read, inspect and fetch firmware archives (IPSW), with helpers for JSON catalogues, MBN images and lock files"
requires-python = ">=3.10"
dependencies = [
    "portalocker",
]
keywords = [
    "ipsw",
    "firmware",
    "build-manifest",
    "plist",
    "mbn",
    "baseband",
    "json",
]
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
    "Topic :: System :: Software Distribution",
    "Topic :: System :: Archiving",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ipswkit"]

[tool.pytest.ini_options]
addopts = "-ra"
