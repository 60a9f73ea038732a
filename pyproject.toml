[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "phmisp"
version = "0.1.0"
description = "Building blocks for relaying TheHive cases to MISP: rule filtering, temporary storage, MISP, Redis and Zabbix helpers"
requires-python = ">=3.10"
keywords = ["misp", "thehive", "threat-intelligence", "zabbix", "redis", "rules"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Information Technology",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "pyyaml",
    "redis",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["phmisp"]

[tool.pytest.ini_options]
addopts = "-ra"
