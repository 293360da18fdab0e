[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rtftpd"
version = "0.1.0"
description = "TFTP server with windowed transfers and a caching HTTP proxy backend"
requires-python = ">=3.11"
keywords = ["tftp", "tftpd", "server", "pxe", "netboot", "proxy"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: No Input/Output (Daemon)",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: File Transfer Protocol (FTP)",
    "Topic :: System :: Boot",
]
dependencies = [
    "httpx",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "respx",
]

[project.scripts]
rtftpd = "rtftpd.main:main"

[tool.hatch.build.targets.wheel]
packages = ["rtftpd"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
