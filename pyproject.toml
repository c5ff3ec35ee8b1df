[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tftpkit"
version = "0.1.0"
description = "TFTP client and server with blksize, timeout and tsize option negotiation"
requires-python = ">=3.10"
dependencies = []
keywords = ["tftp", "udp", "file-transfer", "rfc1350", "rfc2347", "netascii"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: File Transfer Protocol (FTP)",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
tftp-client = "tftpkit.client:main"
tftp-server = "tftpkit.server:main"

[tool.hatch.build.targets.wheel]
packages = ["tftpkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
