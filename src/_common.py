"""Shared utilities for the Dockerfile update tool."""

import json
import logging
import os
import platform
import re
import sys
from pathlib import Path

import requests

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
CONFIG_FILE = "config"
ARCHITECTURES_FILE = "architectures"
DEFAULT_ARCH = "amd64"
DEFAULT_VARIANT = "default"
HTTP_TIMEOUT = 30

# platform.machine() -> bashbrew architecture name
ARCH_MAP = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64v8",
    "arm64": "arm64v8",
    "armv7l": "arm32v7",
    "armv6l": "arm32v6",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "i386": "i386",
    "i686": "i386",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------
class UpdateError(Exception):
    """Raised when the whole run cannot proceed."""


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
class JSONFormatter(logging.Formatter):
    def format(self, record):
        entry = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(level: int = logging.INFO):
    """Route all log output to stderr, JSON lines unless LOG_FORMAT=text."""
    handler = logging.StreamHandler(sys.stderr)
    if os.environ.get("LOG_FORMAT", "json") == "text":
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    else:
        handler.setFormatter(JSONFormatter())
    logging.root.handlers = [handler]
    logging.root.setLevel(level)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
def read_config(directory: Path) -> dict:
    """Parse ``<directory>/config`` into a dict.

    One ``key value`` pair per line, separated by whitespace.  Blank lines
    and ``#`` comments are skipped.
    """
    config_path = Path(directory) / CONFIG_FILE
    if not config_path.exists():
        raise UpdateError(f"config not found at {config_path}")

    config = {}
    for line in config_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, *rest = re.split(r"\s+", line, maxsplit=1)
        value = rest[0].strip() if rest else ""
        # Strip surrounding quotes (single or double)
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        config[key.strip()] = value
    return config


def get_config(directory: Path, key: str) -> str:
    """Return a single value from ``<directory>/config``."""
    value = read_config(directory).get(key)
    if not value:
        raise UpdateError(f"'{key}' missing from {Path(directory) / CONFIG_FILE}")
    return value


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------
def get_arch() -> str:
    """Target architecture: TARGET_ARCH if set, else the host's."""
    override = os.environ.get("TARGET_ARCH")
    if override:
        return override
    machine = platform.machine().lower()
    return ARCH_MAP.get(machine, machine)


def _natural_key(path: Path):
    return [int(p) if p.isdigit() else p for p in re.split(r"(\d+)", path.name)]


def _has_dockerfile(version_dir: Path) -> bool:
    if (version_dir / "Dockerfile").is_file():
        return True
    return any((sub / "Dockerfile").is_file()
               for sub in version_dir.iterdir() if sub.is_dir())


def get_versions(root: Path) -> list[tuple[Path, str]]:
    """Find version directories under *root* as ``(parent, label)`` pairs.

    A subdirectory with its own config file is a version family; its
    children are versions too.  Order is natural sort (8 before 10).
    """
    root = Path(root)
    if not root.is_dir():
        raise UpdateError(f"{root} is not a directory")
    versions: list[tuple[Path, str]] = []
    for entry in sorted((p for p in root.iterdir() if p.is_dir()), key=_natural_key):
        if entry.name.startswith("."):
            continue
        if (entry / CONFIG_FILE).is_file():
            versions.extend(get_versions(entry))
        elif _has_dockerfile(entry):
            versions.append((root, entry.name))
    return versions


def get_variants(directory: Path, arch: str) -> list[str] | None:
    """Variants supported on *arch* according to ``<directory>/architectures``.

    Returns None when the directory has no architectures file, meaning every
    variant subdirectory is allowed.
    """
    arch_path = Path(directory) / ARCHITECTURES_FILE
    if not arch_path.exists():
        return None
    for line in arch_path.read_text().splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[0] == arch:
            return [v for v in fields[1].split(",") if v]
        if len(fields) == 1 and fields[0] == arch:
            return []
    return []


# ---------------------------------------------------------------------------
# HTTP helper
# ---------------------------------------------------------------------------
def http_get(url: str, timeout: int = HTTP_TIMEOUT) -> str:
    """GET *url* and return the body.  Raises requests.RequestException."""
    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.text
