"""Stamp Dockerfile templates with resolved versions and GPG keys.

Every rewrite is a small pure function over one line (or, for the key
splice, the list of lines).  ``render`` applies them in a fixed order and
``stamp`` writes the result over the target Dockerfile atomically.
"""

import dataclasses
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from _common import DEFAULT_ARCH, UpdateError

KEY_TYPES = ("node", "yarn")
KEYS_DIR = "keys"
ALPINE_PLACEHOLDER = "0.0"

FROM_RE = re.compile(r"^FROM (.*)$")
NODE_VERSION_RE = re.compile(r"^(ENV NODE_VERSION ).*$")
YARN_VERSION_RE = re.compile(r"^(ENV YARN_VERSION ).*$")
# FROM lines that embed the node version in the tag, e.g. node:8.0.0-alpine
BASE_TAG_RE = re.compile(r"^(FROM .*node:)[^-]*(-.*)$")
ALPINE_RE = re.compile(r"(alpine:)" + re.escape(ALPINE_PLACEHOLDER))

EXISTING_YARN_RE = re.compile(r"^ENV YARN_VERSION[ =](\S+)")
EXISTING_ALPINE_RE = re.compile(r"^FROM\s+\S*alpine:([^\s-]+)")


class StampError(UpdateError):
    """Raised when a single Dockerfile cannot be generated."""


@dataclass
class SubstitutionContext:
    node_version: str
    yarn_version: str | None = None
    alpine_version: str | None = None
    arch: str = DEFAULT_ARCH
    keys: dict[str, list[str]] = field(default_factory=dict)


# ── Line rewrites ────────────────────────────────────────

def prefix_arch(line: str, arch: str, variant: str) -> str:
    """Point the base image at the per-architecture repository."""
    if arch == DEFAULT_ARCH or variant == "onbuild":
        return line
    m = FROM_RE.match(line)
    if not m or m.group(1).startswith(f"{arch}/"):
        return line
    return f"FROM {arch}/{m.group(1)}"


def set_node_version(line: str, version: str) -> str:
    return NODE_VERSION_RE.sub(lambda m: m.group(1) + version, line)


def set_yarn_version(line: str, version: str) -> str:
    return YARN_VERSION_RE.sub(lambda m: m.group(1) + version, line)


def set_base_tag(line: str, version: str) -> str:
    """Only matches templates whose FROM tag is ``node:<version>-<suffix>``."""
    return BASE_TAG_RE.sub(lambda m: m.group(1) + version + m.group(2), line)


def set_alpine_version(line: str, version: str) -> str:
    return ALPINE_RE.sub(lambda m: m.group(1) + version, line)


def key_placeholder(key_type: str) -> str:
    return f'"${{{key_type.upper()}_KEYS[@]}}"'


def splice_keys(lines: list[str], key_type: str, keys: list[str]) -> list[str]:
    """Replace each placeholder line with one continuation line per key.

    Inserted lines reuse the placeholder line's leading whitespace.
    """
    placeholder = key_placeholder(key_type)
    out: list[str] = []
    for line in lines:
        if placeholder not in line:
            out.append(line)
            continue
        indent = re.match(r"[ \t]*", line).group(0)
        out.extend(f"{indent}{key} \\" for key in keys)
    return out


# ── Existing output (skip mode) ──────────────────────────

def _first_match(path: Path, pattern: re.Pattern) -> str | None:
    if not path.exists():
        return None
    for line in path.read_text().splitlines():
        m = pattern.match(line)
        if m:
            return m.group(1)
    return None


def existing_yarn_version(path: Path) -> str | None:
    """Yarn version currently declared in a stamped Dockerfile."""
    return _first_match(Path(path), EXISTING_YARN_RE)


def existing_alpine_version(path: Path) -> str | None:
    """Alpine tag currently used by a stamped Dockerfile's FROM line."""
    return _first_match(Path(path), EXISTING_ALPINE_RE)


# ── Keys ─────────────────────────────────────────────────

def load_keys(root: Path) -> dict[str, list[str]]:
    """Read ``keys/<type>.keys`` for every key type, keeping file order."""
    keys = {}
    for key_type in KEY_TYPES:
        path = Path(root) / KEYS_DIR / f"{key_type}.keys"
        try:
            content = path.read_text()
        except OSError as e:
            raise StampError(f"key list not readable: {path} ({e})") from e
        keys[key_type] = [line.strip() for line in content.splitlines() if line.strip()]
    return keys


# ── Rendering ────────────────────────────────────────────

def render(template: str, ctx: SubstitutionContext, variant: str) -> str:
    lines = template.split("\n")

    lines = [prefix_arch(line, ctx.arch, variant) for line in lines]
    lines = [set_node_version(line, ctx.node_version) for line in lines]

    if any(YARN_VERSION_RE.match(line) for line in lines):
        if not ctx.yarn_version:
            raise StampError("no Yarn version available for ENV YARN_VERSION")
        lines = [set_yarn_version(line, ctx.yarn_version) for line in lines]

    lines = [set_base_tag(line, ctx.node_version) for line in lines]

    for key_type in KEY_TYPES:
        lines = splice_keys(lines, key_type, ctx.keys.get(key_type, []))

    if variant == "alpine" and any(ALPINE_RE.search(line) for line in lines):
        if not ctx.alpine_version:
            raise StampError("no Alpine version available for alpine:0.0")
        lines = [set_alpine_version(line, ctx.alpine_version) for line in lines]

    return "\n".join(lines)


def _write_atomic(path: Path, content: str):
    """Write to a temp file beside *path*, then rename it into place."""
    mode = path.stat().st_mode & 0o777 if path.exists() else 0o644
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def stamp(template: Path, output: Path, ctx: SubstitutionContext,
          variant: str, skip: bool = False) -> SubstitutionContext:
    """Generate *output* from *template*.

    With ``skip`` the Yarn and Alpine versions already present in *output*
    are kept instead of the ones in *ctx*.  Returns the context actually
    used.
    """
    template = Path(template)
    output = Path(output)

    if skip:
        ctx = dataclasses.replace(
            ctx,
            yarn_version=existing_yarn_version(output),
            alpine_version=(existing_alpine_version(output)
                            if variant == "alpine" else ctx.alpine_version),
        )

    if not template.exists():
        raise StampError(f"template not found: {template}")

    try:
        content = render(template.read_text(), ctx, variant)
        _write_atomic(output, content)
    except StampError as e:
        raise StampError(f"{output}: {e}") from e
    except OSError as e:
        raise StampError(f"failed to write {output}: {e}") from e
    return ctx
