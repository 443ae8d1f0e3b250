"""Upstream release lookups (Node.js dist listing, latest Yarn)."""

import logging
from html.parser import HTMLParser

import requests

from _common import UpdateError, http_get

YARN_LATEST_URL = "https://yarnpkg.com/latest-version"
DEFAULT_PATCH = "0"

log = logging.getLogger("node-docker-update")


class _AnchorParser(HTMLParser):
    def __init__(self):
        super().__init__()
        self.hrefs: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag != "a":
            return
        for name, value in attrs:
            if name == "href" and value:
                self.hrefs.append(value)


def parse_listing(html: str) -> list[str]:
    """Return the href of every anchor in a directory listing page."""
    parser = _AnchorParser()
    parser.feed(html)
    parser.close()
    return parser.hrefs


def _minor_patch_key(token: str) -> tuple[int, ...]:
    return tuple(int(p) if p.isdigit() else -1 for p in token.split("."))


def latest_minor_patch(hrefs: list[str], major: str) -> str | None:
    """Pick the highest ``minor.patch`` among ``v<major>.*`` entries.

    Entries with only a minor component (``v8.9/``) yield a bare ``9``.

    >>> latest_minor_patch(["v8.9.4/", "v8.12.0/", "v8.2.1/"], "8")
    '12.0'
    """
    prefix = f"v{major}."
    tokens = []
    for href in hrefs:
        if not href.startswith(prefix):
            continue
        version = href[1:].rstrip("/")
        parts = version.split(".")
        if len(parts) < 2 or not parts[1]:
            continue
        tokens.append(".".join(parts[1:3]))
    if not tokens:
        return None
    return max(tokens, key=_minor_patch_key)


def resolve_full_version(baseuri: str, major: str) -> str:
    """Resolve the newest ``major.minor.patch`` published under *baseuri*.

    Never raises for upstream problems: an unreachable listing or a major
    with no releases yields ``<major>.0``.
    """
    try:
        html = http_get(baseuri)
    except requests.RequestException as e:
        log.warning(f"Could not fetch {baseuri} for v{major}: {e}")
        return f"{major}.{DEFAULT_PATCH}"

    minor_patch = latest_minor_patch(parse_listing(html), major)
    if minor_patch is None:
        log.warning(f"No v{major}.x releases listed at {baseuri}")
        return f"{major}.{DEFAULT_PATCH}"
    return f"{major}.{minor_patch}"


def fetch_yarn_version() -> str:
    """Latest published Yarn version."""
    try:
        version = http_get(YARN_LATEST_URL).strip()
    except requests.RequestException as e:
        raise UpdateError(f"Could not fetch latest Yarn version: {e}") from e
    if not version:
        raise UpdateError(f"Empty response from {YARN_LATEST_URL}")
    return version
