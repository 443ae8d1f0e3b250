"""Travis CI manifest generation: one build stage per Dockerfile."""

from pathlib import Path

from _common import UpdateError

MANIFEST_TEMPLATE = "travis.yml.template"
MANIFEST_FILE = ".travis.yml"
BANNER = "# DO NOT MODIFY. THIS FILE IS AUTOGENERATED #\n\n"

STAGE = """
    - stage: Build
      before_script: *auto_skip
      env:
        - NODE_VERSION: "{version}"
        - VARIANT: "{variant}"
"""

# Extra directives for the alpine variant, which builds node from source
ALPINE_STAGE_EXTRA = """
      after_success:
        - ccache -s
      addons:
        apt:
          packages:
            - netcat
      before_cache:
        - mv ccache/new-cache.tar.gz ccache/cache.tar.gz
      cache:
        directories:
          - ccache/
"""


class Manifest:
    """Append-only list of stage blocks behind a fixed header."""

    def __init__(self, header: str = ""):
        self.header = header
        self._blocks: list[str] = []

    def emit_stage(self, version: str, variant: str):
        self._blocks.append(STAGE.format(version=version, variant=variant))
        if variant == "alpine":
            self._blocks.append(ALPINE_STAGE_EXTRA)

    def render(self) -> str:
        return BANNER + self.header + "".join(self._blocks)

    def write(self, path: Path):
        Path(path).write_text(self.render())


def load_manifest(root: Path) -> Manifest:
    """Start a manifest from ``<root>/travis.yml.template``."""
    template = Path(root) / MANIFEST_TEMPLATE
    if not template.exists():
        raise UpdateError(f"{MANIFEST_TEMPLATE} not found in {root}")
    return Manifest(template.read_text())
