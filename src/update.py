#!/usr/bin/env python3
"""Update the node docker images.

Discovers every version/variant Dockerfile under the repository root,
regenerates the selected ones from their templates (one worker thread per
Dockerfile) and rewrites .travis.yml with a build stage for every
Dockerfile found, selected or not.

Usage:
    node-docker-update [-s] [MAJOR_VERSION(S)] [VARIANT(S)]
"""

import argparse
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from _common import (
    DEFAULT_VARIANT,
    UpdateError,
    get_arch,
    get_config,
    get_variants,
    get_versions,
    setup_logging,
)
from selection import All, Filter, Subset, parse_filter, should_update
from stages import MANIFEST_FILE, load_manifest
from stamp import SubstitutionContext, load_keys, stamp
from upstream import fetch_yarn_version, resolve_full_version

MAX_WORKERS = int(os.environ.get("MAX_WORKERS", "8"))

EXAMPLES = """\
Examples:
  - update.py                   # Update all images
  - update.py -s                # Update all images, skip updating Alpine and Yarn
  - update.py 8,10              # Update version 8 and 10 and variants (default, slim, alpine etc.)
  - update.py -s 8              # Update version 8 and variants, skip updating Alpine and Yarn
  - update.py 8 slim,stretch    # Update only slim and stretch variants for version 8
  - update.py -s 8 slim,stretch # Update only slim and stretch variants for version 8, skip updating Alpine and Yarn
  - update.py . alpine          # Update the alpine variant for all versions
"""

log = logging.getLogger("node-docker-update")


# ── Data model ──────────────────────────────────────────

@dataclass(frozen=True)
class VersionRef:
    parent: Path
    label: str
    root: Path

    @property
    def path(self) -> Path:
        return self.parent / self.label

    @property
    def name(self) -> str:
        """Path relative to the repository root, e.g. ``10`` or ``chakracore/8``."""
        return self.path.relative_to(self.root).as_posix()


@dataclass(frozen=True)
class Target:
    version: VersionRef
    variant: str

    @property
    def dockerfile(self) -> Path:
        if self.variant == DEFAULT_VARIANT:
            return self.version.path / "Dockerfile"
        return self.version.path / self.variant / "Dockerfile"

    @property
    def template(self) -> Path:
        if self.variant == DEFAULT_VARIANT:
            return self.version.parent / "Dockerfile.template"
        return self.version.parent / f"Dockerfile-{self.variant}.template"

    @property
    def name(self) -> str:
        return f"{self.version.name}/{self.variant}"


@dataclass(frozen=True)
class RunConfig:
    """Inputs resolved once per run and shared read-only by every task."""
    root: Path
    arch: str
    skip: bool = False
    yarn_version: str | None = None
    alpine_version: str | None = None


@dataclass
class TargetResult:
    target: Target
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Discovery ───────────────────────────────────────────

def discover_targets(root: Path, arch: str,
                     versions: list[tuple[Path, str]] | None = None) -> list[Target]:
    """Every (version, variant) with a Dockerfile, in discovery order.

    The default variant comes first, then variants in the order the
    architectures file lists them (or sorted subdirectory names).
    """
    root = Path(root)
    if versions is None:
        versions = get_versions(root)

    targets: list[Target] = []
    seen: set[Path] = set()

    def add(target: Target):
        if target.dockerfile in seen:
            raise UpdateError(f"Two targets share {target.dockerfile}")
        seen.add(target.dockerfile)
        targets.append(target)

    for parent, label in versions:
        ref = VersionRef(Path(parent), label, root)
        if (ref.path / "Dockerfile").is_file():
            add(Target(ref, DEFAULT_VARIANT))

        variants = get_variants(ref.parent, arch)
        if variants is None:
            variants = sorted(p.name for p in ref.path.iterdir() if p.is_dir())
        for variant in variants:
            # Skip non-docker directories
            if variant == DEFAULT_VARIANT or not (ref.path / variant / "Dockerfile").is_file():
                continue
            add(Target(ref, variant))
    return targets


def resolve_config(root: Path, arch: str, skip: bool) -> RunConfig:
    """Fetch the run-wide Alpine and Yarn versions unless skipping."""
    if skip:
        return RunConfig(root=root, arch=arch, skip=True)
    alpine_version = get_config(root, "alpine_version")
    yarn_version = fetch_yarn_version()
    log.info(f"Using Yarn {yarn_version}, Alpine {alpine_version}, arch {arch}")
    return RunConfig(root=root, arch=arch, skip=False,
                     yarn_version=yarn_version, alpine_version=alpine_version)


# ── Per-target work ─────────────────────────────────────

def update_target(target: Target, config: RunConfig):
    """Resolve the full node version and stamp one Dockerfile."""
    baseuri = get_config(target.version.parent, "baseuri")
    node_version = resolve_full_version(baseuri, target.version.label)
    ctx = SubstitutionContext(
        node_version=node_version,
        yarn_version=config.yarn_version,
        alpine_version=config.alpine_version,
        arch=config.arch,
        keys=load_keys(config.root),
    )
    stamp(target.template, target.dockerfile, ctx, target.variant, skip=config.skip)


def _run_task(target: Target, config: RunConfig) -> TargetResult:
    try:
        update_target(target, config)
    except UpdateError as e:
        log.error(f"Failed to update {target.name}: {e}")
        return TargetResult(target, e)
    except Exception as e:
        log.error(f"Error updating {target.name}: {e}", exc_info=True)
        return TargetResult(target, e)
    log.info(f"Updated {target.name}")
    return TargetResult(target)


def _warn_unmatched(selection: Filter, known: set[str], kind: str):
    if isinstance(selection, Subset):
        for item in sorted(selection.items - known):
            log.warning(f"No {kind} named '{item}' found")


# ── Orchestration ───────────────────────────────────────

def run(root: Path, skip: bool = False,
        versions: Filter = All(), variants: Filter = All(),
        arch: str | None = None,
        max_workers: int = MAX_WORKERS) -> list[TargetResult]:
    """Regenerate selected Dockerfiles and the CI manifest.

    Returns one result per dispatched Dockerfile once all have finished.
    Only run-wide problems raise.
    """
    root = Path(root)
    version_dirs = get_versions(root)
    if not version_dirs:
        raise UpdateError("No valid versions found!")

    arch = arch or get_arch()
    config = resolve_config(root, arch, skip)
    targets = discover_targets(root, arch, version_dirs)
    manifest = load_manifest(root)

    _warn_unmatched(versions, {t.version.name for t in targets}, "version")
    _warn_unmatched(variants, {t.variant for t in targets}, "variant")

    announced: set[str] = set()
    futures = []
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        for target in targets:
            manifest.emit_stage(target.version.name, target.variant)

            version_name = target.version.name
            if not should_update(version_name, versions):
                continue
            if version_name not in announced:
                announced.add(version_name)
                log.info(f"Updating version {version_name}...")
            if not should_update(target.variant, variants):
                continue
            futures.append(executor.submit(_run_task, target, config))

        manifest.write(root / MANIFEST_FILE)
        results = [f.result() for f in futures]

    return results


# ── CLI ─────────────────────────────────────────────────

def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="update.py",
        description="Update the node docker images.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-s", "--skip", action="store_true",
        help="Security update; skip updating the yarn and alpine versions.",
    )
    parser.add_argument(
        "--arch", default=None,
        help="Target architecture (default: TARGET_ARCH or the host's)",
    )
    parser.add_argument(
        "--root", default=".",
        help="Repository root (default: current directory)",
    )
    parser.add_argument(
        "--strict", action="store_true",
        help="Exit non-zero if any Dockerfile failed to update",
    )
    parser.add_argument(
        "versions", nargs="?", default=None,
        help="Comma-separated major versions, '.' for all",
    )
    parser.add_argument(
        "variants", nargs="?", default=None,
        help="Comma-separated variants (default, slim, alpine, ...)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    setup_logging()

    try:
        results = run(
            Path(args.root).resolve(),
            skip=args.skip,
            versions=parse_filter(args.versions),
            variants=parse_filter(args.variants),
            arch=args.arch,
        )
    except UpdateError as e:
        log.error(f"FATAL: {e}")
        return 1

    failed = [r for r in results if not r.ok]
    if failed:
        names = ", ".join(r.target.name for r in failed)
        log.warning(f"{len(failed)} of {len(results)} Dockerfile(s) failed: {names}")
    log.info("Done!")
    return 1 if failed and args.strict else 0


if __name__ == "__main__":
    sys.exit(main())
