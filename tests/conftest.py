import textwrap
from pathlib import Path

import pytest

NODE_KEYS = [
    "94AE36675C464D64BAFA68DD7434390BDBE9B9C5",
    "FD3A5288F042B6850C66B31F09FE44734EB7990E",
    "71DCFD284A79C3B38668286BC97EC7A07EDE3FC1",
]
YARN_KEYS = ["6A010C5166006599AA17F08146C2130DFD2497F5"]

DEFAULT_TEMPLATE = textwrap.dedent("""\
    FROM buildpack-deps:stretch

    RUN groupadd --gid 1000 node

    # gpg keys listed at https://github.com/nodejs/node#release-keys
    RUN set -ex \\
      && for key in \\
        "${NODE_KEYS[@]}"
      ; do \\
        gpg --keyserver ha.pool.sks-keyservers.net --recv-keys "$key" ; \\
      done

    ENV NODE_VERSION 0.0.0

    ENV YARN_VERSION 0.0.0

    RUN set -ex \\
      && for key in \\
        "${YARN_KEYS[@]}"
      ; do \\
        gpg --keyserver ha.pool.sks-keyservers.net --recv-keys "$key" ; \\
      done

    CMD [ "node" ]
""")

SLIM_TEMPLATE = DEFAULT_TEMPLATE.replace(
    "FROM buildpack-deps:stretch", "FROM debian:stretch-slim",
)

ALPINE_TEMPLATE = textwrap.dedent("""\
    FROM alpine:0.0

    ENV NODE_VERSION 0.0.0

    RUN addgroup -g 1000 node \\
        && for key in \\
          "${NODE_KEYS[@]}"
        ; do \\
          gpg --keyserver ha.pool.sks-keyservers.net --recv-keys "$key" ; \\
        done

    ENV YARN_VERSION 0.0.0

    RUN for key in \\
        "${YARN_KEYS[@]}"
      ; do \\
        gpg --keyserver ha.pool.sks-keyservers.net --recv-keys "$key" ; \\
      done
""")

ONBUILD_TEMPLATE = textwrap.dedent("""\
    FROM node:0.0.0-stretch

    RUN mkdir -p /usr/src/app
    WORKDIR /usr/src/app

    ONBUILD COPY . /usr/src/app
""")

TRAVIS_TEMPLATE = textwrap.dedent("""\
    language: generic

    auto_skip: &auto_skip
      - echo skip

    jobs:
      include:""")


def write_repo(root: Path, versions: dict[str, list[str]]) -> Path:
    """Lay out a docker-node style repository under *root*.

    *versions* maps a version directory to the variants that have a
    Dockerfile; ``"default"`` means a Dockerfile in the version directory.
    """
    root.mkdir(parents=True, exist_ok=True)
    (root / "config").write_text(
        "baseuri https://nodejs.org/dist\nalpine_version 3.8\n"
    )
    (root / "architectures").write_text(
        "bashbrew-arch   variants\n"
        "amd64           alpine,onbuild,slim,stretch\n"
        "arm64v8         onbuild,slim,stretch\n"
    )
    (root / "Dockerfile.template").write_text(DEFAULT_TEMPLATE)
    (root / "Dockerfile-slim.template").write_text(SLIM_TEMPLATE)
    (root / "Dockerfile-alpine.template").write_text(ALPINE_TEMPLATE)
    (root / "Dockerfile-onbuild.template").write_text(ONBUILD_TEMPLATE)
    (root / "travis.yml.template").write_text(TRAVIS_TEMPLATE)

    keys = root / "keys"
    keys.mkdir(exist_ok=True)
    (keys / "node.keys").write_text("\n".join(NODE_KEYS) + "\n")
    (keys / "yarn.keys").write_text("\n".join(YARN_KEYS) + "\n")

    for version, variants in versions.items():
        version_dir = root / version
        version_dir.mkdir(parents=True, exist_ok=True)
        for variant in variants:
            if variant == "default":
                (version_dir / "Dockerfile").write_text("FROM old\n")
            else:
                (version_dir / variant).mkdir(exist_ok=True)
                (version_dir / variant / "Dockerfile").write_text("FROM old\n")
    return root


@pytest.fixture()
def repo(tmp_path):
    """Versions 8 (default only) and 10 (default, slim, alpine)."""
    return write_repo(tmp_path / "docker-node", {
        "8": ["default"],
        "10": ["default", "slim", "alpine"],
    })
