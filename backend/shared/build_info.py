"""Build metadata exposed at runtime.

APP_VERSION and GIT_COMMIT are set via environment variables in CI and
container builds. Outside of those, the version comes from the installed
distribution metadata and the commit is reported as unknown.
"""

import os
from importlib.metadata import PackageNotFoundError, version

DISTRIBUTION_NAME = "fleet-relay"


def _installed_version() -> str:
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return "dev"


APP_VERSION: str = os.environ.get("APP_VERSION") or _installed_version()
GIT_COMMIT: str = os.environ.get("GIT_COMMIT") or "unknown"
