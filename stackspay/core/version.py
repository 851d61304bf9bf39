# stackspay/core/version.py
"""Version string from a VERSION file or the installed distribution."""
from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path


VERSION_FILE = Path(__file__).parent.parent.parent / "VERSION"


@lru_cache()
def get_version() -> str:
    """
    Priority:
    1. VERSION file (for container builds)
    2. Installed package metadata
    3. Fallback to 0.0.0-unknown
    """
    if VERSION_FILE.exists():
        value = VERSION_FILE.read_text().strip()
        if value:
            return value

    try:
        return version("stackspay")
    except PackageNotFoundError:
        return "0.0.0-unknown"


VERSION = get_version()
