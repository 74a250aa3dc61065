from __future__ import annotations

"""
apkmeta - Alpine package metadata extraction

Reads metadata from APKv2 package files (signature, control and data
segments) and from APKBUILD build descriptors evaluated in a sandboxed shell.
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Make version accessible
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _version

try:
    __version__ = _version("apkmeta")
except PackageNotFoundError:
    # Package not installed yet
    pass
