"""Reader plugins for the supported Alpine artifact formats."""

from apkmeta.plugins.apk import ApkReader
from apkmeta.plugins.apkbuild import ApkbuildReader
from apkmeta.plugins.base import ReaderPlugin

__all__ = [
    "ApkReader",
    "ApkbuildReader",
    "ReaderPlugin",
]
