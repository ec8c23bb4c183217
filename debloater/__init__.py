"""Universal Android Debloater - manage pre-installed packages over adb."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("android-debloater")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
