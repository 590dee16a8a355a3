"""codeprobe - Analysis orchestration engine for source projects."""

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

try:  # pragma: no cover - metadata probe
    __version__ = version("codeprobe")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.1.0"
