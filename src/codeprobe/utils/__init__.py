"""Utility helpers."""

from .progress import progress_bar
from .serialization import to_json

__all__ = ["progress_bar", "to_json"]
