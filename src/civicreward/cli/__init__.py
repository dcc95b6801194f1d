"""Command line interface for the civic reward core."""

from .main import app

__all__ = ["app"]
