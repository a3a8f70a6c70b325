"""Command-line interface for the converter."""

from .main import main

__all__ = ["main"]
