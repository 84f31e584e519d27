"""Stateful parser for macOS powermetrics text output."""

__version__ = "0.1.0"
