"""WHOOP fitness dashboard for the terminal."""

__version__ = "0.3.0"
