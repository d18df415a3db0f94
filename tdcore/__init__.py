"""Live poker tournament core."""

__version__ = "0.1.0"
