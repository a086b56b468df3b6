"""specd - coordinator for multi-agent work on specifications."""

__version__ = "0.1.0"
