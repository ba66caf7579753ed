"""Return lifecycle orchestration service."""

__version__ = "1.0.0"
