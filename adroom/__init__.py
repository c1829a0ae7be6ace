"""AdRoom decision and automation core."""

__version__ = "0.4.0"
