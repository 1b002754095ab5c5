"""ByteSentinel - static threat analysis for untrusted files."""

__version__ = "0.1.0"
