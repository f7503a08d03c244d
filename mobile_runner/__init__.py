"""Local and remote mobile test run orchestration."""

__version__ = "0.1.0"
