"""packforge — governed multi-platform packaging orchestration."""

__version__ = "0.1.0"
