"""Technical-indicator signal scanner for crypto pairs."""

__version__ = "0.1.0"
