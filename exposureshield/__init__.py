"""ExposureShield account and token service."""

__version__ = "1.0.0"
