"""Asset manifest sync, download and CDN upload engine."""

__version__ = "0.1.0"
