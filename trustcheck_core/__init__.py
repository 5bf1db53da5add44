"""TrustCheck core: website trust analysis service."""

__version__ = "0.2.0"
