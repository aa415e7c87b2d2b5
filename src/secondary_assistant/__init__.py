"""Secondary language-model calls that run alongside a host chat application."""

__version__ = "0.3.0"

__all__ = ["__version__"]
