"""Secondary API client, response extractors and error types."""

from .client import ClientSettings, SecondaryAPIClient
from .errors import CallError, ConfigurationError, PersistenceError, SecondaryAPIError, TransformError

__all__ = [
    "ClientSettings",
    "SecondaryAPIClient",
    "SecondaryAPIError",
    "ConfigurationError",
    "TransformError",
    "CallError",
    "PersistenceError",
]
