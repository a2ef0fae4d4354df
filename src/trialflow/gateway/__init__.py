"""Gateway to the experiment server."""

from .client import NON_RETRYABLE_STATUS, ExperimentClient, ServerConfig

__all__ = ["NON_RETRYABLE_STATUS", "ExperimentClient", "ServerConfig"]
