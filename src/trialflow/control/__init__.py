"""Control layer: retry policies for network collaborators."""

from .retry import LOAD_RETRY, SAVE_RETRY, RetryConfig, RetryStrategy

__all__ = ["LOAD_RETRY", "SAVE_RETRY", "RetryConfig", "RetryStrategy"]
