"""Shared utilities for configuration, logging, and error handling"""

from filesync.utils.retry import exponential_backoff_retry, is_transient_error

__all__ = ["exponential_backoff_retry", "is_transient_error"]
