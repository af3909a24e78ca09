"""API middleware package."""

from src.quotesync.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
