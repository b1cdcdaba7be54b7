"""API middleware package."""

from src.dashboard.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
