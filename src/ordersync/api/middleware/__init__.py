"""API middleware package."""

from src.ordersync.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
