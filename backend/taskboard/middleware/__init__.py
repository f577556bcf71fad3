"""Middleware package."""

from taskboard.middleware.logging import LoggingMiddleware
from taskboard.middleware.request_id import RequestIDMiddleware

__all__ = ["LoggingMiddleware", "RequestIDMiddleware"]
