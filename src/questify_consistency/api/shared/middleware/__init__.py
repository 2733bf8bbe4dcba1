"""API middleware."""

from .error_handler import register_error_handlers
from .tracing import TracingMiddleware

__all__ = [
    "register_error_handlers",
    "TracingMiddleware",
]
