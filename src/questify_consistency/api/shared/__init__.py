"""Error model, response bodies and middleware shared by every router."""

from .errors import APIException, ErrorCode, NotFoundError, UnauthorizedError
from .responses import ErrorBody, ErrorDetail

__all__ = [
    "APIException",
    "ErrorCode",
    "NotFoundError",
    "UnauthorizedError",
    "ErrorBody",
    "ErrorDetail",
]
