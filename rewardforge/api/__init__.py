"""HTTP-facing request handling."""

from .dispatcher import RequestDispatcher, failure, http_status, success
from .server import build_web_app, json_default

__all__ = [
    "RequestDispatcher",
    "failure",
    "http_status",
    "success",
    "build_web_app",
    "json_default",
]
