"""Web interface for Examclock.

FastAPI application exposing window and enrollment endpoints, the
on-demand status refresh, and a per-owner SSE stream of status changes.
"""

from __future__ import annotations

from examclock.web.app import create_app
from examclock.web.middleware import RequestLoggingMiddleware

__all__ = [
    "create_app",
    "RequestLoggingMiddleware",
]
