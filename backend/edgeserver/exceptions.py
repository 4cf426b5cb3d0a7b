"""
Edgeserver — Custom Exception Hierarchy
========================================

What:  Application-specific exceptions for the edge pipeline.
How:   Each exception carries a message, an HTTP status code and an optional
       context dict. The terminal error handler (middleware/errors.py) reads
       `status_code` to build the `{"message": ...}` response; startup errors
       are caught by the bootstrap and end the process with exit code 1.

Exception Hierarchy:
    EdgeServerError (base)
    ├── BootstrapError            → fatal, raised before the server binds
    │   └── StaticRootNotFoundError   → no build output with an entry point
    └── AssetTransformError       → 500/502, dev template or proxy failure

Policy rejections (rate limit, disallowed origin) are NOT
exceptions: those stages answer on their own and never reach the handler.
"""

from typing import Any, Dict, List, Optional


class EdgeServerError(Exception):
    """
    Base exception for all edgeserver errors.

    Attributes:
        message:     Human-readable description, returned in the response body.
        status_code: HTTP status used by the terminal error handler.
        context:     Additional debug info (logged, never returned to client).
    """

    status_code = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.context = context or {}
        super().__init__(self.message)


class BootstrapError(EdgeServerError):
    """Raised when the server cannot be assembled; the process must not listen."""


class StaticRootNotFoundError(BootstrapError):
    """
    Raised when no candidate directory contains the entry-point file.

    When:    Production startup, during static root resolution.
    Effect:  Fatal. The bootstrap logs the searched locations and exits 1.
    """

    def __init__(self, entry_point: str, candidates: List[str]):
        searched = ", ".join(candidates) or "<none>"
        message = (
            f"Build directory not found: no candidate contains '{entry_point}' "
            f"(searched: {searched}). Build the client before deploying."
        )
        super().__init__(
            message=message,
            context={"entry_point": entry_point, "candidates": list(candidates)},
        )
        self.entry_point = entry_point
        self.candidates = list(candidates)


class AssetTransformError(EdgeServerError):
    """
    Raised when the development asset branch cannot produce a response.

    When:    Template read failure, transform failure, dev server unreachable.
    HTTP:    500 by default, 502 when the dev server itself failed.
    """

    def __init__(
        self,
        message: str = "Failed to render the development entry point",
        status_code: int = 500,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, status_code=status_code, context=context)
