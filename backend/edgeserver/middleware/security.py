"""
Edgeserver — Security Enforcement Middleware
=============================================

What:  Transport security for every request that reaches this stage:
       1. HTTPSRedirectMiddleware   (production only) plain HTTP → https://
       2. CORSMiddleware            (Starlette, configured from policy.py)
       3. SecurityHeadersMiddleware base headers + HSTS/Expect-CT on TLS
       4. CTReportMiddleware        POST endpoint for Expect-CT violation reports
Who:   Installed by pipeline.build_pipeline() in exactly that order.

Secure-channel detection reads scope["scheme"], which TrustedProxyMiddleware
has already rewritten from X-Forwarded-Proto for the trusted hop.
"""

import json
import logging
from typing import Dict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from edgeserver.middleware.proxy import is_secure

logger = logging.getLogger(__name__)

# Reports larger than this are acknowledged but not parsed.
CT_REPORT_MAX_BYTES = 64 * 1024


class HTTPSRedirectMiddleware(BaseHTTPMiddleware):
    """
    Redirects requests that did not arrive over TLS to their https:// URL.

    GET/HEAD use 301; other methods use 308 so the method and body survive
    the redirect. Only installed in production.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if is_secure(request.scope):
            return await call_next(request)

        host = request.headers.get("host") or request.url.netloc
        if host.endswith(":80"):
            host = host[:-3]
        raw_path = request.scope.get("raw_path")
        path = raw_path.decode("latin-1").split("?", 1)[0] if raw_path else request.url.path
        target = f"https://{host}{path}"
        if request.url.query:
            target += f"?{request.url.query}"

        status_code = 301 if request.method in ("GET", "HEAD") else 308
        logger.debug("Redirecting insecure request %s %s → %s", request.method, path, target)
        return RedirectResponse(url=target, status_code=status_code)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds baseline security headers to every response, plus the HTTPS-only set
    when the connection is secure. Headers already set by a handler win.
    """

    def __init__(
        self,
        app: ASGIApp,
        base_headers: Dict[str, str],
        https_headers: Dict[str, str],
    ) -> None:
        super().__init__(app)
        self.base_headers = dict(base_headers)
        self.https_headers = dict(https_headers)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)

        headers = dict(self.base_headers)
        if is_secure(request.scope):
            headers.update(self.https_headers)
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response


class CTReportMiddleware(BaseHTTPMiddleware):
    """
    Acknowledges Certificate Transparency violation reports.

    Sits in front of the general body parser, so it reads and parses its own
    body. Any payload (valid JSON, broken JSON, empty, oversized) gets the same
    200 acknowledgment; the report is only logged.
    """

    ACK = {"success": True, "message": "Report received"}

    def __init__(self, app: ASGIApp, path: str) -> None:
        super().__init__(app)
        self.path = path

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method != "POST" or request.url.path != self.path:
            return await call_next(request)

        body = bytearray()
        truncated = False
        async for chunk in request.stream():
            if len(body) + len(chunk) > CT_REPORT_MAX_BYTES:
                truncated = True
                break
            body.extend(chunk)

        if truncated:
            logger.warning("CT report exceeded %d bytes; not parsed", CT_REPORT_MAX_BYTES)
        else:
            self._log_report(bytes(body))

        return JSONResponse(status_code=200, content=self.ACK)

    @staticmethod
    def _log_report(body: bytes) -> None:
        if not body:
            logger.warning("CT report received with empty body")
            return
        try:
            report = json.loads(body)
        except ValueError:
            logger.warning("CT report received with malformed JSON (%d bytes)", len(body))
            return

        details = report.get("expect-ct-report", report) if isinstance(report, dict) else report
        if isinstance(details, dict):
            logger.warning(
                "CT violation report: hostname=%s port=%s failure=%s",
                details.get("hostname"),
                details.get("port"),
                details.get("failure-mode") or details.get("effective-expiration-date"),
            )
        else:
            logger.warning("CT violation report received (%s)", type(details).__name__)
