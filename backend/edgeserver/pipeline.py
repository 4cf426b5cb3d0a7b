"""
Edgeserver — Middleware Pipeline
=================================

What:  The explicit, ordered list of edge stages.
How:   build_pipeline() returns Stage records in EXECUTION order (first entry
       is the outermost middleware). create_app() hands them to FastAPI's
       `middleware=` argument, which keeps that order, so the list below is
       the single place where stage order is decided.

Order (production adds the stages marked [prod]):

    proxy-trust          client address / scheme from the trusted hop
    compression          gzip, before any static delivery
    static-assets [prod] /assets/* and root files; short-circuits the rest
    https-redirect [prod]
    cors
    security-headers
    ct-report            POST {ct_report_path}, parses its own body
    body-parser
    admin-login-limiter  {admin_login_path}, failed attempts only
    general-limiter      {api_prefix}
    request-logger       {api_prefix} responses
    error-handler        innermost, turns exceptions into JSON

Router-level steps (uploads mount, business routes, asset fallback) run
inside the error handler; see main.py.
"""

from dataclasses import dataclass
from typing import Dict, List

from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

from edgeserver.assets import AssetDelivery
from edgeserver.config import Settings
from edgeserver.middleware.body import BodyParserMiddleware
from edgeserver.middleware.errors import ErrorHandlerMiddleware
from edgeserver.middleware.logging import RequestLoggingMiddleware
from edgeserver.middleware.proxy import TrustedProxyMiddleware
from edgeserver.middleware.rate_limit import (
    FixedWindowStore,
    RateLimitMiddleware,
    RateLimitPolicy,
)
from edgeserver.middleware.security import (
    CTReportMiddleware,
    HTTPSRedirectMiddleware,
    SecurityHeadersMiddleware,
)
from edgeserver.policy import BASE_SECURITY_HEADERS, cors_options, https_security_headers


@dataclass(frozen=True)
class Stage:
    name: str
    middleware: Middleware


def rate_limit_policies(settings: Settings) -> List[RateLimitPolicy]:
    """Limiter policies, most specific path first."""
    return [
        RateLimitPolicy(
            name="admin-login",
            path=settings.admin_login_path,
            max_requests=settings.admin_login_rate_limit_max,
            window_seconds=settings.rate_limit_window_seconds,
            message=settings.admin_login_rate_limit_message,
            skip_successful_requests=True,
        ),
        RateLimitPolicy(
            name="general",
            path=settings.api_prefix,
            max_requests=settings.general_rate_limit_max,
            window_seconds=settings.rate_limit_window_seconds,
            message=settings.general_rate_limit_message,
        ),
    ]


def build_pipeline(
    settings: Settings,
    assets: AssetDelivery,
    stores: Dict[str, FixedWindowStore],
) -> List[Stage]:
    """
    Ordered stages for `settings`.

    `stores` receives one FixedWindowStore per limiter (keyed by policy name)
    so the application can inspect or reset limiter state.
    """
    stages: List[Stage] = [
        Stage(
            "proxy-trust",
            Middleware(TrustedProxyMiddleware, trusted_hops=settings.trusted_proxy_hops),
        ),
    ]

    if settings.compression_enabled:
        stages.append(
            Stage("compression", Middleware(GZipMiddleware, minimum_size=settings.compression_min_size))
        )

    static = assets.static_middleware()
    if static is not None:
        stages.append(Stage("static-assets", static))

    if settings.is_production:
        stages.append(Stage("https-redirect", Middleware(HTTPSRedirectMiddleware)))

    stages.extend([
        Stage("cors", Middleware(CORSMiddleware, **cors_options(settings))),
        Stage(
            "security-headers",
            Middleware(
                SecurityHeadersMiddleware,
                base_headers=BASE_SECURITY_HEADERS,
                https_headers=https_security_headers(settings),
            ),
        ),
        Stage("ct-report", Middleware(CTReportMiddleware, path=settings.ct_report_path)),
        Stage("body-parser", Middleware(BodyParserMiddleware, limit=settings.body_limit_bytes)),
    ])

    for policy in rate_limit_policies(settings):
        store = stores.setdefault(policy.name, FixedWindowStore(policy.window_seconds))
        stages.append(
            Stage(
                f"{policy.name}-limiter",
                Middleware(
                    RateLimitMiddleware,
                    policy=policy,
                    store=store,
                    ipv6_subnet=settings.rate_limit_ipv6_subnet,
                ),
            )
        )

    stages.extend([
        Stage(
            "request-logger",
            Middleware(
                RequestLoggingMiddleware,
                api_prefix=settings.api_prefix,
                max_length=settings.log_line_max_length,
            ),
        ),
        Stage("error-handler", Middleware(ErrorHandlerMiddleware)),
    ])
    return stages
