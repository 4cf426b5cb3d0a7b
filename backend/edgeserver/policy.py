"""
Edgeserver — Cross-Origin Policy & Security Header Values
==========================================================

What:  The policy table consumed by the security stage: allowed CORS origins
       and the literal values of the security response headers.
How:   Plain data built from Settings. The middleware in
       middleware/security.py only decides WHEN to apply these values.
"""

from typing import Any, Dict, List

from edgeserver.config import Settings

# Local front-end dev servers allowed in development only.
DEVELOPMENT_ORIGINS: List[str] = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

BASE_SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "0",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Cross-Origin-Opener-Policy": "same-origin",
}

HSTS_MAX_AGE = 365 * 24 * 60 * 60
EXPECT_CT_MAX_AGE = 24 * 60 * 60


def allowed_origins(settings: Settings) -> List[str]:
    origins = list(settings.cors_origins_list)
    if not settings.is_production:
        origins.extend(o for o in DEVELOPMENT_ORIGINS if o not in origins)
    return origins


def cors_options(settings: Settings) -> Dict[str, Any]:
    """Keyword arguments for Starlette's CORSMiddleware."""
    return {
        "allow_origins": allowed_origins(settings),
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization", "X-Requested-With"],
        "expose_headers": [
            "RateLimit-Policy",
            "RateLimit-Limit",
            "RateLimit-Remaining",
            "RateLimit-Reset",
            "Retry-After",
        ],
        "max_age": 86400,
    }


def https_security_headers(settings: Settings) -> Dict[str, str]:
    """Headers that only make sense on a TLS connection."""
    return {
        "Strict-Transport-Security": f"max-age={HSTS_MAX_AGE}; includeSubDomains; preload",
        "Expect-CT": (
            f'max-age={EXPECT_CT_MAX_AGE}, enforce, report-uri="{settings.ct_report_path}"'
        ),
    }
