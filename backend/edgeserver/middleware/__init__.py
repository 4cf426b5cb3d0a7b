"""
Edgeserver — Middleware Package
================================

What:  Cross-cutting request stages of the edge pipeline.

Middleware Chain (outermost first, see pipeline.build_pipeline):
    Request → [Proxy trust] → [GZip] → [Static assets, prod] → [HTTPS redirect, prod]
            → [CORS] → [Security headers] → [CT report] → [Body parser]
            → [Admin-login limiter] → [General limiter] → [Request logger]
            → [Error handler] → Routes / asset fallback

    The order is reversed for responses, which means:
    - The request logger sees the final status and body before the limiters
      and security stages add their headers.
    - The error handler converts exceptions into responses before any other
      stage sees them.
"""
