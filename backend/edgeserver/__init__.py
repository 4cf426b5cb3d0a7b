"""
Edgeserver — Application Package Initializer
=============================================

What: The edge-processing pipeline that runs in front of the business routes
      of a web application server.
Who:  Imported by uvicorn (through `edgeserver.main`), pytest and the
      `python -m edgeserver` entry point.

Architecture Note:

    ┌─────────────────────────────────────┐
    │     Bootstrap (main / pipeline)     │  ← ordering of every stage
    ├─────────────────────────────────────┤
    │   Middleware (security, limits,     │  ← per-request policy
    │   body parsing, logging, errors)    │
    ├─────────────────────────────────────┤
    │   Assets (dev transform / static)   │  ← environment-specific delivery
    ├─────────────────────────────────────┤
    │   Routes (business collaborator)    │  ← registered through a hook
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
