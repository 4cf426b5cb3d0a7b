"""
Edgeserver — Pydantic Response Schemas
=======================================

What:  Response models for the few endpoints the edge layer owns itself.
"""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Returned by GET /api/health for load balancer and uptime probes."""

    status: str = Field(description="Overall service status")
    version: str = Field(description="Application version")
    environment: str = Field(description="development or production")
    uptime_seconds: float = Field(description="Seconds since service started")
