"""Health check endpoints.

Includes the diagnostics surface for capability flags and telemetry counters.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from core import __version__
from core.observability.telemetry import TelemetryCounters, get_telemetry
from line_items import CapabilityRegistry, get_capability_registry


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


class TelemetryImportRequest(BaseModel):
    """Counters previously produced by the export endpoint."""
    counters: Dict[str, Any]
    timestamp: str = ""


@router.get("/health", response_model=HealthResponse)
async def health_check(
    telemetry: TelemetryCounters = Depends(get_telemetry),
) -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        services={
            "api": "up",
            "telemetry": telemetry.backend_in_use,
        }
    )


@router.get("/health/capabilities")
async def capabilities(
    registry: CapabilityRegistry = Depends(get_capability_registry),
) -> Dict[str, bool]:
    """Current optional-column capability flags."""
    return registry.snapshot()


@router.get("/health/telemetry")
async def telemetry_summary(
    telemetry: TelemetryCounters = Depends(get_telemetry),
) -> Dict[str, Any]:
    """Counter values and reset information."""
    return telemetry.summary()


@router.post("/health/telemetry/reset")
async def reset_telemetry(
    telemetry: TelemetryCounters = Depends(get_telemetry),
) -> Dict[str, Any]:
    """Zero every counter and stamp the reset time."""
    telemetry.reset_all()
    return telemetry.summary()


@router.get("/health/telemetry/export")
async def export_telemetry(
    telemetry: TelemetryCounters = Depends(get_telemetry),
) -> Dict[str, Any]:
    """Counters in the portable export format."""
    return json.loads(telemetry.export_json())


@router.post("/health/telemetry/import")
async def import_telemetry(
    request: TelemetryImportRequest = Body(...),
    telemetry: TelemetryCounters = Depends(get_telemetry),
) -> Dict[str, Any]:
    """Load counters from an export."""
    if not telemetry.import_json(request.model_dump_json()):
        raise HTTPException(status_code=400, detail="Telemetry import rejected")
    return telemetry.summary()
