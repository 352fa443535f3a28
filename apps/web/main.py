"""FastAPI web application for DepMend."""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ValidationError

from core.advisories import AdvisorySource, OsvAdvisorySource, StaticAdvisorySource
from core.config import PlannerSettings, get_settings
from core.errors import LookupFailure, MalformedInputError, RunCancelledError
from core.models import Severity
from core.remediate import remediate
from core.report import plan_to_dict

logger = logging.getLogger(__name__)

app = FastAPI(
    title="DepMend",
    description="Plan npm overrides that remediate vulnerable dependencies",
    version="0.1.0",
)


class PlanRequest(BaseModel):
    """Request model for planning a remediation."""
    manifest: str
    lockfile: str
    advisories: Optional[list[dict]] = None
    severity_floor: Optional[Severity] = None
    allow_positional_overrides: Optional[bool] = None
    include_dev: Optional[bool] = None


class PlanResponse(BaseModel):
    """Response model mirroring the CLI's JSON report."""
    outcome: str
    exit_status: int
    overrides: list[dict]
    npm_overrides: dict
    findings: list[dict]
    verification: dict
    skipped_packages: list[str]


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def _source_for(request: PlanRequest, settings: PlannerSettings) -> AdvisorySource:
    if request.advisories is not None:
        return StaticAdvisorySource.from_records(request.advisories)
    return OsvAdvisorySource(base_url=settings.osv_url, timeout=settings.lookup_timeout)


@app.post("/api/plan", response_model=PlanResponse)
async def plan_remediation(request: PlanRequest):
    """Plan and verify overrides for a package.json and its lockfile."""
    try:
        if not request.manifest.strip() or not request.lockfile.strip():
            raise HTTPException(status_code=400, detail="Both manifest and lockfile are required")

        settings = get_settings(
            severity_floor=request.severity_floor,
            allow_positional_overrides=request.allow_positional_overrides,
            include_dev=request.include_dev,
        )
        report = await remediate(request.manifest, request.lockfile, _source_for(request, settings), settings)
        return PlanResponse(**plan_to_dict(report))

    except HTTPException:
        # Re-raise HTTP exceptions (don't convert to 500)
        raise
    except (MalformedInputError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (LookupFailure, RunCancelledError) as e:
        logger.warning("Plan request failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.exception("Unexpected error while planning")
        raise HTTPException(status_code=500, detail=f"Error planning remediation: {str(e)}")
