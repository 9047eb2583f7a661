"""Two-minute ProdMet demo: FastAPI backend over the demo or persisted event source."""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Query

from prodmet.adapters import FixtureEventSource, build_event_source_from_settings, select_event_source
from prodmet.config import get_settings
from prodmet.errors import DataUnavailable, InvalidFunnelConfiguration
from prodmet.service import AnalyticsService

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("prodmet.demo")

PERSISTED = build_event_source_from_settings(settings)
FIXTURE = FixtureEventSource(comparison_factor=settings.demo_comparison_factor)

app = FastAPI(title="ProdMet Two-Minute Demo", version="0.1.0")


def _service(project_id: str) -> AnalyticsService:
    try:
        source = select_event_source(project_id, PERSISTED, FIXTURE, settings.demo_project_id)
    except DataUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return AnalyticsService(source, settings=settings)


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "demo": "prodmet-two-minute", "database": PERSISTED is not None}


@app.get("/api/projects/{project_id}/analytics")
def project_analytics(
    project_id: str,
    range_days: int = Query(default=30, alias="range"),
    retention_event: Optional[str] = Query(default=None, alias="retentionEvent"),
    filters: Optional[str] = None,
    funnel: Optional[str] = None,
) -> dict:
    service = _service(project_id)
    try:
        return service.get_project_analytics(
            project_id,
            range_days=range_days,
            retention_event=retention_event,
            filters=filters,
            funnel_steps=funnel,
        )
    except InvalidFunnelConfiguration as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except DataUnavailable as exc:
        logger.warning("Analytics unavailable for %s: %s", project_id, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.get("/api/projects/{project_id}/people")
def people(project_id: str, limit: int = Query(default=50, ge=1, le=500)) -> dict:
    try:
        return _service(project_id).get_people(project_id, limit=limit)
    except DataUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.get("/api/projects/{project_id}/sdk-status")
def sdk_status(project_id: str) -> dict:
    try:
        return _service(project_id).get_sdk_status(project_id)
    except DataUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.get("/api/projects/{project_id}/people/{user_id}")
def user_journey(project_id: str, user_id: str, limit: int = Query(default=500, ge=1, le=500)) -> dict:
    try:
        return _service(project_id).get_user_journey(project_id, user_id, limit=limit)
    except DataUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
