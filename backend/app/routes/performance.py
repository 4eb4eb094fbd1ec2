from __future__ import annotations

from typing import Optional

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from backend.app import models
from backend.app.config import PipelineConfig, build_http_client
from backend.app.db import get_db
from backend.app.errors import ValidationError
from backend.app.schemas import PerformanceOverrides, PerformanceValidationOut, WeatherOut
from backend.app.services import performance
from backend.app.services.weather import get_project_weather_data

router = APIRouter()


def get_weather_config() -> PipelineConfig:
    return PipelineConfig.from_env()


def get_http_client(config: PipelineConfig = Depends(get_weather_config)):
    """FastAPI dependency that yields an httpx client for upstream APIs."""
    client = build_http_client(config.weather_timeout_s)
    try:
        yield client
    finally:
        client.close()


def _get_project(db: Session, project_id: int) -> models.Project:
    project = db.get(models.Project, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="project not found")
    return project


@router.get("/{project_id}/weather", response_model=WeatherOut)
def get_weather(
    project_id: int,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
    http: httpx.Client = Depends(get_http_client),
    config: PipelineConfig = Depends(get_weather_config),
):
    """Monthly irradiance for the project site (Open-Meteo reference year)."""
    project = _get_project(db, project_id)
    inputs = performance.project_inputs(db, project)
    lat = performance.parse_number(inputs.get("latitude"))
    lon = performance.parse_number(inputs.get("longitude"))
    if lat is None or lon is None:
        raise HTTPException(status_code=400, detail="project has no coordinates")

    data = get_project_weather_data(lat, lon, client=http, year=year or config.weather_year)
    if data is None:
        raise HTTPException(status_code=502, detail="weather data unavailable")
    return data.to_dict()


@router.post("/{project_id}/performance-validation", response_model=PerformanceValidationOut)
def run_validation(
    project_id: int,
    overrides: Optional[PerformanceOverrides] = Body(None),
    db: Session = Depends(get_db),
    http: httpx.Client = Depends(get_http_client),
    config: PipelineConfig = Depends(get_weather_config),
):
    _get_project(db, project_id)
    try:
        result = performance.validate_project(
            db,
            project_id,
            http=http,
            weather_year=config.weather_year,
            overrides=overrides.model_dump(exclude_none=True) if overrides else None,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return performance.stored_validation(db, result.project_id)


@router.get("/{project_id}/performance-validation", response_model=PerformanceValidationOut)
def get_validation(project_id: int, db: Session = Depends(get_db)):
    _get_project(db, project_id)
    stored = performance.stored_validation(db, project_id)
    if stored is None:
        raise HTTPException(status_code=404, detail="no performance validation for project")
    return stored
