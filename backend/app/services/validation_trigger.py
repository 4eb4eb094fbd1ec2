"""
Decide whether a project has enough data for a performance validation and,
when it does, run one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from backend.app import models
from backend.app.services import performance


@dataclass
class ReadinessCheck:
    can_trigger: bool
    reason: str
    missing_data: list[str] = field(default_factory=list)
    performance_parameters_id: Optional[int] = None
    weather_file_id: Optional[int] = None


def check_validation_readiness(db: Session, project_id: int) -> ReadinessCheck:
    """
    Required: an extracted DC capacity and a site location (extracted or on the
    project). Irradiance comes from an extracted GHI, a referenced weather file
    or the Open-Meteo fallback, so a location is enough for it.
    """
    missing: list[str] = []
    project = db.get(models.Project, project_id)
    params = performance.latest_parameters(db, project_id)

    if params is None:
        missing.append("performance_parameters")
    elif performance.positive_number(params.dc_capacity_mw) is None:
        missing.append("dc_capacity")

    has_location = (
        params is not None
        and performance.parse_number(params.latitude) is not None
        and performance.parse_number(params.longitude) is not None
    ) or (project is not None and project.latitude is not None and project.longitude is not None)
    if not has_location:
        missing.append("location")

    weather = (
        db.query(models.WeatherFile)
        .filter(models.WeatherFile.project_id == project_id)
        .order_by(models.WeatherFile.confidence.desc(), models.WeatherFile.id.desc())
        .first()
    )

    ok = not missing
    return ReadinessCheck(
        can_trigger=ok,
        reason="All required data available" if ok else f"Missing: {', '.join(missing)}",
        missing_data=missing,
        performance_parameters_id=params.id if params is not None else None,
        weather_file_id=weather.id if weather is not None else None,
    )


def maybe_trigger_validation(
    db: Session,
    project_id: int,
    *,
    http: Optional[httpx.Client] = None,
    weather_year: int = 2023,
) -> Optional[performance.ValidationResult]:
    check = check_validation_readiness(db, project_id)
    print(f"[validation_trigger] project={project_id} ready={check.can_trigger} reason={check.reason}", flush=True)
    if not check.can_trigger:
        return None
    return performance.validate_project(db, project_id, http=http, weather_year=weather_year)
