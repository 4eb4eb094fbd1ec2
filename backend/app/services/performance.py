"""
Independent annual-generation estimate for a solar PV plant.

A simplified PVWatts-style calculation: extracted parameters are used where
present and every gap is filled from a documented default. Each default adds
a line to `assumptions`; the ratio of supplied to assumed inputs drives the
confidence level of the result.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

import httpx
from sqlalchemy.orm import Session

from backend.app import models
from backend.app.errors import ValidationError
from backend.app.services.rounding import round_half_up
from backend.app.services.weather import DEFAULT_YEAR, get_project_weather_data

AC_DC_DEFAULT_RATIO = 0.85
DEFAULT_TRACKING = "single_axis"
DEFAULT_SYSTEM_LOSSES = 14.0
DEFAULT_AVAILABILITY = 98.0
DEFAULT_SOILING = 2.0
DEFAULT_DEGRADATION = 0.5

MODULE_EFFICIENCY = 0.21
INVERTER_EFFICIENCY = 0.985
CLIPPING_RATIO_THRESHOLD = 1.2
CLIPPING_LOSS_FACTOR = 0.98
VARIANCE_FLAG_PERCENT = 10.0
HOURS_PER_YEAR = 8760

POA_MULTIPLIERS = {
    "single_axis": 1.25,
    "dual_axis": 1.35,
    "fixed": 1.05,
    "fixed_tilt": 1.05,
}

# (upper bound on |latitude|, kWh/m²/yr); strict "<"
GHI_LATITUDE_BANDS = (
    (15.0, 1900),
    (25.0, 2100),
    (35.0, 1800),
    (45.0, 1500),
)
GHI_HIGH_LATITUDE = 1200


@dataclass(frozen=True)
class ClaimComparison:
    variance_gwh: float
    variance_percent: float
    flag_triggered: bool
    warning: Optional[str]


@dataclass(frozen=True)
class ValidationResult:
    id: str
    project_id: int
    calculation_id: str

    annual_generation_gwh: float
    capacity_factor_percent: float
    specific_yield_kwh_kwp: int

    contractor_claim_gwh: Optional[float]
    variance_percent: Optional[float]
    variance_gwh: Optional[float]
    flag_triggered: bool
    confidence_level: str

    dc_capacity_mw: float
    ac_capacity_mw: float
    tracking_type: str
    total_system_losses_percent: float
    degradation_rate_percent: float
    performance_ratio: float
    clipping_loss_factor: float
    parameters_extracted_count: int
    parameters_assumed_count: int

    ghi_annual_kwh_m2: float
    ghi_source: str

    assumptions: tuple[str, ...]
    warnings: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["assumptions"] = list(self.assumptions)
        d["warnings"] = list(self.warnings)
        return d


def _get(params: Any, name: str) -> Any:
    if params is None:
        return None
    if isinstance(params, Mapping):
        return params.get(name)
    return getattr(params, name, None)


def parse_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if f != f or f in (float("inf"), float("-inf")):
        return None
    return f


def positive_number(value: Any) -> Optional[float]:
    f = parse_number(value)
    if f is None or f <= 0:
        return None
    return f


def estimate_ghi(latitude: Optional[float]) -> int:
    abs_lat = abs(latitude or 0.0)
    for bound, ghi in GHI_LATITUDE_BANDS:
        if abs_lat < bound:
            return ghi
    return GHI_HIGH_LATITUDE


def normalize_tracking(tracking_type: str) -> str:
    return "_".join(tracking_type.strip().lower().replace("-", " ").split())


def poa_multiplier(tracking_type: str) -> float:
    return POA_MULTIPLIERS.get(normalize_tracking(tracking_type), 1.0)


def clipping_factor(dc_capacity_mw: float, ac_capacity_mw: float) -> tuple[float, Optional[str]]:
    ratio = dc_capacity_mw / ac_capacity_mw
    if ratio > CLIPPING_RATIO_THRESHOLD:
        return (
            CLIPPING_LOSS_FACTOR,
            f"DC/AC ratio of {ratio:.2f} may result in inverter clipping (~2% loss)",
        )
    return 1.0, None


def compare_to_claim(ac_energy_gwh: float, claim_gwh: float) -> ClaimComparison:
    variance_gwh = ac_energy_gwh - claim_gwh
    variance_percent = variance_gwh / claim_gwh * 100
    flagged = abs(variance_percent) > VARIANCE_FLAG_PERCENT
    warning = None
    if flagged:
        warning = (
            f"Calculated generation differs from contractor claim by "
            f"{abs(variance_percent):.1f}% ({abs(variance_gwh):.1f} GWh)"
        )
    return ClaimComparison(variance_gwh, variance_percent, flagged, warning)


def confidence_level(extracted: int, assumed: int) -> str:
    total = extracted + assumed
    ratio = extracted / total if total else 0.0
    if ratio >= 0.7:
        return "HIGH"
    if ratio >= 0.4:
        return "MEDIUM"
    return "LOW"


def run_performance_validation(
    project_id: int,
    params: Any,
    *,
    fallback_ghi: Optional[float] = None,
    fallback_ghi_source: str = "open-meteo",
) -> ValidationResult:
    """
    Compute the independent generation estimate.

    `params` is a mapping or object exposing the performance parameter names
    (values may be strings or numbers). Raises ValidationError only when
    dc_capacity_mw is missing or not positive. `fallback_ghi` (e.g. from the
    weather API) is tried before the latitude table when no GHI was supplied.
    """
    print(f"[performance] START project={project_id}", flush=True)

    assumptions: list[str] = []
    warnings: list[str] = []
    extracted = 0
    assumed = 0

    dc_mw = positive_number(_get(params, "dc_capacity_mw"))
    if dc_mw is None:
        raise ValidationError("DC capacity is required for performance validation")
    extracted += 1

    ac_mw = positive_number(_get(params, "ac_capacity_mw"))
    if ac_mw is None:
        ac_mw = dc_mw * AC_DC_DEFAULT_RATIO
        assumptions.append(
            f"AC capacity assumed as {ac_mw:.1f} MW (85% of DC capacity, typical for utility-scale)"
        )
        assumed += 1
    else:
        extracted += 1

    raw_tracking = _get(params, "tracking_type")
    if isinstance(raw_tracking, str) and raw_tracking.strip():
        tracking = normalize_tracking(raw_tracking)
        extracted += 1
    else:
        tracking = DEFAULT_TRACKING
        assumptions.append("Single-axis tracking assumed (most common for utility-scale solar)")
        assumed += 1

    latitude = parse_number(_get(params, "latitude"))
    longitude = parse_number(_get(params, "longitude"))
    if latitude is None or longitude is None:
        warnings.append("Location coordinates missing - using default irradiance values")

    ghi = positive_number(_get(params, "ghi_annual_kwh_m2"))
    ghi_source = "extracted"
    if ghi is not None:
        extracted += 1
    else:
        fb = positive_number(fallback_ghi)
        if fb is not None:
            ghi = fb
            ghi_source = fallback_ghi_source
            assumptions.append(
                f"Annual GHI of {ghi:.0f} kWh/m² taken from {fallback_ghi_source} reference-year data"
            )
        else:
            ghi = float(estimate_ghi(latitude))
            ghi_source = "latitude_estimate"
            assumptions.append(
                f"Annual GHI estimated as {ghi:.0f} kWh/m² based on latitude {(latitude or 0.0):.2f}°"
            )
        assumed += 1

    losses = positive_number(_get(params, "system_losses_percent"))
    if losses is None:
        losses = DEFAULT_SYSTEM_LOSSES
        assumptions.append("System losses assumed as 14% (industry standard for utility-scale PV)")
        assumed += 1
    else:
        extracted += 1

    availability = positive_number(_get(params, "availability_percent"))
    if availability is None:
        availability = DEFAULT_AVAILABILITY
        assumptions.append("System availability assumed as 98% (typical for utility-scale with O&M)")
        assumed += 1
    else:
        extracted += 1

    soiling = positive_number(_get(params, "soiling_loss_percent"))
    if soiling is None:
        soiling = DEFAULT_SOILING
        assumptions.append("Soiling losses assumed as 2% (moderate desert environment)")
        assumed += 1
    else:
        extracted += 1

    # resolved and reported, not applied to first-year energy
    degradation = positive_number(_get(params, "degradation_rate_percent"))
    if degradation is None:
        degradation = DEFAULT_DEGRADATION
        assumptions.append("Degradation rate assumed as 0.5%/year (modern bifacial modules)")
        assumed += 1
    else:
        extracted += 1

    total_losses = losses + soiling
    poa_annual = ghi * poa_multiplier(tracking)
    performance_ratio = (1 - total_losses / 100) * (availability / 100)

    dc_energy_gwh = (dc_mw * 1000) * poa_annual * MODULE_EFFICIENCY * performance_ratio / 1e6

    clip, clip_warning = clipping_factor(dc_mw, ac_mw)
    if clip_warning:
        warnings.append(clip_warning)

    ac_energy_gwh = dc_energy_gwh * clip * INVERTER_EFFICIENCY
    capacity_factor = (ac_energy_gwh * 1000) / (ac_mw * HOURS_PER_YEAR) * 100
    specific_yield = (ac_energy_gwh * 1e6) / (dc_mw * 1000)

    claim = positive_number(_get(params, "p50_generation_gwh"))
    comparison: Optional[ClaimComparison] = None
    if claim is not None:
        comparison = compare_to_claim(ac_energy_gwh, claim)
        if comparison.warning:
            warnings.append(comparison.warning)

    level = confidence_level(extracted, assumed)

    print(
        f"[performance] DONE project={project_id} gen={ac_energy_gwh:.1f}GWh cf={capacity_factor:.1f}% "
        f"yield={specific_yield:.0f}kWh/kWp extracted={extracted} assumed={assumed} confidence={level}",
        flush=True,
    )

    return ValidationResult(
        id=str(uuid.uuid4()),
        project_id=project_id,
        calculation_id=f"CALC_{int(time.time() * 1000)}",
        annual_generation_gwh=round_half_up(ac_energy_gwh, 2),
        capacity_factor_percent=round_half_up(capacity_factor, 1),
        specific_yield_kwh_kwp=int(round_half_up(specific_yield)),
        contractor_claim_gwh=round_half_up(claim, 2) if claim is not None else None,
        variance_percent=round_half_up(comparison.variance_percent, 1) if comparison else None,
        variance_gwh=round_half_up(comparison.variance_gwh, 2) if comparison else None,
        flag_triggered=bool(comparison and comparison.flag_triggered),
        confidence_level=level,
        dc_capacity_mw=round_half_up(dc_mw, 1),
        ac_capacity_mw=round_half_up(ac_mw, 1),
        tracking_type=tracking,
        total_system_losses_percent=round_half_up(total_losses, 1),
        degradation_rate_percent=degradation,
        performance_ratio=round_half_up(performance_ratio, 4),
        clipping_loss_factor=clip,
        parameters_extracted_count=extracted,
        parameters_assumed_count=assumed,
        ghi_annual_kwh_m2=round_half_up(ghi),
        ghi_source=ghi_source,
        assumptions=tuple(assumptions),
        warnings=tuple(warnings),
    )


# --- Project-level run + stored snapshot ---

PARAMETER_NAMES = (
    "dc_capacity_mw",
    "ac_capacity_mw",
    "tracking_type",
    "latitude",
    "longitude",
    "system_losses_percent",
    "degradation_rate_percent",
    "availability_percent",
    "soiling_loss_percent",
    "ghi_annual_kwh_m2",
    "p50_generation_gwh",
)


def latest_parameters(db: Session, project_id: int) -> Optional[models.PerformanceParameters]:
    return (
        db.query(models.PerformanceParameters)
        .filter(models.PerformanceParameters.project_id == project_id)
        .order_by(models.PerformanceParameters.created_at.desc(), models.PerformanceParameters.id.desc())
        .first()
    )


def project_inputs(
    db: Session,
    project: models.Project,
    overrides: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Latest extracted parameters, project coordinates where none were extracted, then overrides."""
    row = latest_parameters(db, project.id)
    inputs: dict[str, Any] = {name: getattr(row, name, None) for name in PARAMETER_NAMES}

    if parse_number(inputs.get("latitude")) is None or parse_number(inputs.get("longitude")) is None:
        if project.latitude is not None and project.longitude is not None:
            inputs["latitude"] = project.latitude
            inputs["longitude"] = project.longitude

    for name, value in (overrides or {}).items():
        if name in PARAMETER_NAMES and value is not None:
            inputs[name] = value
    return inputs


def validate_project(
    db: Session,
    project_id: int,
    *,
    http: Optional[httpx.Client] = None,
    weather_year: int = DEFAULT_YEAR,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ValidationResult:
    """
    Run the engine for a project and replace its stored snapshot.

    Open-Meteo GHI (when `http` is given) stands in for a missing extracted GHI.
    ValidationError propagates and leaves the previous snapshot untouched.
    """
    project = db.get(models.Project, project_id)
    if project is None:
        raise ValidationError(f"project not found: {project_id}")

    inputs = project_inputs(db, project, overrides)

    fallback_ghi = None
    if http is not None and positive_number(inputs.get("ghi_annual_kwh_m2")) is None and positive_number(inputs.get("dc_capacity_mw")):
        weather = get_project_weather_data(
            parse_number(inputs.get("latitude")),
            parse_number(inputs.get("longitude")),
            client=http,
            year=weather_year,
        )
        if weather is not None:
            fallback_ghi = weather.annual_ghi

    result = run_performance_validation(project_id, inputs, fallback_ghi=fallback_ghi)
    store_validation(db, result)
    return result


def store_validation(db: Session, result: ValidationResult) -> models.PerformanceValidation:
    """Delete + insert in one transaction: one snapshot per project."""
    db.query(models.PerformanceValidation).filter(
        models.PerformanceValidation.project_id == result.project_id
    ).delete(synchronize_session=False)
    db.flush()

    row = models.PerformanceValidation(
        project_id=result.project_id,
        calculation_id=result.calculation_id,
        payload_json=json.dumps(result.to_dict()),
        flag_triggered=1 if result.flag_triggered else 0,
        confidence_level=result.confidence_level,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def stored_validation(db: Session, project_id: int) -> Optional[dict[str, Any]]:
    row = (
        db.query(models.PerformanceValidation)
        .filter(models.PerformanceValidation.project_id == project_id)
        .first()
    )
    if row is None:
        return None
    payload = json.loads(row.payload_json)
    payload["created_at"] = row.created_at
    return payload
