from __future__ import annotations

import traceback
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from backend.app import models
from backend.app.config import PipelineDeps

PERFORMANCE_FIELDS: dict[str, str] = {
    "dc_capacity_mw": "DC capacity in MW (e.g. '100.5')",
    "ac_capacity_mw": "AC capacity in MW (e.g. '80.0')",
    "tracking_type": "Tracking system: 'fixed_tilt', 'single_axis' or 'dual_axis'",
    "latitude": "Site latitude in decimal degrees (e.g. '35.7')",
    "longitude": "Site longitude in decimal degrees (e.g. '14.5')",
    "system_losses_percent": "Total system losses in % (e.g. '12.5')",
    "degradation_rate_percent": "Annual degradation rate in % (e.g. '0.5')",
    "availability_percent": "System availability in % (e.g. '98.5')",
    "soiling_loss_percent": "Soiling losses in % (e.g. '2.0')",
    "ghi_annual_kwh_m2": "Annual global horizontal irradiation in kWh/m2 (e.g. '1950')",
    "dni_annual_kwh_m2": "Annual direct normal irradiation in kWh/m2 (e.g. '2200')",
    "p50_generation_gwh": "P50 annual generation estimate in GWh (e.g. '235.4')",
    "p90_generation_gwh": "P90 annual generation estimate in GWh (e.g. '220.1')",
    "capacity_factor_percent": "Expected capacity factor in % (e.g. '26.8')",
    "specific_yield_kwh_kwp": "Specific yield in kWh/kWp (e.g. '1850')",
    "notes": "Any other relevant notes or assumptions",
}

FINANCIAL_FIELDS: dict[str, str] = {
    "total_capex_usd": "Total capital expenditure in USD (e.g. '125000000')",
    "modules_usd": "Cost of solar modules in USD",
    "inverters_usd": "Cost of inverters in USD",
    "trackers_usd": "Cost of tracking systems in USD",
    "civil_works_usd": "Cost of civil works in USD",
    "grid_connection_usd": "Cost of grid connection in USD",
    "development_costs_usd": "Development costs in USD",
    "total_opex_annual_usd": "Total annual OpEx in USD",
    "om_usd": "Annual O&M cost in USD",
    "capex_per_watt_usd": "CapEx per watt in USD (e.g. '1.25')",
    "opex_per_mwh_usd": "OpEx per MWh in USD (e.g. '10.5')",
    "original_currency": "Original currency code if not USD (e.g. 'EUR')",
    "cost_year": "Year of the cost estimates (integer, e.g. 2024)",
    "escalation_rate_percent": "Annual cost escalation in % (e.g. '2.5')",
    "notes": "Any other relevant notes about costs",
}

_TRACKING = {
    "fixed": "fixed_tilt",
    "fixed_tilt": "fixed_tilt",
    "single_axis": "single_axis",
    "dual_axis": "dual_axis",
}


def _clean_scalar(v: Any) -> Any:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return str(v)
    if isinstance(v, str):
        v = v.strip()
        if not v or v.lower() in ("null", "none", "n/a", "unknown"):
            return None
        return v
    return None


class ExtractedPerformance(BaseModel):
    model_config = ConfigDict(extra="ignore")

    dc_capacity_mw: Optional[str] = None
    ac_capacity_mw: Optional[str] = None
    tracking_type: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    system_losses_percent: Optional[str] = None
    degradation_rate_percent: Optional[str] = None
    availability_percent: Optional[str] = None
    soiling_loss_percent: Optional[str] = None
    ghi_annual_kwh_m2: Optional[str] = None
    dni_annual_kwh_m2: Optional[str] = None
    p50_generation_gwh: Optional[str] = None
    p90_generation_gwh: Optional[str] = None
    capacity_factor_percent: Optional[str] = None
    specific_yield_kwh_kwp: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _scalars(cls, v: Any) -> Any:
        return _clean_scalar(v)

    @field_validator("tracking_type")
    @classmethod
    def _tracking(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        key = "_".join(v.lower().replace("-", " ").split())
        return _TRACKING.get(key, key)


class ExtractedFinancial(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_capex_usd: Optional[str] = None
    modules_usd: Optional[str] = None
    inverters_usd: Optional[str] = None
    trackers_usd: Optional[str] = None
    civil_works_usd: Optional[str] = None
    grid_connection_usd: Optional[str] = None
    development_costs_usd: Optional[str] = None
    total_opex_annual_usd: Optional[str] = None
    om_usd: Optional[str] = None
    capex_per_watt_usd: Optional[str] = None
    opex_per_mwh_usd: Optional[str] = None
    original_currency: Optional[str] = None
    cost_year: Optional[int] = None
    escalation_rate_percent: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _scalars(cls, v: Any) -> Any:
        return _clean_scalar(v)

    @field_validator("cost_year", mode="before")
    @classmethod
    def _year(cls, v: Any) -> Any:
        if v is None:
            return None
        try:
            year = int(float(v))
        except (TypeError, ValueError):
            return None
        return year if 1900 <= year <= 2200 else None


def nullable_schema(fields: dict[str, str], integer_fields: tuple[str, ...] = ()) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            name: {"type": ["integer" if name in integer_fields else "string", "null"]}
            for name in fields
        },
        "required": [],
        "additionalProperties": False,
    }


def _build_prompt(kind: str, fields: dict[str, str], text: str, doc_type: str) -> str:
    field_lines = "\n".join(f'  "{name}": {desc}' for name, desc in fields.items())
    return f"""You are extracting {kind} for solar farm due diligence from a {doc_type} document.

Return ONLY a JSON object with these fields (null for anything not in the document):
{{
{field_lines}
}}

Rules:
- Extract values exactly as they appear; do not guess.
- For numeric fields give only the number, no units or currency symbols.
- Return valid JSON only, no explanations.

Document text:
\"\"\"{text}\"\"\"
"""


def _confidence(extracted: BaseModel, fields: dict[str, str]) -> float:
    values = extracted.model_dump()
    found = sum(1 for name in fields if values.get(name) is not None)
    return found / len(fields) if fields else 0.0


def _invoke(deps: PipelineDeps, kind: str, fields: dict[str, str], schema: dict[str, Any],
            text: str, doc_type: str) -> Optional[dict[str, Any]]:
    excerpt = (text or "")[: deps.config.parameter_excerpt_chars]
    if not excerpt.strip():
        return None

    messages = [
        {
            "role": "system",
            "content": "You are a technical data extraction assistant. Extract information accurately and return valid JSON only.",
        },
        {"role": "user", "content": _build_prompt(kind, fields, excerpt, doc_type)},
    ]
    try:
        return deps.llm.invoke(messages, schema)
    except Exception as e:
        print(f"[parameters] {kind} extraction failed: {e!r}", flush=True)
        traceback.print_exc()
        return None


def extract_performance_parameters(deps: PipelineDeps, text: str, doc_type: str) -> Optional[tuple[ExtractedPerformance, float]]:
    """One LLM call; returns (parameters, confidence) or None when the call fails."""
    data = _invoke(deps, "performance validation parameters", PERFORMANCE_FIELDS,
                   nullable_schema(PERFORMANCE_FIELDS), text, doc_type)
    if data is None:
        return None
    params = ExtractedPerformance.model_validate(data)
    confidence = _confidence(params, PERFORMANCE_FIELDS)
    print(f"[parameters] performance confidence={confidence:.2f}", flush=True)
    return params, confidence


def extract_financial_data(deps: PipelineDeps, text: str, doc_type: str) -> Optional[tuple[ExtractedFinancial, float]]:
    data = _invoke(deps, "financial data (CapEx and OpEx)", FINANCIAL_FIELDS,
                   nullable_schema(FINANCIAL_FIELDS, integer_fields=("cost_year",)), text, doc_type)
    if data is None:
        return None
    fin = ExtractedFinancial.model_validate(data)
    confidence = _confidence(fin, FINANCIAL_FIELDS)
    print(f"[parameters] financial confidence={confidence:.2f}", flush=True)
    return fin, confidence


def store_performance_parameters(
    db: Session,
    document: models.Document,
    params: ExtractedPerformance,
    confidence: float,
) -> Optional[models.PerformanceParameters]:
    """Replace this document's row. Nothing is stored when every field is null."""
    db.query(models.PerformanceParameters).filter(
        models.PerformanceParameters.source_document_id == document.id
    ).delete(synchronize_session=False)

    row = None
    if confidence > 0:
        row = models.PerformanceParameters(
            project_id=document.project_id,
            source_document_id=document.id,
            confidence=confidence,
            **params.model_dump(),
        )
        db.add(row)
    db.commit()
    return row


def store_financial_data(
    db: Session,
    document: models.Document,
    fin: ExtractedFinancial,
    confidence: float,
) -> Optional[models.FinancialData]:
    db.query(models.FinancialData).filter(
        models.FinancialData.source_document_id == document.id
    ).delete(synchronize_session=False)

    row = None
    if confidence > 0:
        row = models.FinancialData(
            project_id=document.project_id,
            source_document_id=document.id,
            confidence=confidence,
            **fin.model_dump(),
        )
        db.add(row)
    db.commit()
    return row
