from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


# ---------- Projects ----------


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class ProjectOut(BaseModel):
    id: int
    name: str
    description: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    created_at: datetime

    class Config:
        from_attributes = True


# ---------- Documents ----------


class DocumentOut(BaseModel):
    id: int
    project_id: int
    document_type: str
    mime_type: Optional[str]
    original_filename: Optional[str]

    # For uploaded files
    storage_path: Optional[str]
    bytes_size: Optional[int]
    sha256: Optional[str]

    page_count: Optional[int]
    status: str
    error_message: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class ProgressOut(BaseModel):
    job_id: int
    document_id: int
    run: int
    stage: str
    failed_at_stage: Optional[str]
    progress_percent: int
    status: str
    error_message: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    updated_at: Optional[datetime]
    estimated_seconds_remaining: Optional[float]


# ---------- Facts ----------


class FactOut(BaseModel):
    id: int
    project_id: int
    source_document_id: Optional[int]
    category: str
    raw_category: Optional[str]
    key: str
    value: str
    data_type: str
    confidence: float
    source_location: Optional[str]
    extraction_method: str
    verification_status: str
    created_at: datetime
    verified_at: Optional[datetime]

    class Config:
        from_attributes = True


class FactUpdate(BaseModel):
    status: Literal["approved", "rejected"]
    # only with status=approved
    value: Optional[str] = None


class RedFlagOut(BaseModel):
    fact: FactOut
    severity: str
    risk_category: str


class RedFlagStats(BaseModel):
    total: int
    critical: int
    high: int
    medium: int
    low: int
    pending: int
    acknowledged: int


class RedFlagsOut(BaseModel):
    stats: RedFlagStats
    red_flags: List[RedFlagOut] = []


class NarrativeOut(BaseModel):
    section: str
    display_name: str
    narrative: str
    updated_at: datetime


# ---------- Weather ----------


class MonthlyIrradianceOut(BaseModel):
    month: int
    month_name: str
    ghi_kwh_m2: float
    dni_kwh_m2: float
    dhi_kwh_m2: float
    avg_temp_c: float


class WeatherOut(BaseModel):
    source: str
    year: int
    latitude: Optional[float]
    longitude: Optional[float]
    annual_ghi: int
    annual_dni: int
    monthly: List[MonthlyIrradianceOut]


# ---------- Performance validation ----------


class PerformanceOverrides(BaseModel):
    """Optional inputs that take precedence over extracted parameters."""

    dc_capacity_mw: Optional[float] = None
    ac_capacity_mw: Optional[float] = None
    tracking_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    system_losses_percent: Optional[float] = None
    degradation_rate_percent: Optional[float] = None
    availability_percent: Optional[float] = None
    soiling_loss_percent: Optional[float] = None
    ghi_annual_kwh_m2: Optional[float] = None
    p50_generation_gwh: Optional[float] = None


class PerformanceValidationOut(BaseModel):
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

    assumptions: List[str] = []
    warnings: List[str] = []
    created_at: Optional[datetime] = None
