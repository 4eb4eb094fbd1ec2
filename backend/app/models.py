from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db import Base


class Project(Base):
    """A renewable-energy project under due diligence."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    documents: Mapped[list[Document]] = relationship(back_populates="project")


class Document(Base):
    """Uploaded source document.

    Either a stored file (storage_path) or inline text (text_content).
    """

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)

    document_type: Mapped[str] = mapped_column(String(30), nullable=False, default="OTHER")
    mime_type: Mapped[str | None] = mapped_column(String(120), nullable=True)
    original_filename: Mapped[str | None] = mapped_column(String(300), nullable=True)

    # For file documents
    storage_path: Mapped[str | None] = mapped_column(String(700), nullable=True)
    bytes_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # For pasted text documents
    text_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="uploaded")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    project: Mapped[Project] = relationship(back_populates="documents")


class ProcessingJob(Base):
    """One pipeline run for a document; doubles as the polled progress record."""

    __tablename__ = "processing_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id"), nullable=False)
    job_type: Mapped[str] = mapped_column(String(50), nullable=False, default="process_document")
    # generation number per document; a higher run supersedes lower ones
    run: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    stage: Mapped[str] = mapped_column(String(50), nullable=False, default="text_extraction")
    progress_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="queued")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    document: Mapped["Document"] = relationship("Document")


class Fact(Base):
    __tablename__ = "facts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)
    source_document_id: Mapped[int | None] = mapped_column(ForeignKey("documents.id"), nullable=True)

    # canonical section; raw_category keeps what the extractor said
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    raw_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    data_type: Mapped[str] = mapped_column(String(30), nullable=False, default="text")
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)

    source_location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    extraction_method: Mapped[str] = mapped_column(String(50), nullable=False)
    verification_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class SectionNarrative(Base):
    __tablename__ = "section_narratives"
    __table_args__ = (
        UniqueConstraint("project_id", "section", name="uq_section_narratives_project_section"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)
    section: Mapped[str] = mapped_column(String(100), nullable=False)
    narrative: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class PerformanceParameters(Base):
    """Performance-validation inputs extracted from one document.

    Numbers are kept as the strings the document used; the validator parses them.
    """

    __tablename__ = "performance_parameters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)
    source_document_id: Mapped[int | None] = mapped_column(ForeignKey("documents.id"), nullable=True)

    dc_capacity_mw: Mapped[str | None] = mapped_column(String(40), nullable=True)
    ac_capacity_mw: Mapped[str | None] = mapped_column(String(40), nullable=True)
    tracking_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    latitude: Mapped[str | None] = mapped_column(String(40), nullable=True)
    longitude: Mapped[str | None] = mapped_column(String(40), nullable=True)
    system_losses_percent: Mapped[str | None] = mapped_column(String(40), nullable=True)
    degradation_rate_percent: Mapped[str | None] = mapped_column(String(40), nullable=True)
    availability_percent: Mapped[str | None] = mapped_column(String(40), nullable=True)
    soiling_loss_percent: Mapped[str | None] = mapped_column(String(40), nullable=True)
    ghi_annual_kwh_m2: Mapped[str | None] = mapped_column(String(40), nullable=True)
    dni_annual_kwh_m2: Mapped[str | None] = mapped_column(String(40), nullable=True)
    p50_generation_gwh: Mapped[str | None] = mapped_column(String(40), nullable=True)
    p90_generation_gwh: Mapped[str | None] = mapped_column(String(40), nullable=True)
    capacity_factor_percent: Mapped[str | None] = mapped_column(String(40), nullable=True)
    specific_yield_kwh_kwp: Mapped[str | None] = mapped_column(String(40), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class FinancialData(Base):
    __tablename__ = "financial_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)
    source_document_id: Mapped[int | None] = mapped_column(ForeignKey("documents.id"), nullable=True)

    total_capex_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    modules_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    inverters_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    trackers_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    civil_works_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    grid_connection_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    development_costs_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    total_opex_annual_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    om_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    capex_per_watt_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    opex_per_mwh_usd: Mapped[str | None] = mapped_column(String(40), nullable=True)
    original_currency: Mapped[str | None] = mapped_column(String(10), nullable=True)
    cost_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    escalation_rate_percent: Mapped[str | None] = mapped_column(String(40), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class WeatherFile(Base):
    """A weather data reference found in a document (TMY file, PVGIS link, ...)."""

    __tablename__ = "weather_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)
    source_document_id: Mapped[int | None] = mapped_column(ForeignKey("documents.id"), nullable=True)

    ref_type: Mapped[str] = mapped_column(String(20), nullable=False, default="reference")
    url: Mapped[str | None] = mapped_column(String(700), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    data_format: Mapped[str | None] = mapped_column(String(40), nullable=True)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    source_location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="referenced")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class PerformanceValidation(Base):
    """Latest validation snapshot for a project; replaced wholesale on re-run."""

    __tablename__ = "performance_validations"
    __table_args__ = (
        UniqueConstraint("project_id", name="uq_performance_validations_project_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)
    calculation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    flag_triggered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confidence_level: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
