# backend/tests/test_pipeline.py
import httpx
import pytest
from fakes import ScriptedLLM, make_deps, open_meteo_transport

from backend.app import models
from backend.app.db import SessionLocal
from backend.app.errors import LLMError
from backend.app.processors.registry import process_document, run_job
from backend.app.services.jobs import enqueue_job

TEXT = """Sunfield Solar Project - Information Memorandum
The project is a 120 MWp solar PV plant with an AC capacity of 100 MW.
Grid connection is at 132 kV via the Valley substation.
P50 annual generation is estimated at 250 GWh.
"""


def _facts(*items):
    return {"facts": [dict(zip(("category", "key", "value", "confidence"), it)) for it in items]}


PASS_RESPONSES = {
    "structured": _facts(("Technical_Specifications", "dc_capacity", "120 MWp", 0.9)),
    "relationship": _facts(("Dependencies", "grid", "COD depends on substation works", 0.7)),
    "risk": _facts(("Risks", "grid_connection", "Substation upgrade may slip", 0.8)),
    "assumption": _facts(("Assumptions", "degradation", "0.5%/yr", 0.6)),
}


@pytest.fixture()
def document(db, project):
    d = models.Document(project_id=project.id, document_type="IM", text_content=TEXT, mime_type="text/plain")
    db.add(d)
    db.commit()
    db.refresh(d)
    return d


def _deps(llm):
    return make_deps(llm, http=httpx.Client(transport=open_meteo_transport()))


def test_full_run_completes(db, project, document):
    llm = ScriptedLLM(
        {
            **PASS_RESPONSES,
            "narrative": {"narrative": "The plant is a 120 MWp single-axis PV project."},
            "performance": {
                "dc_capacity_mw": "120",
                "ac_capacity_mw": "100",
                "tracking_type": "Single Axis",
                "p50_generation_gwh": "250",
            },
            "financial": {"total_capex_usd": "96000000", "cost_year": 2024},
            "weather_refs": {
                "references": [
                    {"type": "reference", "description": "PVGIS TMY for the site", "format": "PVGIS", "confidence": 0.7}
                ]
            },
        }
    )
    job = enqueue_job(db, document.id)
    deps = _deps(llm)
    process_document(db, job, deps)
    deps.close()

    db.refresh(job)
    db.refresh(document)
    assert job.status == "completed"
    assert job.progress_percent == 100
    assert job.stage == "checking_validation_trigger"
    assert document.status == "processed"
    assert document.page_count == 1

    facts = db.query(models.Fact).filter(models.Fact.project_id == project.id).all()
    methods = {f.extraction_method for f in facts}
    assert {"llm_structured", "llm_relationship", "llm_risk", "llm_assumption"} <= methods
    assert "deterministic_regex" in methods

    params = db.query(models.PerformanceParameters).filter_by(source_document_id=document.id).one()
    assert params.tracking_type == "single_axis"
    fin = db.query(models.FinancialData).filter_by(source_document_id=document.id).one()
    assert fin.cost_year == 2024
    ref = db.query(models.WeatherFile).filter_by(source_document_id=document.id).one()
    assert ref.data_format == "pvgis"

    assert db.query(models.SectionNarrative).filter_by(project_id=project.id).count() >= 1

    validation = db.query(models.PerformanceValidation).filter_by(project_id=project.id).one()
    assert validation.confidence_level in ("HIGH", "MEDIUM", "LOW")


def test_enrichment_failures_do_not_fail_the_run(db, project, document):
    llm = ScriptedLLM({**PASS_RESPONSES, "narrative": LLMError("model offline")})
    job = enqueue_job(db, document.id)
    process_document(db, job, _deps(llm))

    db.refresh(job)
    assert job.status == "completed"
    assert job.progress_percent == 100
    assert db.query(models.SectionNarrative).filter_by(project_id=project.id).count() == 0
    assert db.query(models.PerformanceParameters).filter_by(project_id=project.id).count() == 0
    assert db.query(models.PerformanceValidation).filter_by(project_id=project.id).count() == 0
    assert "performance" in llm.calls and "weather_refs" in llm.calls


def test_failed_passes_still_complete(db, project, document):
    llm = ScriptedLLM({"risk": PASS_RESPONSES["risk"]})
    job = enqueue_job(db, document.id)
    process_document(db, job, _deps(llm))

    db.refresh(job)
    assert job.status == "completed"
    llm_facts = (
        db.query(models.Fact)
        .filter(models.Fact.project_id == project.id, models.Fact.extraction_method.like("llm_%"))
        .all()
    )
    assert [f.extraction_method for f in llm_facts] == ["llm_risk"]


def test_empty_text_fails_at_text_extraction(db, project):
    doc = models.Document(project_id=project.id, text_content="  \n  ", mime_type="text/plain")
    db.add(doc)
    db.commit()
    job = enqueue_job(db, doc.id)

    with pytest.raises(RuntimeError):
        process_document(db, job, _deps(ScriptedLLM()))

    db.refresh(job)
    db.refresh(doc)
    assert job.status == "failed"
    assert job.stage == "text_extraction"
    assert job.progress_percent == 10
    assert doc.status == "error"
    assert db.query(models.Fact).filter_by(source_document_id=doc.id).count() == 0


def test_superseded_run_stops(db, project, document):
    llm = ScriptedLLM(PASS_RESPONSES)
    old = enqueue_job(db, document.id)
    enqueue_job(db, document.id)

    process_document(db, old, _deps(llm))

    db.refresh(old)
    assert old.status == "failed"
    assert old.error_message.startswith("superseded")
    assert llm.calls == []


def test_unknown_job_type(db, document):
    job = enqueue_job(db, document.id, job_type="transcribe")
    with pytest.raises(RuntimeError):
        run_job(db, job, _deps(ScriptedLLM()))


def test_run_failed_by_sweep_mid_extraction_is_not_revived(db, project, document):
    job = enqueue_job(db, document.id)

    def structured_then_swept(messages):
        other = SessionLocal()
        try:
            row = other.get(models.ProcessingJob, job.id)
            row.status = "failed"
            row.error_message = "no progress for 1800s; worker presumed dead"
            other.commit()
        finally:
            other.close()
        return PASS_RESPONSES["structured"]

    llm = ScriptedLLM({**PASS_RESPONSES, "structured": structured_then_swept})
    process_document(db, job, _deps(llm))

    db.refresh(job)
    db.refresh(document)
    assert job.status == "failed"
    assert job.error_message.startswith("no progress")
    assert job.progress_percent < 90
    assert document.status == "error"
    assert "narrative" not in llm.calls
