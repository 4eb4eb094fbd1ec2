from __future__ import annotations

import traceback
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as SchemaError, field_validator
from sqlalchemy.orm import Session

from backend.app import models
from backend.app.config import PipelineDeps
from backend.app.processors.extracted import clamp_confidence

REF_TYPES = ("url", "embedded", "reference")
KNOWN_FORMATS = ("pvgis", "tmy3", "epw", "pvsyst", "solaranywhere", "meteonorm", "nsrdb")

WEATHER_REF_SCHEMA = {
    "type": "object",
    "properties": {
        "references": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": list(REF_TYPES)},
                    "url": {"type": "string"},
                    "description": {"type": "string"},
                    "format": {"type": "string"},
                    "location": {"type": "string"},
                    "confidence": {"type": "number"},
                    "source_location": {"type": "string"},
                },
                "required": ["type", "description", "confidence"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["references"],
    "additionalProperties": False,
}


class WeatherReference(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = "reference"
    url: Optional[str] = None
    description: str = Field(min_length=1)
    format: Optional[str] = None
    location: Optional[str] = None
    confidence: float = 0.5
    source_location: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        v = str(v or "").strip().lower()
        return v if v in REF_TYPES else "reference"

    @field_validator("url", "format", "location", "source_location", mode="before")
    @classmethod
    def _opt_str(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("format")
    @classmethod
    def _format(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.lower()
        return v if v in KNOWN_FORMATS else "unknown"

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return clamp_confidence(v if v is not None else 0.5)


def _build_prompt(text: str, file_name: str) -> str:
    return f"""You are analyzing a solar project document to find weather data references.

DOCUMENT: {file_name}

Find every weather data reference:
1. Direct URLs to weather files (.csv, .epw, .tm2, .tm3, .wth)
2. Named sources (PVGIS, NSRDB, SolarAnywhere, Meteonorm, PVsyst)
3. Mentions of TMY (Typical Meteorological Year) data
4. Weather file names or identifiers
5. Embedded weather data tables

For each reference give: type ("url" | "embedded" | "reference"), url (if any),
description, format (pvgis, tmy3, epw, pvsyst, solaranywhere, meteonorm, nsrdb or unknown),
location, confidence (0-1) and source_location (page or section).

Return JSON: {{"references": [...]}}. Return {{"references": []}} if there are none.

DOCUMENT TEXT:
\"\"\"{text}\"\"\"
"""


def extract_weather_references(deps: PipelineDeps, text: str, file_name: str) -> list[WeatherReference]:
    """Weather references in a document; an empty list when the model call fails."""
    excerpt = (text or "")[: deps.config.parameter_excerpt_chars]
    if not excerpt.strip():
        return []

    messages = [
        {
            "role": "system",
            "content": "You are a technical document analyzer for solar energy projects. Return valid JSON only.",
        },
        {"role": "user", "content": _build_prompt(excerpt, file_name)},
    ]
    try:
        data = deps.llm.invoke(messages, WEATHER_REF_SCHEMA)
    except Exception as e:
        print(f"[weather_refs] extraction failed: {e!r}", flush=True)
        traceback.print_exc()
        return []

    items = data.get("references")
    if not isinstance(items, list):
        return []

    refs: list[WeatherReference] = []
    for item in items:
        try:
            refs.append(WeatherReference.model_validate(item))
        except SchemaError:
            continue
    print(f"[weather_refs] found={len(refs)} (returned={len(items)})", flush=True)
    return refs


def store_weather_references(db: Session, document: models.Document, refs: list[WeatherReference]) -> int:
    """Replace this document's weather references."""
    db.query(models.WeatherFile).filter(
        models.WeatherFile.source_document_id == document.id
    ).delete(synchronize_session=False)

    for r in refs:
        db.add(
            models.WeatherFile(
                project_id=document.project_id,
                source_document_id=document.id,
                ref_type=r.type,
                url=(r.url or None) and r.url[:700],
                description=r.description,
                data_format=r.format,
                location=(r.location or None) and r.location[:200],
                source_location=(r.source_location or None) and r.source_location[:200],
                confidence=r.confidence,
                status="referenced",
            )
        )
    db.commit()
    return len(refs)
