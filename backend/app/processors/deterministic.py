from __future__ import annotations

import re

from backend.app.processors.extracted import DETERMINISTIC_REGEX, ExtractedFact

MAX_DATES = 10

_CAPACITY = re.compile(r"(\d+(?:\.\d+)?)\s*(MWac|MWdc|MWp|MW|kWp|kW)\b", re.IGNORECASE)
_DATE = re.compile(
    r"\b(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}"
    r"|\d{4}[/\-]\d{1,2}[/\-]\d{1,2}"
    r"|(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4})\b",
    re.IGNORECASE,
)
_MONEY = re.compile(r"([€$£])\s*(\d+(?:,\d{3})*(?:\.\d+)?)\s*(million|billion|M|B)?\b", re.IGNORECASE)
_VOLTAGE = re.compile(r"(\d+(?:\.\d+)?)\s*(kV|kilovolts?)\b", re.IGNORECASE)

TECH_KEYWORDS = ("solar", "wind", "battery", "BESS", "photovoltaic", "PV", "onshore", "offshore")


def extract(text: str) -> list[ExtractedFact]:
    """
    Pattern-based facts. Pure: no network, same text gives the same facts in
    the same order (capacity, dates, money, voltage, technology).
    """
    if not text:
        return []

    facts: list[ExtractedFact] = []

    for m in _CAPACITY.finditer(text):
        facts.append(
            ExtractedFact(
                category="Technical_Design",
                key="capacity",
                value=f"{m.group(1)} {m.group(2)}",
                confidence=0.95,
                extraction_method=DETERMINISTIC_REGEX,
                data_type="quantity",
                source_location=f"offset:{m.start()}",
            )
        )

    for m in list(_DATE.finditer(text))[:MAX_DATES]:
        facts.append(
            ExtractedFact(
                category="Project_Timeline",
                key="date",
                value=m.group(1),
                confidence=0.85,
                extraction_method=DETERMINISTIC_REGEX,
                data_type="date",
                source_location=f"offset:{m.start()}",
            )
        )

    for m in _MONEY.finditer(text):
        facts.append(
            ExtractedFact(
                category="Financial_Structure",
                key="financial_amount",
                value=f"{m.group(1)}{m.group(2)}{(' ' + m.group(3)) if m.group(3) else ''}",
                confidence=0.9,
                extraction_method=DETERMINISTIC_REGEX,
                data_type="currency",
                source_location=f"offset:{m.start()}",
            )
        )

    for m in _VOLTAGE.finditer(text):
        facts.append(
            ExtractedFact(
                category="Grid_Infrastructure",
                key="grid_voltage",
                value=f"{m.group(1)} kV",
                confidence=0.9,
                extraction_method=DETERMINISTIC_REGEX,
                data_type="quantity",
                source_location=f"offset:{m.start()}",
            )
        )

    for kw in TECH_KEYWORDS:
        m = re.search(rf"\b{re.escape(kw)}\b", text, flags=re.IGNORECASE)
        if m:
            facts.append(
                ExtractedFact(
                    category="Technical_Design",
                    key="technology",
                    value=kw,
                    confidence=0.8,
                    extraction_method=DETERMINISTIC_REGEX,
                    source_location=f"offset:{m.start()}",
                )
            )

    return facts
