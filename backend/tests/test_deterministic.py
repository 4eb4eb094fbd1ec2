# backend/tests/test_deterministic.py
from backend.app.processors import deterministic
from backend.app.processors.extracted import DETERMINISTIC_REGEX

TEXT = (
    "Project Alpha is a 120 MWp solar photovoltaic plant with a 100 MWac inverter rating. "
    "Financial close was reached on 15/03/2024 and COD is expected March 1, 2026. "
    "Total CAPEX is $95.5 million. The plant connects to the 132 kV substation."
)


def test_extracts_each_pattern_family_in_order():
    facts = deterministic.extract(TEXT)
    keys = [f.key for f in facts]

    assert keys[:2] == ["capacity", "capacity"]
    assert [f.value for f in facts[:2]] == ["120 MWp", "100 MWac"]
    assert keys.index("date") < keys.index("financial_amount") < keys.index("grid_voltage") < keys.index("technology")

    dates = [f.value for f in facts if f.key == "date"]
    assert "15/03/2024" in dates
    assert "March 1, 2026" in dates

    money = [f.value for f in facts if f.key == "financial_amount"]
    assert money == ["$95.5 million"]

    assert [f.value for f in facts if f.key == "grid_voltage"] == ["132 kV"]
    assert {f.value for f in facts if f.key == "technology"} == {"solar", "photovoltaic"}


def test_confidence_floor_method_and_offsets():
    facts = deterministic.extract(TEXT)
    assert facts
    for f in facts:
        assert f.confidence >= 0.8
        assert f.extraction_method == DETERMINISTIC_REGEX
        assert f.source_location.startswith("offset:")
        offset = int(f.source_location.split(":")[1])
        assert 0 <= offset < len(TEXT)


def test_deterministic_and_date_cap():
    text = " ".join(f"{d:02d}/01/2025" for d in range(1, 20))
    first = deterministic.extract(text)
    second = deterministic.extract(text)
    assert first == second
    assert len([f for f in first if f.key == "date"]) == deterministic.MAX_DATES


def test_empty_text():
    assert deterministic.extract("") == []
