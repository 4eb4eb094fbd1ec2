# backend/tests/test_multipass.py
from fakes import ScriptedLLM, make_deps

from backend.app.errors import LLMError
from backend.app.processors.extracted import LLM_ASSUMPTION, LLM_RELATIONSHIP, LLM_RISK, LLM_STRUCTURED
from backend.app.processors.multipass import PASSES, MultiPassExtractor

TEXT = "The 120 MWp solar PV plant connects at 132 kV. COD is planned for 2027."


def _facts(*items):
    return {"facts": [dict(zip(("category", "key", "value", "confidence"), it)) for it in items]}


def test_all_passes_concatenated_in_pass_order():
    llm = ScriptedLLM(
        {
            # assumption returns first but must still come last
            "structured": _facts(("Technical_Specifications", "dc_capacity", "120 MWp", 0.9)),
            "relationship": _facts(("Dependencies", "cod_grid", "COD depends on grid works", 0.7)),
            "risk": _facts(("Risks", "grid", "Grid connection may be delayed", 0.75)),
            "assumption": _facts(("Assumptions", "degradation", "0.5%/yr", 0.6)),
        },
        delays={"structured": 0.2, "relationship": 0.1},
    )
    result = MultiPassExtractor(make_deps(llm)).extract_facts(TEXT, "IM", "im.pdf")

    assert result.total_facts == 4
    assert [f.extraction_method for f in result.facts] == [LLM_STRUCTURED, LLM_RELATIONSHIP, LLM_RISK, LLM_ASSUMPTION]
    assert [f.category for f in result.facts] == ["Technical_Specifications", "Dependencies", "Risks", "Assumptions"]
    assert result.failed_passes == []


def test_three_failing_passes_leave_survivor_facts():
    llm = ScriptedLLM(
        {
            "structured": LLMError("boom"),
            "relationship": RuntimeError("connection reset"),
            "risk": _facts(
                ("Risks", "permit", "Environmental permit is outstanding", 0.8),
                ("Risks", "geotech", "Soil survey not done", 0.6),
            ),
            # "assumption" has no response -> raises
        }
    )
    result = MultiPassExtractor(make_deps(llm)).extract_facts(TEXT, "DD_PACK", "dd.pdf")

    assert result.total_facts == 2
    assert [f.key for f in result.facts] == ["permit", "geotech"]
    assert all(f.extraction_method == LLM_RISK for f in result.facts)
    assert sorted(result.failed_passes) == ["assumption", "relationship", "structured"]


def test_malformed_entries_dropped_and_values_coerced():
    llm = ScriptedLLM(
        {
            "structured": {
                "facts": [
                    {"category": "Financial", "key": "capex", "value": 95000000, "confidence": 1.7},
                    {"category": "Made_Up", "key": "x", "value": "y", "confidence": 0.5},
                    {"category": "Timeline", "key": "", "value": "2027", "confidence": 0.5},
                    "not an object",
                    {"category": "grid connection", "key": "voltage", "value": "132 kV", "confidence": "0.8"},
                ]
            },
            "relationship": {"nope": []},
            "risk": _facts(),
            "assumption": _facts(),
        }
    )
    result = MultiPassExtractor(make_deps(llm)).extract_facts(TEXT, "IM", "im.pdf")

    assert [(f.key, f.value, f.confidence) for f in result.facts] == [
        ("capex", "95000000", 1.0),
        ("voltage", "132 kV", 0.8),
    ]
    assert result.facts[1].category == "Grid_Connection"
    assert "relationship" in result.failed_passes


def test_fixed_category_passes_force_category():
    llm = ScriptedLLM(
        {
            "structured": _facts(),
            "relationship": _facts(),
            "risk": _facts(("Something else", "schedule", "Delay likely", 0.9)),
            "assumption": _facts(),
        }
    )
    result = MultiPassExtractor(make_deps(llm)).extract_facts(TEXT, "IM", "im.pdf")
    assert [f.category for f in result.facts] == ["Risks"]


def test_progress_callback_runs_once_per_pass_in_caller_thread():
    import threading

    seen = []
    caller = threading.get_ident()

    def on_done(name, n, done, total):
        seen.append((name, n, done, total, threading.get_ident() == caller))

    llm = ScriptedLLM({"structured": _facts(("Timeline", "cod", "2027", 0.9))})
    MultiPassExtractor(make_deps(llm)).extract_facts(TEXT, "IM", "im.pdf", on_pass_complete=on_done)

    assert len(seen) == len(PASSES)
    assert [s[2] for s in seen] == [1, 2, 3, 4]
    assert all(s[3] == 4 and s[4] for s in seen)


def test_deadline_abandons_slow_pass():
    llm = ScriptedLLM(
        {
            "structured": _facts(("Timeline", "cod", "2027", 0.9)),
            "relationship": _facts(),
            "risk": _facts(),
            "assumption": _facts(("Assumptions", "pr", "80%", 0.5)),
        },
        delays={"assumption": 2.0},
    )
    result = MultiPassExtractor(make_deps(llm, extraction_deadline_s=0.5)).extract_facts(TEXT, "IM", "im.pdf")

    assert [f.key for f in result.facts] == ["cod"]
    assert result.failed_passes == ["assumption"]


def test_excerpt_limited_and_empty_text_skips_model():
    captured = []

    def structured(messages):
        captured.append(messages[-1]["content"])
        return _facts()

    llm = ScriptedLLM({"structured": structured, "relationship": _facts(), "risk": _facts(), "assumption": _facts()})
    MultiPassExtractor(make_deps(llm, excerpt_chars=50)).extract_facts("A" * 500, "IM", "im.pdf")
    assert "A" * 50 in captured[0]
    assert "A" * 51 not in captured[0]

    empty = ScriptedLLM()
    result = MultiPassExtractor(make_deps(empty)).extract_facts("   ", "IM", "im.pdf")
    assert result.total_facts == 0
    assert empty.calls == []
