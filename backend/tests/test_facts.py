# backend/tests/test_facts.py
import pytest

from backend.app.errors import FactTransitionError
from backend.app.processors.extracted import DETERMINISTIC_REGEX, LLM_RISK, ExtractedFact
from backend.app.services.facts import insert_facts, list_facts, update_fact


def _fact(category, key, value, confidence, method=LLM_RISK):
    return ExtractedFact(category=category, key=key, value=value, confidence=confidence, extraction_method=method)


def test_insert_normalizes_section_and_clamps(db, project):
    n = insert_facts(
        db,
        project.id,
        None,
        [
            _fact("Risks", "grid", "Grid queue position uncertain", 1.7),
            _fact("Technical_Specifications", "dc_capacity", "120 MWp", -0.2, DETERMINISTIC_REGEX),
            _fact("Something Else", "misc", "x", 0.5),
        ],
    )
    assert n == 3

    facts = list_facts(db, project.id)
    by_key = {f.key: f for f in facts}
    assert by_key["grid"].category == "Risks_And_Issues"
    assert by_key["grid"].raw_category == "Risks"
    assert by_key["grid"].confidence == 1.0
    assert by_key["dc_capacity"].category == "Technical_Design"
    assert by_key["dc_capacity"].confidence == 0.0
    assert by_key["misc"].category == "Other"
    assert all(f.verification_status == "pending" for f in facts)


def test_insert_nothing(db, project):
    assert insert_facts(db, project.id, None, []) == 0


def test_list_filters_and_orders_by_confidence(db, project):
    insert_facts(
        db,
        project.id,
        None,
        [
            _fact("Risks", "low", "a", 0.3),
            _fact("Risks", "high", "b", 0.9),
            _fact("Assumptions", "deg", "0.5%/yr", 0.6),
        ],
    )
    risks = list_facts(db, project.id, category="risks & issues")
    assert [f.key for f in risks] == ["high", "low"]

    approved = list_facts(db, project.id, status="approved")
    assert approved == []


def test_approve_with_corrected_value(db, project):
    insert_facts(db, project.id, None, [_fact("Technical", "dc", "120 MW", 0.8)])
    fact = list_facts(db, project.id)[0]

    updated = update_fact(db, fact.id, "approved", "  125 MWp ")
    assert updated.verification_status == "approved"
    assert updated.value == "125 MWp"
    assert updated.verified_at is not None


def test_transitions_are_one_way(db, project):
    insert_facts(db, project.id, None, [_fact("Risks", "a", "x", 0.5), _fact("Risks", "b", "y", 0.5)])
    a, b = sorted(list_facts(db, project.id), key=lambda f: f.key)

    update_fact(db, a.id, "rejected")
    with pytest.raises(FactTransitionError):
        update_fact(db, a.id, "approved")

    with pytest.raises(FactTransitionError):
        update_fact(db, b.id, "rejected", "new value")
    with pytest.raises(FactTransitionError):
        update_fact(db, b.id, "approved", "   ")
    with pytest.raises(FactTransitionError):
        update_fact(db, b.id, "pending")

    db.refresh(b)
    assert b.verification_status == "pending"
    assert b.value == "y"


def test_update_missing_fact(db):
    assert update_fact(db, 999999, "approved") is None
