from __future__ import annotations

import time
import traceback
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError as SchemaError, field_validator

from backend.app.config import PipelineDeps
from backend.app.errors import ExtractionPassError
from backend.app.processors.extracted import (
    LLM_ASSUMPTION,
    LLM_RELATIONSHIP,
    LLM_RISK,
    LLM_STRUCTURED,
    ExtractedFact,
    clamp_confidence,
)

STRUCTURED_CATEGORIES: tuple[str, ...] = (
    "Project_Identity",
    "Technical_Specifications",
    "Grid_Connection",
    "Site_Characteristics",
    "Timeline",
    "Energy_Performance",
    "Regulatory",
    "Financial",
)

# on_pass_complete(pass_name, n_facts, passes_done, passes_total)
PassCallback = Callable[[str, int, int, int], None]


class RawFact(BaseModel):
    """One entry of a pass response, decoded at the LLM boundary."""

    category: str = Field(min_length=1)
    key: str = Field(min_length=1)
    value: str = Field(min_length=1)
    confidence: float = 0.5

    @field_validator("category", "key", "value", mode="before")
    @classmethod
    def _scalar_to_str(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, (int, float)):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return clamp_confidence(v if v is not None else 0.5)


def fact_list_schema(categories: Optional[Sequence[str]] = None) -> dict[str, Any]:
    category: dict[str, Any] = {"type": "string"}
    if categories:
        category["enum"] = list(categories)
    return {
        "type": "object",
        "properties": {
            "facts": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "category": category,
                        "key": {"type": "string"},
                        "value": {"type": "string"},
                        "confidence": {"type": "number"},
                    },
                    "required": ["category", "key", "value", "confidence"],
                    "additionalProperties": False,
                },
            }
        },
        "required": ["facts"],
        "additionalProperties": False,
    }


@dataclass(frozen=True)
class ExtractionPass:
    name: str
    method: str
    system: str
    instructions: str
    # None: category must come from STRUCTURED_CATEGORIES
    fixed_category: Optional[str] = None

    def schema(self) -> dict[str, Any]:
        if self.fixed_category is None:
            return fact_list_schema(STRUCTURED_CATEGORIES)
        return fact_list_schema([self.fixed_category])

    def messages(self, excerpt: str, doc_type: str) -> list[dict[str, str]]:
        user = (
            f"Document type: {doc_type}\n\n"
            f"{self.instructions}\n\n"
            f"Document excerpt:\n\"\"\"{excerpt}\"\"\"\n\n"
            'Return ONLY JSON of the form {"facts": [{"category": "...", "key": "...", '
            '"value": "...", "confidence": 0.0}]}'
        )
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": user},
        ]


STRUCTURED_PASS = ExtractionPass(
    name="structured",
    method=LLM_STRUCTURED,
    system=(
        "You extract structured facts from renewable energy project documents. "
        "Return facts as JSON with category, key, value and confidence (0-1)."
    ),
    instructions="""Extract the key facts of this project into these categories:
1. Project_Identity: project name, partners, ownership structure, document date, location
2. Technical_Specifications: capacity (DC/AC), technology, modules, tracking, inverters, transformers, area
3. Grid_Connection: voltage levels, connection method, grid operator, substation, distances
4. Site_Characteristics: location, area, topography, access roads, environmental features
5. Timeline: FID, COD, construction start, study deliverables, milestones
6. Energy_Performance: annual generation, capacity factor, losses, degradation
7. Regulatory: permits, approvals, required studies (ESIA, geotech, ...)
8. Financial: CAPEX, OPEX, ownership percentages, funding

Be specific and include units. Do NOT invent facts; omit anything you are unsure of.""",
)

RELATIONSHIP_PASS = ExtractionPass(
    name="relationship",
    method=LLM_RELATIONSHIP,
    system="You identify dependencies and relationships in project documents.",
    instructions="""Extract relationships, dependencies and constraints:
- dependencies between milestones ("X must match Y", "A depends on B")
- constraints ("limited to", "must not exceed", "requires")
- conditional statements ("if X then Y")
- requirements ("needs", "must have")

Use category "Dependencies", key = short description, value = the relationship.""",
    fixed_category="Dependencies",
)

RISK_PASS = ExtractionPass(
    name="risk",
    method=LLM_RISK,
    system="You identify risks in renewable energy projects.",
    instructions="""Identify risks, challenges and red flags:
- technical risks (site issues, grid limitations, equipment)
- schedule risks (delays, dependencies, critical path items)
- cost risks (budget concerns, escalation, contingencies)
- regulatory risks (permits, approvals, compliance)
- environmental/social risks (ESIA issues, community concerns)
- design changes or site relocations

Use category "Risks", key = risk type, value = description of the risk and its impact.""",
    fixed_category="Risks",
)

ASSUMPTION_PASS = ExtractionPass(
    name="assumption",
    method=LLM_ASSUMPTION,
    system="You identify design assumptions in engineering documents.",
    instructions="""Extract design assumptions, parameters and engineering choices:
- design parameters (ground coverage ratio, capacity factor, efficiency)
- technology choices (module type, tracking, inverters)
- engineering assumptions (losses, degradation, availability)
- performance estimates (generation, yield, PR)
- design standards or codes referenced

Use category "Assumptions", key = parameter name, value = the assumption.""",
    fixed_category="Assumptions",
)

PASSES: tuple[ExtractionPass, ...] = (STRUCTURED_PASS, RELATIONSHIP_PASS, RISK_PASS, ASSUMPTION_PASS)


@dataclass
class ExtractionResult:
    facts: list[ExtractedFact]
    total_facts: int
    extraction_time_ms: int
    pass_counts: dict[str, int] = field(default_factory=dict)
    failed_passes: list[str] = field(default_factory=list)


class MultiPassExtractor:
    """
    Runs the extraction passes concurrently over one excerpt of the document.

    Each pass is isolated: a failing, timed-out or malformed pass contributes
    no facts and the others carry on. Facts are concatenated in pass order;
    duplicates across passes are kept for human review.
    """

    def __init__(self, deps: PipelineDeps, passes: Sequence[ExtractionPass] = PASSES) -> None:
        self.deps = deps
        self.passes = tuple(passes)

    def extract_facts(
        self,
        text: str,
        doc_type: str,
        file_name: str,
        on_pass_complete: Optional[PassCallback] = None,
    ) -> ExtractionResult:
        t0 = time.time()
        excerpt = (text or "")[: self.deps.config.excerpt_chars]
        print(
            f"[multipass] START file={file_name!r} type={doc_type} chars={len(text or '')} excerpt={len(excerpt)}",
            flush=True,
        )

        results: dict[str, list[ExtractedFact]] = {p.name: [] for p in self.passes}
        failed: list[str] = []

        if not excerpt.strip():
            return ExtractionResult(facts=[], total_facts=0, extraction_time_ms=0,
                                    pass_counts={k: 0 for k in results})

        deadline = t0 + self.deps.config.extraction_deadline_s
        executor = ThreadPoolExecutor(max_workers=len(self.passes), thread_name_prefix="extract-pass")
        pending: dict[Future, ExtractionPass] = {
            executor.submit(self.run_pass, p, excerpt, doc_type): p for p in self.passes
        }
        done_count = 0
        try:
            while pending:
                remaining = deadline - time.time()
                if remaining <= 0:
                    break
                done, _ = wait(list(pending), timeout=remaining, return_when=FIRST_COMPLETED)
                # callbacks run here, in the caller's thread
                for fut in done:
                    p = pending.pop(fut)
                    try:
                        results[p.name] = fut.result()
                    except Exception as e:
                        print(f"[multipass] pass={p.name} failed: {e!r}", flush=True)
                        if not isinstance(e, ExtractionPassError):
                            traceback.print_exc()
                        failed.append(p.name)
                    done_count += 1
                    print(f"[multipass] pass={p.name} facts={len(results[p.name])}", flush=True)
                    if on_pass_complete is not None:
                        on_pass_complete(p.name, len(results[p.name]), done_count, len(self.passes))
        finally:
            for fut, p in pending.items():
                fut.cancel()
                print(f"[multipass] pass={p.name} timed out; contributing 0 facts", flush=True)
                failed.append(p.name)
            executor.shutdown(wait=False, cancel_futures=True)

        facts: list[ExtractedFact] = []
        for p in self.passes:
            facts.extend(results[p.name])

        elapsed_ms = int((time.time() - t0) * 1000)
        print(f"[multipass] DONE total={len(facts)} failed={failed} in {elapsed_ms}ms", flush=True)
        return ExtractionResult(
            facts=facts,
            total_facts=len(facts),
            extraction_time_ms=elapsed_ms,
            pass_counts={k: len(v) for k, v in results.items()},
            failed_passes=failed,
        )

    def run_pass(self, p: ExtractionPass, excerpt: str, doc_type: str) -> list[ExtractedFact]:
        try:
            data = self.deps.llm.invoke(p.messages(excerpt, doc_type), p.schema())
        except Exception as e:
            raise ExtractionPassError(f"{p.name}: model call failed: {e}") from e

        raw_items = data.get("facts") if isinstance(data, dict) else None
        if not isinstance(raw_items, list):
            raise ExtractionPassError(f"{p.name}: response has no 'facts' list")

        facts: list[ExtractedFact] = []
        dropped = 0
        for item in raw_items:
            ef = _decode_fact(item, p)
            if ef is None:
                dropped += 1
                continue
            facts.append(ef)

        if dropped:
            print(f"[multipass] pass={p.name} dropped {dropped} malformed entries", flush=True)
        return facts


_STRUCTURED_BY_LOWER = {c.lower(): c for c in STRUCTURED_CATEGORIES}


def _decode_fact(item: Any, p: ExtractionPass) -> Optional[ExtractedFact]:
    try:
        raw = RawFact.model_validate(item)
    except SchemaError:
        return None

    if p.fixed_category is not None:
        category = p.fixed_category
    else:
        category = _STRUCTURED_BY_LOWER.get(raw.category.replace(" ", "_").lower())
        if category is None:
            return None

    return ExtractedFact(
        category=category,
        key=raw.key,
        value=raw.value,
        confidence=raw.confidence,
        extraction_method=p.method,
    )
