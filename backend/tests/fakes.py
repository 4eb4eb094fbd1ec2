# backend/tests/fakes.py
"""Stand-ins for the LLM client and the Open-Meteo archive used across the tests."""

from __future__ import annotations

import threading
import time
from typing import Any

import httpx

from backend.app.config import PipelineConfig, PipelineDeps
from backend.app.errors import LLMError


def route_for(schema: dict[str, Any]) -> str:
    props = schema.get("properties", {})
    if "facts" in props:
        enum = props["facts"]["items"]["properties"]["category"].get("enum") or []
        return {
            ("Dependencies",): "relationship",
            ("Risks",): "risk",
            ("Assumptions",): "assumption",
        }.get(tuple(enum), "structured")
    if "narrative" in props:
        return "narrative"
    if "references" in props:
        return "weather_refs"
    if "dc_capacity_mw" in props:
        return "performance"
    if "total_capex_usd" in props:
        return "financial"
    return "unknown"


class ScriptedLLM:
    """
    responses: route -> dict (returned), Exception (raised) or callable(messages) -> dict.
    Routes without a response raise LLMError.
    """

    def __init__(self, responses: dict[str, Any] | None = None, delays: dict[str, float] | None = None):
        self.responses = dict(responses or {})
        self.delays = dict(delays or {})
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def invoke(self, messages, json_schema):
        route = route_for(json_schema)
        with self._lock:
            self.calls.append(route)
        if route in self.delays:
            time.sleep(self.delays[route])
        resp = self.responses.get(route)
        if resp is None:
            raise LLMError(f"no scripted response for {route}")
        if isinstance(resp, Exception):
            raise resp
        if callable(resp):
            return resp(messages)
        return resp


def make_deps(llm, http=None, **config) -> PipelineDeps:
    config.setdefault("extraction_deadline_s", 10.0)
    return PipelineDeps(llm=llm, config=PipelineConfig(**config), http=http)


def open_meteo_transport(monthly_ghi_w_m2: float = 150000.0, status_code: int = 200) -> httpx.MockTransport:
    """One noon sample per month of 2023; a sample of N W/m2 adds N/1000 kWh/m2."""
    times = [f"2023-{m:02d}-15T12:00" for m in range(1, 13)]
    payload = {
        "hourly": {
            "time": times,
            "shortwave_radiation": [monthly_ghi_w_m2] * 12,
            "direct_normal_irradiance": [monthly_ghi_w_m2 * 1.2] * 12,
            "diffuse_radiation": [monthly_ghi_w_m2 / 3] * 12,
            "temperature_2m": [20.0] * 12,
        }
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, json={"error": True, "reason": "scripted"})
        return httpx.Response(200, json=payload)

    return httpx.MockTransport(handler)
