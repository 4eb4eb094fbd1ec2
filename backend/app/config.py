# backend/app/config.py
"""
Runtime configuration for the extraction pipeline.

Values come from the environment (the worker loads .env first, CLI flags win).
Everything the pipeline needs at call time travels in a PipelineDeps bundle so
extractors never reach for module-level clients.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

import httpx

if TYPE_CHECKING:
    from backend.app.processors.llm import LLMClient


@dataclass(frozen=True)
class PipelineConfig:
    # LLM backend: "llamacpp" (local gguf) or "ollama" (HTTP)
    llm_backend: str = "llamacpp"
    llm_timeout_s: float = 180.0
    llm_temperature: float = 0.1
    llm_max_tokens: int = 2000

    llama_gguf_path: Optional[str] = None
    llama_n_ctx: int = 8192
    llama_threads: int = 8
    llama_gpu_layers: int = 0

    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b"

    # chars of document text sent to each extraction pass
    excerpt_chars: int = 8000
    # chars sent to the parameter / weather-reference extractors
    parameter_excerpt_chars: int = 15000
    # wall-clock budget for all four passes together
    extraction_deadline_s: float = 600.0

    weather_year: int = 2023
    weather_timeout_s: float = 60.0

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(
            llm_backend=os.getenv("LLM_BACKEND", "llamacpp").strip().lower(),
            llm_timeout_s=float(os.getenv("LLM_TIMEOUT_SECONDS", "180")),
            llm_temperature=float(os.getenv("LLAMA_TEMPERATURE", "0.1")),
            llm_max_tokens=int(os.getenv("LLAMA_MAX_TOKENS", "2000")),
            llama_gguf_path=os.getenv("LLAMA_GGUF_PATH"),
            llama_n_ctx=int(os.getenv("LLAMA_N_CTX", "8192")),
            llama_threads=int(os.getenv("LLAMA_THREADS", "8")),
            llama_gpu_layers=int(os.getenv("LLAMA_GPU_LAYERS", "0")),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
            ollama_model=os.getenv("OLLAMA_MODEL", "llama3.1:8b"),
            excerpt_chars=int(os.getenv("EXTRACTION_EXCERPT_CHARS", "8000")),
            parameter_excerpt_chars=int(os.getenv("PARAMETER_EXCERPT_CHARS", "15000")),
            extraction_deadline_s=float(os.getenv("EXTRACTION_DEADLINE_SECONDS", "600")),
            weather_year=int(os.getenv("WEATHER_YEAR", "2023")),
            weather_timeout_s=float(os.getenv("WEATHER_TIMEOUT_SECONDS", "60")),
        )


@dataclass
class PipelineDeps:
    """Per-run collaborators handed to every extractor and service."""

    llm: "LLMClient"
    config: PipelineConfig = field(default_factory=PipelineConfig)
    http: Optional[httpx.Client] = None

    def weather_client(self) -> httpx.Client:
        if self.http is None:
            self.http = build_http_client(self.config.weather_timeout_s)
        return self.http

    def close(self) -> None:
        if self.http is not None:
            self.http.close()
            self.http = None
        close = getattr(self.llm, "close", None)
        if close is not None:
            close()


def build_http_client(timeout_s: float) -> httpx.Client:
    return httpx.Client(
        timeout=httpx.Timeout(timeout_s),
        headers={"User-Agent": "solar-dd-pipeline/0.1"},
        follow_redirects=True,
    )


def build_deps(config: Optional[PipelineConfig] = None) -> PipelineDeps:
    from backend.app.processors.llm import build_llm_client

    cfg = config or PipelineConfig.from_env()
    return PipelineDeps(llm=build_llm_client(cfg), config=cfg)
