from __future__ import annotations

import json
import re
import threading
import time
import traceback
from typing import Any, Protocol

import httpx

from backend.app.config import PipelineConfig
from backend.app.errors import LLMError


class LLMClient(Protocol):
    """invoke(messages, json_schema) -> decoded JSON object, or raises LLMError."""

    def invoke(self, messages: list[dict[str, str]], json_schema: dict[str, Any]) -> dict[str, Any]:
        ...


# --- llama-cpp backend ---

def _stop_at(deadline: float):
    """llama.cpp stopping criterion that ends generation at a monotonic-clock deadline."""
    from llama_cpp import StoppingCriteriaList

    return StoppingCriteriaList([lambda _input_ids, _logits: time.monotonic() >= deadline])


class LlamaCppClient:
    """Local gguf model via llama-cpp-python.

    The model is loaded on first use. One Llama instance is not re-entrant, so
    concurrent passes take turns on a lock.
    """

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config
        self._llm = None
        self._lock = threading.Lock()

    def _get_llm(self):
        if self._llm is not None:
            return self._llm

        gguf_path = self.config.llama_gguf_path
        if not gguf_path:
            raise LLMError("LLAMA_GGUF_PATH is not set (path to .gguf model file).")

        try:
            from llama_cpp import Llama
        except Exception as e:
            raise LLMError("llama-cpp-python is not installed. Run: pip install llama-cpp-python") from e

        self._llm = Llama(
            model_path=gguf_path,
            n_ctx=self.config.llama_n_ctx,
            n_threads=self.config.llama_threads,
            n_gpu_layers=self.config.llama_gpu_layers,
            verbose=False,
        )
        return self._llm

    def invoke(self, messages: list[dict[str, str]], json_schema: dict[str, Any]) -> dict[str, Any]:
        # a pass abandoned at the extraction deadline keeps running in its
        # thread, so both the wait for the lock and the generation are bounded
        timeout = self.config.llm_timeout_s
        deadline = time.monotonic() + timeout
        if not self._lock.acquire(timeout=timeout):
            raise LLMError(f"llama.cpp busy for {timeout:.0f}s; giving up")
        try:
            llm = self._get_llm()
            t0 = time.time()
            try:
                out = llm.create_chat_completion(
                    messages=messages,
                    response_format={"type": "json_object", "schema": json_schema},
                    temperature=self.config.llm_temperature,
                    max_tokens=self.config.llm_max_tokens,
                    stopping_criteria=_stop_at(deadline),
                )
            except Exception as e:
                print("[llm] llama.cpp call raised:", repr(e), flush=True)
                traceback.print_exc()
                raise LLMError(f"llama.cpp call failed: {e!r}") from e
        finally:
            self._lock.release()

        if time.monotonic() >= deadline:
            raise LLMError(f"llama.cpp generation cut off after {timeout:.0f}s")

        print(f"[llm] llama.cpp returned in {time.time() - t0:.2f}s", flush=True)
        try:
            content = out["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("llama.cpp response has no message content") from e
        return parse_json_loose(content)


# --- Ollama backend ---

class OllamaClient:
    def __init__(self, config: PipelineConfig, http: httpx.Client | None = None) -> None:
        self.config = config
        self.base_url = config.ollama_base_url.rstrip("/")
        self.model = config.ollama_model
        # generation takes much longer than ordinary HTTP requests
        self._http = http or httpx.Client(timeout=httpx.Timeout(config.llm_timeout_s))

    def close(self) -> None:
        self._http.close()

    def invoke(self, messages: list[dict[str, str]], json_schema: dict[str, Any]) -> dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            # Ollama constrains decoding to the schema when given one here
            "format": json_schema,
            "options": {
                "temperature": self.config.llm_temperature,
                "num_predict": self.config.llm_max_tokens,
            },
        }
        t0 = time.time()
        try:
            r = self._http.post(f"{self.base_url}/api/chat", json=payload)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LLMError(f"ollama call failed: {e!r}") from e

        print(f"[llm] ollama returned in {time.time() - t0:.2f}s model={data.get('model')}", flush=True)
        content = (data.get("message") or {}).get("content") or ""
        return parse_json_loose(str(content))


def build_llm_client(config: PipelineConfig) -> LLMClient:
    backend = (config.llm_backend or "").strip().lower()
    if backend == "llamacpp":
        return LlamaCppClient(config)
    if backend == "ollama":
        return OllamaClient(config)
    raise ValueError(f"unknown LLM backend: {config.llm_backend!r}")


# --- JSON parsing ---

def parse_json_loose(s: str) -> dict[str, Any]:
    """Decode the first JSON object in model output (tolerates chatter around it)."""
    s = (s or "").strip()
    if not s:
        raise LLMError("empty model output")
    try:
        obj = json.loads(s)
    except json.JSONDecodeError:
        m = re.search(r"\{.*\}", s, flags=re.DOTALL)
        if not m:
            raise LLMError("No JSON object found in model output")
        try:
            obj = json.loads(m.group(0))
        except json.JSONDecodeError as e:
            raise LLMError(f"invalid JSON in model output: {e}") from e
    if not isinstance(obj, dict):
        raise LLMError("Expected a JSON object")
    return obj
