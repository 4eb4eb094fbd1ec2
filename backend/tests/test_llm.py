# backend/tests/test_llm.py
import time

import pytest

from backend.app.config import PipelineConfig
from backend.app.errors import LLMError
from backend.app.processors import llm
from backend.app.processors.llm import LlamaCppClient, parse_json_loose

MESSAGES = [{"role": "user", "content": "extract"}]
SCHEMA = {"type": "object"}


class FakeLlama:
    def __init__(self, content='{"facts": []}', error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    def create_chat_completion(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        return {"choices": [{"message": {"content": self.content}}]}


@pytest.fixture()
def stop_at(monkeypatch):
    monkeypatch.setattr(llm, "_stop_at", lambda deadline: ("stop-at", deadline))


def _client(fake, timeout=5.0):
    client = LlamaCppClient(PipelineConfig(llm_timeout_s=timeout))
    client._llm = fake
    return client


def test_generation_is_bounded_by_a_deadline(stop_at):
    fake = FakeLlama()
    before = time.monotonic()
    assert _client(fake).invoke(MESSAGES, SCHEMA) == {"facts": []}

    tag, deadline = fake.kwargs["stopping_criteria"]
    assert tag == "stop-at"
    assert before < deadline <= time.monotonic() + 5.0
    assert fake.kwargs["response_format"] == {"type": "json_object", "schema": SCHEMA}


def test_busy_model_gives_up_instead_of_waiting_forever(stop_at):
    client = _client(FakeLlama(), timeout=0.05)
    client._lock.acquire()
    try:
        with pytest.raises(LLMError, match="busy"):
            client.invoke(MESSAGES, SCHEMA)
    finally:
        client._lock.release()


def test_lock_released_when_the_model_raises(stop_at):
    client = _client(FakeLlama(error=RuntimeError("ggml abort")))
    with pytest.raises(LLMError):
        client.invoke(MESSAGES, SCHEMA)
    assert not client._lock.locked()


def test_parse_json_loose():
    assert parse_json_loose('Sure! {"facts": [1]} hope this helps') == {"facts": [1]}
    with pytest.raises(LLMError):
        parse_json_loose("no json here")
    with pytest.raises(LLMError):
        parse_json_loose("[1, 2]")
