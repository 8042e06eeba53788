from __future__ import annotations

import asyncio
import json

import pytest

from quickcal.agent import llm_provider
from quickcal.agent.llm_provider import (
    InterpretationError,
    ModelNotFoundError,
    _provider_for_model,
    _validate_structured_response,
    generate_json,
    validate_images,
)
from quickcal.agent.schemas import InterpretedDraftSchema, RetryPolicy
from quickcal.config import MAX_IMAGE_SIZE_BYTES
from quickcal.models import ImageInput

FAST_POLICY = RetryPolicy(max_attempts=2, timeout_seconds=0.05, backoff_seconds=0)
DRAFT_JSON = json.dumps({"title": "Dinner", "start": "2030-03-01T19:00:00"})


def _image(mime_type="image/png", size=10):
    return ImageInput(name="shot", mime_type=mime_type, data_base64="aGk=", size_bytes=size)


@pytest.mark.parametrize("raw", [
    DRAFT_JSON,
    f"```json\n{DRAFT_JSON}\n```",
    f"Sure! Here is the event:\n{DRAFT_JSON}\nLet me know.",
])
def test_structured_response_is_recovered(raw):
    parsed = _validate_structured_response(InterpretedDraftSchema, raw)

    assert parsed is not None
    assert parsed.title == "Dinner"


@pytest.mark.parametrize("raw", ["", "not json at all", "[1, 2, 3]", "{broken"])
def test_structured_response_rejects_garbage(raw):
    assert _validate_structured_response(InterpretedDraftSchema, raw) is None


def test_provider_follows_model_name(monkeypatch):
    monkeypatch.delenv("QUICKCAL_LLM_PROVIDER", raising=False)

    assert _provider_for_model("gemini-2.0-flash") == "gemini"
    assert _provider_for_model("models/gemini-1.5-pro") == "gemini"
    assert _provider_for_model("gpt-4o-mini") == "openai"

    monkeypatch.setenv("QUICKCAL_LLM_PROVIDER", "openai")
    assert _provider_for_model("gemini-2.0-flash") == "openai"


def test_validate_images_limits():
    assert validate_images(None) == []
    at_limit = [_image(size=MAX_IMAGE_SIZE_BYTES) for _ in range(3)]
    assert validate_images(at_limit) == at_limit

    with pytest.raises(InterpretationError):
        validate_images([_image() for _ in range(4)])
    with pytest.raises(InterpretationError):
        validate_images([_image(mime_type="application/pdf")])
    with pytest.raises(InterpretationError):
        validate_images([_image(size=MAX_IMAGE_SIZE_BYTES + 1)])


class ScriptedBackend:
    """Stands in for the provider call; each step is a string, an exception, or "hang"."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.models = []

    async def __call__(self, model, prompt, images):
        self.models.append(model)
        step = self.steps.pop(0)
        if step == "hang":
            await asyncio.sleep(10)
        if isinstance(step, Exception):
            raise step
        return step


async def test_generate_json_parses_response(monkeypatch):
    backend = ScriptedBackend(DRAFT_JSON)
    monkeypatch.setattr(llm_provider, "_generate_raw", backend)

    parsed = await generate_json(model="gpt-4o-mini", prompt="p", retry_policy=FAST_POLICY)

    assert parsed.title == "Dinner"
    assert backend.models == ["gpt-4o-mini"]


async def test_timeout_is_retried(monkeypatch):
    backend = ScriptedBackend("hang", DRAFT_JSON)
    monkeypatch.setattr(llm_provider, "_generate_raw", backend)

    parsed = await generate_json(model="gpt-4o-mini", prompt="p", retry_policy=FAST_POLICY)

    assert parsed.start == "2030-03-01T19:00:00"
    assert len(backend.models) == 2


async def test_timeouts_exhausted(monkeypatch):
    monkeypatch.setattr(llm_provider, "_generate_raw", ScriptedBackend("hang", "hang"))

    with pytest.raises(InterpretationError, match="timed out"):
        await generate_json(model="gpt-4o-mini", prompt="p", retry_policy=FAST_POLICY)


async def test_missing_model_falls_back_once(monkeypatch):
    backend = ScriptedBackend(ModelNotFoundError("gpt-x"), DRAFT_JSON)
    monkeypatch.setattr(llm_provider, "_generate_raw", backend)

    parsed = await generate_json(model="gpt-x", prompt="p", retry_policy=FAST_POLICY)

    assert parsed.title == "Dinner"
    assert backend.models == ["gpt-x", "gemini-2.0-flash"]


async def test_missing_fallback_model_raises(monkeypatch):
    backend = ScriptedBackend(ModelNotFoundError("gpt-x"), ModelNotFoundError("gemini-2.0-flash"))
    monkeypatch.setattr(llm_provider, "_generate_raw", backend)

    with pytest.raises(ModelNotFoundError):
        await generate_json(model="gpt-x", prompt="p", retry_policy=FAST_POLICY)
    assert len(backend.models) == 2


async def test_unexpected_errors_are_wrapped(monkeypatch):
    monkeypatch.setattr(llm_provider, "_generate_raw", ScriptedBackend(RuntimeError("boom")))

    with pytest.raises(InterpretationError, match="boom"):
        await generate_json(model="gpt-4o-mini", prompt="p", retry_policy=FAST_POLICY)


async def test_non_json_response_is_an_error(monkeypatch, event_log):
    monkeypatch.setattr(llm_provider, "_generate_raw", ScriptedBackend("I cannot help with that."))

    with pytest.raises(InterpretationError, match="not a valid JSON object"):
        await generate_json(model="gpt-4o-mini", prompt="p", retry_policy=FAST_POLICY)
    assert "llm.response.invalid" in event_log.read_text(encoding="utf-8")
