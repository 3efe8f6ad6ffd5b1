import asyncio

import pytest
from google.api_core import exceptions as google_exceptions

from salesdesk.config import Settings
from salesdesk.gemini_client import APOLOGY_TEXT, GeminiClient, ReplyGenerator, build_contents
from conftest import FakeBackend


def _reply(generator, message="hola"):
    return asyncio.run(generator.reply("system", [], message))


def test_retries_transient_errors_then_succeeds():
    backend = FakeBackend([RuntimeError("503"), google_exceptions.ResourceExhausted("429"), "listo"])
    assert _reply(ReplyGenerator(backend, max_attempts=3, backoff_base_seconds=0)) == "listo"
    assert len(backend.calls) == 3


def test_exhausted_attempts_return_apology():
    backend = FakeBackend([RuntimeError("a"), RuntimeError("b"), RuntimeError("c"), "too late"])
    assert _reply(ReplyGenerator(backend, max_attempts=3, backoff_base_seconds=0)) == APOLOGY_TEXT
    assert len(backend.calls) == 3


def test_invalid_requests_are_not_retried():
    backend = FakeBackend([google_exceptions.InvalidArgument("bad prompt"), "never"])
    assert _reply(ReplyGenerator(backend, max_attempts=3, backoff_base_seconds=0)) == APOLOGY_TEXT
    assert len(backend.calls) == 1


def test_empty_text_counts_as_failed_attempt():
    backend = FakeBackend(["", "respuesta"])
    assert _reply(ReplyGenerator(backend, max_attempts=2, backoff_base_seconds=0)) == "respuesta"


def test_backoff_doubles_between_attempts(monkeypatch):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr("salesdesk.gemini_client.asyncio.sleep", fake_sleep)
    backend = FakeBackend([RuntimeError("a"), RuntimeError("b"), RuntimeError("c")])
    assert _reply(ReplyGenerator(backend, max_attempts=3, backoff_base_seconds=2.0)) == APOLOGY_TEXT
    assert delays == [2.0, 4.0]


def test_build_contents_alternates_roles_from_user():
    contents = build_contents(
        [
            {"role": "assistant", "content": "bienvenido"},
            {"role": "user", "content": "hola"},
            {"role": "user", "content": "sigues ahi?"},
            {"role": "system", "content": "[handoff to Ana]"},
            {"role": "assistant", "content": "si"},
        ],
        "precio?",
    )
    assert [entry["role"] for entry in contents] == ["user", "model", "user"]
    assert contents[0]["parts"] == [{"text": "hola"}, {"text": "sigues ahi?"}]
    assert contents[-1]["parts"] == [{"text": "precio?"}]


def test_client_requires_api_key(tmp_path):
    settings = Settings(
        gemini_api_key="",
        gemini_model="gemini-2.5-flash",
        catalog_path=tmp_path / "c.json",
        data_dir=tmp_path,
        prompts_dir=tmp_path,
        business_name="X",
        business_phone="",
    )
    with pytest.raises(ValueError):
        GeminiClient(settings)
