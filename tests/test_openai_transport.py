from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

import ledger_pipeline.openai_transport as transport_mod
from ledger_pipeline.errors import ModelError
from ledger_pipeline.openai_transport import OpenAITransport, response_text
from tests.helpers.model_stub import HTTPError, OpenAIClientStub


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    slept: list[int] = []
    monkeypatch.setattr(transport_mod, "_sleep_backoff", slept.append)
    return slept


def _patch_client(monkeypatch: pytest.MonkeyPatch, outcomes, created: list[dict[str, Any]]):
    calls: list[dict[str, Any]] = []

    def factory(**kwargs: Any) -> OpenAIClientStub:
        created.append(kwargs)
        return OpenAIClientStub(outcomes, calls_out=calls)

    monkeypatch.setattr(transport_mod, "OpenAI", factory)
    return calls


def test_submit_sends_model_and_prompt(monkeypatch: pytest.MonkeyPatch):
    created: list[dict[str, Any]] = []
    calls = _patch_client(monkeypatch, ['{"ok": true}'], created)
    transport = OpenAITransport(model="gpt-x", base_url="http://gateway.local/v1", api_key="k")

    assert transport.submit("hello") == '{"ok": true}'
    assert calls == [{"model": "gpt-x", "input": "hello"}]
    assert created[0]["base_url"] == "http://gateway.local/v1"
    assert created[0]["api_key"] == "k"


def test_client_is_created_lazily_once(monkeypatch: pytest.MonkeyPatch):
    created: list[dict[str, Any]] = []
    _patch_client(monkeypatch, ["a"], created)
    transport = OpenAITransport(model="gpt-x")
    assert created == []

    transport.submit("one")
    transport.submit("two")
    assert len(created) == 1
    assert "base_url" not in created[0]


def test_retries_rate_limit_then_succeeds(monkeypatch: pytest.MonkeyPatch, _no_backoff: list[int]):
    created: list[dict[str, Any]] = []
    calls = _patch_client(monkeypatch, [HTTPError(429), HTTPError(503), "done"], created)

    assert OpenAITransport(model="m").submit("p") == "done"
    assert len(calls) == 3
    assert _no_backoff == [1, 2]


def test_gives_up_after_max_attempts(monkeypatch: pytest.MonkeyPatch):
    created: list[dict[str, Any]] = []
    calls = _patch_client(monkeypatch, [HTTPError(500)], created)

    with pytest.raises(ModelError):
        OpenAITransport(model="m").submit("p")
    assert len(calls) == 3


def test_client_error_is_not_retried(monkeypatch: pytest.MonkeyPatch, _no_backoff: list[int]):
    created: list[dict[str, Any]] = []
    calls = _patch_client(monkeypatch, [HTTPError(400, "bad request"), "never"], created)

    with pytest.raises(ModelError, match="bad request"):
        OpenAITransport(model="m").submit("p")
    assert len(calls) == 1
    assert _no_backoff == []


def test_empty_response_is_model_error(monkeypatch: pytest.MonkeyPatch):
    created: list[dict[str, Any]] = []
    _patch_client(monkeypatch, ["   "], created)

    with pytest.raises(ModelError, match="empty"):
        OpenAITransport(model="m").submit("p")


def test_injected_client_skips_construction(monkeypatch: pytest.MonkeyPatch):
    def boom(**_kwargs: Any) -> None:
        raise AssertionError("should not construct")

    monkeypatch.setattr(transport_mod, "OpenAI", boom)
    stub = OpenAIClientStub(["x"])
    assert OpenAITransport(model="m", client=stub).submit("p") == "x"


def test_response_text_fallbacks():
    assert response_text(SimpleNamespace(output_text="direct")) == "direct"
    nested = SimpleNamespace(
        output_text="",
        output=[SimpleNamespace(content=[SimpleNamespace(text="nested")])],
    )
    assert response_text(nested) == "nested"
    wrapped = SimpleNamespace(
        output=[SimpleNamespace(content=[SimpleNamespace(text=SimpleNamespace(value="wrapped"))])]
    )
    assert response_text(wrapped) == "wrapped"
    assert response_text(SimpleNamespace()) == ""
