from types import SimpleNamespace

import httpx
import pytest
from openai import APITimeoutError, OpenAIError

from conftest import first_fallback, make_client

from groupbot.completion import CompletionService
from groupbot.errors import BoundaryMalformed, BoundaryTimeout

FALLBACKS = ("Sorry, try again.", "Something went wrong.")


@pytest.fixture
def service_factory():
    services = []

    def factory(client, **kwargs):
        params = {"timeout_seconds": 1.0, "fallback_responses": FALLBACKS, "choose": first_fallback}
        params.update(kwargs)
        service = CompletionService(client=client, **params)
        services.append(service)
        return service

    yield factory
    for service in services:
        service.shutdown()


class TestCompletionService:
    def test_success(self, service_factory):
        client, completions = make_client(reply="  The raid starts at 8.  ")
        result = service_factory(client).complete("When is the raid?", "You help gamers.")

        assert result.ok
        assert result.text == "The raid starts at 8."
        messages = completions.calls[0]["messages"]
        assert messages == [
            {"role": "system", "content": "You help gamers."},
            {"role": "user", "content": "When is the raid?"},
        ]

    def test_without_system_context(self, service_factory):
        client, completions = make_client()
        service_factory(client).complete("hi")
        assert completions.calls[0]["messages"] == [{"role": "user", "content": "hi"}]

    def test_long_answer_is_truncated(self, service_factory):
        client, _ = make_client(reply="x" * 50)
        result = service_factory(client, max_response_length=20).complete("q")
        assert len(result.text) == 20
        assert result.text.endswith("...")

    def test_timeout_falls_back(self, service_factory):
        client, completions = make_client(delay=5.0)
        try:
            result = service_factory(client, timeout_seconds=0.1).complete("q")
        finally:
            completions.release.set()

        assert not result.ok
        assert result.text == FALLBACKS[0]
        assert isinstance(result.error, BoundaryTimeout)

    def test_provider_timeout_error(self, service_factory):
        error = APITimeoutError(request=httpx.Request("POST", "https://provider.invalid/v1/chat/completions"))
        client, _ = make_client(error=error)
        result = service_factory(client).complete("q")
        assert isinstance(result.error, BoundaryTimeout)
        assert result.text in FALLBACKS

    def test_provider_error(self, service_factory):
        client, _ = make_client(error=OpenAIError("bad key"))
        result = service_factory(client).complete("q")
        assert isinstance(result.error, BoundaryMalformed)

    @pytest.mark.parametrize(
        "response",
        [
            SimpleNamespace(choices=[]),
            SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=None))]),
            SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="   "))]),
            SimpleNamespace(),
        ],
    )
    def test_malformed_response(self, service_factory, response):
        client, _ = make_client(response=response)
        result = service_factory(client).complete("q")
        assert not result.ok
        assert isinstance(result.error, BoundaryMalformed)

    def test_unexpected_error(self, service_factory):
        client, _ = make_client(error=RuntimeError("socket closed"))
        result = service_factory(client).complete("q")
        assert not result.ok
        assert result.text == FALLBACKS[0]

    def test_no_client_always_falls_back(self, service_factory):
        result = service_factory(None).complete("q")
        assert not result.ok
        assert result.text in FALLBACKS

    def test_requires_fallbacks(self):
        with pytest.raises(ValueError):
            CompletionService(client=None, fallback_responses=())
