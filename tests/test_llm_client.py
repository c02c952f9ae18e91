import httpx
import openai
import pytest

from rfi_extractor.errors import MalformedResponseError, ServiceRejectedError, TransientServiceError
from rfi_extractor.extraction.llm_client import ExtractionClient, translate_openai_error

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status):
    return cls(f"status {status}", response=httpx.Response(status, request=REQUEST), body=None)


@pytest.mark.parametrize("error", [
    openai.APITimeoutError(request=REQUEST),
    openai.APIConnectionError(request=REQUEST),
    _status_error(openai.RateLimitError, 429),
    _status_error(openai.InternalServerError, 500),
    _status_error(openai.InternalServerError, 503),
    _status_error(openai.ConflictError, 409),
])
def test_retryable_errors_are_transient(error):
    assert isinstance(translate_openai_error(error), TransientServiceError)


@pytest.mark.parametrize("error", [
    _status_error(openai.BadRequestError, 400),
    _status_error(openai.AuthenticationError, 401),
    _status_error(openai.PermissionDeniedError, 403),
    _status_error(openai.NotFoundError, 404),
])
def test_permanent_errors_are_rejected(error):
    translated = translate_openai_error(error)
    assert isinstance(translated, ServiceRejectedError)
    assert translated.status_code == error.status_code


def test_complete_returns_text_and_usage(fake_openai_client, fake_chat_response):
    fake = fake_openai_client(lambda req: fake_chat_response('{"ok": true}', total_tokens=321))
    client = ExtractionClient(model="gpt-4.1-mini", client=fake)

    completion = client.complete("prompt")

    assert completion.text == '{"ok": true}'
    assert completion.tokens_used == 321
    assert client.get_usage_stats() == {"model": "gpt-4.1-mini", "requests": 1, "total_tokens": 321}


def test_request_body_asks_for_json_object(fake_openai_client):
    fake = fake_openai_client(lambda req: "{}")
    client = ExtractionClient(model="gpt-4.1-mini", max_tokens=1234, temperature=0.0, client=fake)

    client.complete("prompt text")
    sent = fake.chat.completions.calls[0]

    assert sent["model"] == "gpt-4.1-mini"
    assert sent["max_tokens"] == 1234
    assert sent["response_format"] == {"type": "json_object"}
    assert sent["messages"] == [{"role": "user", "content": "prompt text"}]


def test_sdk_errors_are_translated(fake_openai_client):
    fake = fake_openai_client(lambda req: _status_error(openai.RateLimitError, 429))
    client = ExtractionClient(client=fake)

    with pytest.raises(TransientServiceError) as e:
        client.complete("prompt")
    assert e.value.status_code == 429


def test_response_without_choices_is_malformed(fake_openai_client, fake_chat_response):
    fake = fake_openai_client(lambda req: fake_chat_response(None))
    with pytest.raises(MalformedResponseError):
        ExtractionClient(client=fake).complete("prompt")


def test_from_settings_uses_configured_model(settings, fake_openai_client):
    client = ExtractionClient.from_settings(settings, client=fake_openai_client(lambda req: "{}"))
    assert client.model == settings.OPENAI_MODEL
    assert client.timeout == settings.REQUEST_TIMEOUT_SECONDS
