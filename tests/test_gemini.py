import json

import httpx
import pytest

from gemini import (
    AIResponseError,
    AIServiceError,
    GeminiClient,
    is_overload_message,
    parse_mcq_response,
    validate_questions,
)
from retry import RetryPolicy

GENERATED = {
    "questions": [
        {
            "question": "What do plants make in sunlight?",
            "options": ["Food", "Rocks", "Water", "Air"],
            "correctAnswer": 0,
            "explanation": "Photosynthesis",
        },
        {"question": "Which gas do plants absorb?", "options": ["O2", "CO2", "N2", "H2"], "correctAnswer": 1},
    ]
}


def _gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client(handler, sleeps=None):
    return GeminiClient(
        "test-key",
        retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=1, jitter_seconds=0),
        transport=httpx.MockTransport(handler),
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )


def test_generate_mcqs_parses_fenced_json():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=_gemini_body("```json\n" + json.dumps(GENERATED) + "\n```"))

    questions = _client(handler).generate_mcqs(b"page", "image/png", 2, "English", "Hindi")
    assert questions[0]["correct_answer"] == 0
    assert questions[1]["explanation"] == "No explanation provided"

    request = requests[0]
    assert request.url.params["key"] == "test-key"
    assert request.url.path.endswith(":generateContent")
    parts = json.loads(request.content)["contents"][0]["parts"]
    assert "Hindi" in parts[0]["text"]
    assert parts[1]["inline_data"]["mime_type"] == "image/png"


def test_overload_is_retried_then_raised():
    sleeps = []
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="The model is overloaded. Please try again later.")

    with pytest.raises(AIServiceError) as excinfo:
        _client(handler, sleeps).generate_mcqs(b"page", "image/png", 2, "English", "English")
    assert excinfo.value.retryable is True
    assert excinfo.value.status_code == 503
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, text="API key not valid")

    with pytest.raises(AIServiceError) as excinfo:
        _client(handler).generate_mcqs(b"page", "image/png", 2, "English", "English")
    assert excinfo.value.retryable is False
    assert len(calls) == 1


def test_check_status_does_not_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="overloaded")

    with pytest.raises(AIServiceError):
        _client(handler).check_status()
    assert len(calls) == 1


def test_missing_api_key():
    client = GeminiClient(None, transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with pytest.raises(AIServiceError, match="GEMINI_API_KEY is not configured"):
        client.check_status()


def test_parse_mcq_response_errors():
    with pytest.raises(AIResponseError):
        parse_mcq_response("not json")
    with pytest.raises(AIResponseError, match="Invalid response format"):
        parse_mcq_response('{"items": []}')


@pytest.mark.parametrize(
    "question",
    [
        {"question": "", "options": ["A", "B", "C", "D"], "correctAnswer": 0},
        {"question": "Q?", "options": ["A", "B", "C"], "correctAnswer": 0},
        {"question": "Q?", "options": ["A", "B", "C", "D"], "correctAnswer": 4},
        {"question": "Q?", "options": ["A", "B", "C", "D"], "correctAnswer": True},
        "Q?",
    ],
)
def test_validate_questions_rejects_malformed(question):
    with pytest.raises(AIResponseError, match="index 0"):
        validate_questions([question])


def test_overload_message_detection():
    assert is_overload_message("[503 Service Unavailable]")
    assert is_overload_message("Model is OVERLOADED")
    assert not is_overload_message("permission denied")
