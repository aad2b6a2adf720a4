"""
Gemini client used for MCQ generation.

Talks to the Generative Language REST API through httpx. Overload and
availability failures are retried with ``RetryPolicy``; everything else is
raised immediately as a non-retryable ``AIServiceError``.
"""
import base64
import json
import re
from typing import Any, Dict, List, Optional

import httpx

from app_logger import get_logger
from config import settings
from retry import RetryPolicy

log = get_logger("gemini")

_OVERLOAD_MARKERS = ("503", "overloaded", "service unavailable", "temporarily unavailable")
_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

MCQ_PROMPT = """
Analyze this book page image and create {count} multiple choice questions (MCQs) based on the content.

Instructions:
- The book content is in {book_language} language
- Generate questions in {question_language} language
- Create exactly {count} questions
- Each question should have 4 options (A, B, C, D)
- Include the correct answer index (0-3)
- Add a brief explanation for each correct answer
- Focus on key concepts, facts, and important information from the text
- Make questions challenging but fair for students
- Ensure questions test understanding, not just memorization

Return the response in this exact JSON format:
{{
  "questions": [
    {{
      "question": "Question text here?",
      "options": ["Option A", "Option B", "Option C", "Option D"],
      "correctAnswer": 0,
      "explanation": "Brief explanation of why this answer is correct"
    }}
  ]
}}

Important: Return only valid JSON, no additional text or markdown formatting.
"""

STATUS_PROMPT = "Respond with just the word 'OK' if you can process this request."


class AIServiceError(Exception):
    def __init__(self, message: str, retryable: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class AIResponseError(Exception):
    """The model answered, but not with usable MCQ JSON."""


def is_overload_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _OVERLOAD_MARKERS)


def is_retryable(exc: Exception) -> bool:
    return isinstance(exc, AIServiceError) and exc.retryable


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def validate_questions(raw: Any) -> List[Dict[str, Any]]:
    """
    Check the generated question list and normalize it to stored form.
    A missing explanation gets a default; anything else malformed is an error.
    """
    if not isinstance(raw, list):
        raise AIResponseError("Invalid response format from AI")
    questions = []
    for index, q in enumerate(raw):
        if not isinstance(q, dict):
            raise AIResponseError(f"Invalid question format at index {index}")
        options = q.get("options")
        answer = q.get("correctAnswer", q.get("correct_answer"))
        if (
            not q.get("question")
            or not isinstance(options, list)
            or len(options) != 4
            or isinstance(answer, bool)
            or not isinstance(answer, int)
            or not 0 <= answer <= 3
        ):
            raise AIResponseError(f"Invalid question format at index {index}")
        questions.append(
            {
                "question": str(q["question"]),
                "options": [str(o) for o in options],
                "correct_answer": answer,
                "explanation": q.get("explanation") or "No explanation provided",
            }
        )
    return questions


def parse_mcq_response(text: str) -> List[Dict[str, Any]]:
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except ValueError as e:
        raise AIResponseError(f"Failed to parse AI response: {e}") from e
    if not isinstance(data, dict):
        raise AIResponseError("Invalid response format from AI")
    return validate_questions(data.get("questions"))


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep=None,
    ):
        self.api_key = api_key
        self.model = model
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._client = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    def _generate(self, parts: List[Dict[str, Any]]) -> str:
        if not self.api_key:
            raise AIServiceError("GEMINI_API_KEY is not configured")
        try:
            resp = self._client.post(
                f"/models/{self.model}:generateContent",
                params={"key": self.api_key},
                json={"contents": [{"parts": parts}]},
            )
        except httpx.TimeoutException as e:
            raise AIServiceError(f"Gemini request timed out: {e}", retryable=True) from e
        except httpx.HTTPError as e:
            raise AIServiceError(f"Gemini request failed: {e}") from e

        if resp.status_code >= 400:
            message = f"[{resp.status_code} {resp.reason_phrase}] {resp.text[:500]}"
            retryable = resp.status_code in (429, 503) or is_overload_message(message)
            raise AIServiceError(message, retryable=retryable, status_code=resp.status_code)

        body = resp.json()
        try:
            return "".join(p.get("text", "") for p in body["candidates"][0]["content"]["parts"])
        except (KeyError, IndexError, TypeError) as e:
            raise AIServiceError(f"Unexpected Gemini response shape: {e}") from e

    def generate_text(self, parts: List[Dict[str, Any]]) -> str:
        kwargs = {"sleep": self._sleep} if self._sleep else {}
        return self.retry_policy.call(lambda: self._generate(parts), is_retryable, name="gemini.generate", **kwargs)

    def check_status(self) -> str:
        """Single status check without retries."""
        return self._generate([{"text": STATUS_PROMPT}])

    def generate_mcqs(
        self,
        image: bytes,
        mime_type: str,
        count: int,
        book_language: str,
        question_language: str,
    ) -> List[Dict[str, Any]]:
        prompt = MCQ_PROMPT.format(count=count, book_language=book_language, question_language=question_language)
        parts = [
            {"text": prompt},
            {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(image).decode("ascii")}},
        ]
        text = self.generate_text(parts)
        questions = parse_mcq_response(text)
        log.info("Generated MCQs", extra={"requested": count, "generated": len(questions)})
        return questions


_client: Optional[GeminiClient] = None


def get_mcq_generator() -> GeminiClient:
    global _client
    if _client is None:
        _client = GeminiClient(
            settings.GEMINI_API_KEY,
            model=settings.GEMINI_MODEL,
            base_url=settings.GEMINI_BASE_URL,
            timeout=settings.GEMINI_TIMEOUT_SECONDS,
            retry_policy=RetryPolicy(
                max_attempts=settings.AI_RETRY_ATTEMPTS,
                base_delay_seconds=settings.AI_RETRY_BASE_DELAY_SECONDS,
            ),
        )
    return _client
