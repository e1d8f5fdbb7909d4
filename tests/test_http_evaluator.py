import hashlib
import hmac
import json

import httpx
import pytest

from evalqueue.domain.errors import EvaluatorError
from evalqueue.domain.models import EvaluationContext
from evalqueue.evaluator.http import HttpEvaluator


def make_evaluator(handler, api_key=None) -> HttpEvaluator:
    return HttpEvaluator("http://evaluator.test/", api_key=api_key, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_posts_submission_and_parses_result():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["content"] = request.content
        seen["signature"] = request.headers.get("X-Signature")
        return httpx.Response(200, json={
            "score": 88,
            "percentage": 88,
            "passed": True,
            "feedback": [{"type": "success", "message": "Clear structure", "severity": "low"}],
            "model": "review-model",
            "tokens": 512,
        })

    evaluator = make_evaluator(handler, api_key="secret")
    context = EvaluationContext(project_id="project-1", requirements=["prints a greeting"])
    result = await evaluator.evaluate("print('hi')", "python", context)
    await evaluator.close()

    assert result.score == 88
    assert result.passed is True
    assert result.project_id == "project-1"
    assert result.feedback[0].message == "Clear structure"
    assert result.model_extra["tokens"] == 512

    body = json.loads(seen["content"])
    assert seen["path"] == "/evaluate"
    assert body["code"] == "print('hi')"
    assert body["language"] == "python"
    assert body["context"]["requirements"] == ["prints a greeting"]
    assert seen["signature"] == hmac.new(b"secret", seen["content"], hashlib.sha256).hexdigest()


@pytest.mark.asyncio
async def test_unsigned_without_api_key():
    headers = {}

    def handler(request):
        headers.update(request.headers)
        return httpx.Response(200, json={"score": 1})

    evaluator = make_evaluator(handler)
    await evaluator.evaluate("x", "python", EvaluationContext(project_id="p"))
    await evaluator.close()

    assert "x-signature" not in headers


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(503, json={"detail": "overloaded"}),
        lambda request: httpx.Response(200, content=b"<html>not json</html>"),
        lambda request: httpx.Response(200, json={"score": "excellent"}),
    ],
    ids=["http-error", "malformed-body", "invalid-result"],
)
async def test_provider_failures_raise_evaluator_error(handler):
    evaluator = make_evaluator(handler)
    with pytest.raises(EvaluatorError):
        await evaluator.evaluate("x", "python", EvaluationContext(project_id="p"))
    await evaluator.close()


@pytest.mark.asyncio
async def test_transport_errors_raise_evaluator_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    evaluator = make_evaluator(handler)
    with pytest.raises(EvaluatorError, match="request failed"):
        await evaluator.evaluate("x", "python", EvaluationContext(project_id="p"))
    await evaluator.close()
