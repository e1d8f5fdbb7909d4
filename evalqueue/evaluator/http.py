import dataclasses
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from evalqueue.domain.errors import EvaluatorError
from evalqueue.domain.models import EvaluationContext
from evalqueue.evaluator.base import EvaluationResult

logger = logging.getLogger(__name__)

class HttpEvaluator:
    """
    Evaluator backed by a remote code-evaluation service.

    POSTs `{code, language, context}` to `{base_url}/evaluate` and validates
    the JSON reply into an `EvaluationResult`. When an API key is configured
    the body is signed with HMAC-SHA256 in the `X-Signature` header.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    @staticmethod
    def _serialize_body(json_body: Dict[str, Any]) -> bytes:
        # Stable encoding keeps signatures deterministic and payloads compact.
        return json.dumps(json_body, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")

    def _build_headers(self, body: bytes) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-Signature"] = hmac.new(
                self.api_key.encode("utf-8"),
                body,
                hashlib.sha256,
            ).hexdigest()
        return headers

    async def evaluate(self, code: str, language: str, context: EvaluationContext) -> EvaluationResult:
        content = self._serialize_body({
            "code": code,
            "language": language,
            "context": dataclasses.asdict(context),
        })

        try:
            resp = await self.client.post("/evaluate", content=content, headers=self._build_headers(content))
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning("Evaluation rejected for project=%s status=%s", context.project_id, status_code)
            raise EvaluatorError(f"Evaluator returned HTTP {status_code}") from e
        except httpx.HTTPError as e:
            logger.error("Evaluation request failed for project=%s: %s", context.project_id, e)
            raise EvaluatorError(f"Evaluator request failed: {e}") from e
        except ValueError as e:
            raise EvaluatorError("Evaluator returned a malformed body") from e

        try:
            result = EvaluationResult.model_validate(data)
        except ValidationError as e:
            raise EvaluatorError(f"Evaluator returned an invalid result: {e.error_count()} errors") from e

        if result.project_id is None:
            result.project_id = context.project_id
        return result

    async def close(self):
        await self.client.aclose()
