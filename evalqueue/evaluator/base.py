from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from evalqueue.domain.models import EvaluationContext

@runtime_checkable
class Evaluator(Protocol):
    """
    The one external capability the queue depends on. Any exception raised
    by `evaluate` counts as a failed attempt, whatever its cause.
    """

    async def evaluate(self, code: str, language: str, context: EvaluationContext) -> Any:
        ...

class CodeFeedback(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "info"
    message: str = ""
    severity: str = "low"
    category: Optional[str] = None
    line_number: Optional[int] = None
    suggestion: Optional[str] = None

class EvaluationResult(BaseModel):
    """Score and feedback for a submission, as returned by the evaluation backend."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    project_id: Optional[str] = None
    score: float = 0
    percentage: float = 0
    passed: bool = False
    feedback: list[CodeFeedback] = Field(default_factory=list)
    rubric: dict[str, float] = Field(default_factory=dict)
    analysis: dict[str, Any] = Field(default_factory=dict)
    model: Optional[str] = None
    provider: Optional[str] = None
    evaluated_at: Optional[str] = None
