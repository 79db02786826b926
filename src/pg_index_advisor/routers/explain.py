"""
FastAPI router for natural-language plan explanations.

The LLM step is optional: provider failures are reported in the body with
``success=false`` and never turn into HTTP errors.
"""

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from pg_index_advisor.core import llm_adapter

router = APIRouter()


class ExplainRequest(BaseModel):
    """Request model for the explain endpoint."""

    plan: Dict[str, Any] = Field(..., description="Annotated plan as returned by /analyze")
    recommendations: List[Dict[str, Any]] = Field(default_factory=list, description="Recommendations from /analyze")
    lang: Literal["ru", "en"] = Field("en", description="Explanation language")


class ExplainResponse(BaseModel):
    """Response model for the explain endpoint."""

    success: bool = True
    explanation: Optional[str] = Field(None, description="Natural language explanation")
    provider: Optional[str] = Field(None, description="LLM provider used")
    error: Optional[str] = None


@router.post(
    "/explain",
    response_model=ExplainResponse,
    summary="Explain an analyzed plan in natural language",
    responses={
        200: {
            "description": "Explanation or soft failure",
            "content": {
                "application/json": {
                    "example": {
                        "success": True,
                        "explanation": "The query scans the users table sequentially...",
                        "provider": "dummy",
                    }
                }
            },
        }
    },
)
def explain(req: ExplainRequest) -> ExplainResponse:
    result = llm_adapter.explain_analysis(req.plan, req.recommendations, req.lang)
    return ExplainResponse(
        success=result.text is not None,
        explanation=result.text,
        provider=result.provider,
        error=result.error,
    )
