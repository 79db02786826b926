"""
FastAPI router for plan analysis.

Accepts raw EXPLAIN output (text or JSON) and returns the annotated plan,
summary and recommendations in the ``{success, data}`` envelope.
"""

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pg_index_advisor.core.analyzer import build_response

router = APIRouter()


class AnalyzeRequest(BaseModel):
    """Documented shape of the analyze request body."""

    plan: str = Field(..., description="EXPLAIN or EXPLAIN ANALYZE output")
    format: Literal["auto", "json", "text"] = Field("auto", description="Input grammar hint")


class AnalyzeData(BaseModel):
    plan: Dict[str, Any]
    summary: Dict[str, Any]
    recommendations: List[Dict[str, Any]]
    rawPlan: str
    format: str


class AnalyzeResponse(BaseModel):
    success: bool = True
    data: Optional[AnalyzeData] = None
    error: Optional[str] = Field(None, description="Russian error message")
    errorEn: Optional[str] = Field(None, description="English error message")
    code: Optional[str] = None
    detail: Optional[str] = None


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    response_model_exclude_none=True,
    summary="Analyze an EXPLAIN plan",
    description="Parses EXPLAIN output, computes per-node metrics and returns ranked recommendations.",
    responses={
        400: {"model": AnalyzeResponse, "description": "Missing or unparsable plan"},
        500: {"model": AnalyzeResponse, "description": "Internal analysis failure"},
    },
    openapi_extra={
        "requestBody": {
            "content": {"application/json": {"schema": AnalyzeRequest.model_json_schema()}},
            "required": True,
        }
    },
)
def analyze(payload: Any = Body(None)):
    # Validation lives in the core so 400 bodies carry the bilingual messages
    status, body = build_response(payload)
    return JSONResponse(content=body, status_code=status)
