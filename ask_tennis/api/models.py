# ask_tennis/api/models.py
"""
Pydantic request/response models for the HTTP boundary.

Field names follow the JSON the web client already consumes (camelCase).
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    # Optional so a missing question reaches the handler and gets a 400, not a 422
    question: Optional[str] = Field(default=None, description="Natural language tennis question")
    userId: Optional[str] = Field(default=None, description="Caller identifier, passed through to the pipeline")


class QueryResponse(BaseModel):
    question: str
    answer: str
    data: Optional[List[Dict[str, Any]]] = None
    queryType: str
    confidence: float = Field(ge=0.0, le=1.0)
    dataSource: str
    cached: bool = False
    timestamp: str


class ErrorDetail(BaseModel):
    error: str
    code: str
    retryAfter: Optional[int] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str


class StatusResponse(BaseModel):
    status: str
    timestamp: str
    cache: Dict[str, Any] = Field(default_factory=dict)
    executor: Dict[str, Any] = Field(default_factory=dict)
    llm: Dict[str, Any] = Field(default_factory=dict)
    rateLimits: Dict[str, Any] = Field(default_factory=dict)
    defaultSource: Optional[str] = None
