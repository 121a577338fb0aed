"""
DealerGPT response types.

Responses serialise camelCase on the wire (``contextUsed``, ``sessionId``)
while Python code keeps snake_case attributes.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DegradedReason(str, Enum):
    DATA_UNAVAILABLE = "data_unavailable"
    DATA_TIMEOUT = "data_timeout"
    LLM_UNAVAILABLE = "llm_unavailable"
    LLM_TIMEOUT = "llm_timeout"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class DealerGPTResponse(CamelModel):
    message: str
    context_used: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    session_id: str
    response_time: int = Field(0, ge=0)
    insights: list[dict[str, Any]] = Field(default_factory=list)
    proactive_alerts: list[dict[str, Any]] = Field(default_factory=list)


@dataclass
class ConversationResult:
    """A response plus why it is a fallback, if it is one."""

    response: DealerGPTResponse
    degraded_reason: DegradedReason | None = None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None


class InsightOut(CamelModel):
    id: int
    insight_type: str
    title: str
    description: str
    data: Any = None
    priority: str
    category: str
    target_users: list[int] | None = None
    is_acknowledged: bool = False
    acknowledged_by: int | None = None
    acknowledged_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime


class MemoryOut(CamelModel):
    id: int
    key: str
    data: Any
    memory_type: str
    entity_type: str | None = None
    entity_id: int | None = None
    user_id: int | None = None
    priority: str
    tags: list[str] = Field(default_factory=list)
    relevance_score: float | None = None
    expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None


class ConversationOut(CamelModel):
    id: int
    user_id: int
    session_id: str
    message: str
    response: str
    context_used: list[str] = Field(default_factory=list)
    response_time: int | None = None
    feedback: str | None = None
    created_at: datetime
