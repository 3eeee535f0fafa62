from typing import Literal

from pydantic import BaseModel


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class WhatsAppMessage(BaseModel):
    from_number: str
    message_id: str
    timestamp: str
    text: str
    type: str


class WhatsAppStatus(BaseModel):
    message_id: str
    status: str
    recipient_id: str


class DeadLetterRecord(BaseModel):
    user_id: str
    response_text: str
    failure_reason: str
    failed_at: str = ""


class EnablementRequest(BaseModel):
    user_ids: list[str]


class EnablementResponse(BaseModel):
    status: str
    user_ids: list[str]


class ServiceChecks(BaseModel):
    ai: bool
    redis: bool
    breaker: str


class HealthResponse(BaseModel):
    status: str
    checks: ServiceChecks
    queues: dict[str, dict[str, int]] = {}
    buffer: dict[str, int] = {}
