from __future__ import annotations

import redis.asyncio as redis
from fastapi import Request

from relay.buffer.debounce import MessageBuffer
from relay.config import Settings
from relay.conversation.dead_letters import DeadLetterStore
from relay.enablement.registry import EnablementRegistry
from relay.llm.gateway import AIGateway
from relay.pipeline.pipeline import Pipeline


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def get_registry(request: Request) -> EnablementRegistry:
    return request.app.state.registry


def get_dead_letters(request: Request) -> DeadLetterStore:
    return request.app.state.dead_letters


def get_ai_gateway(request: Request) -> AIGateway:
    return request.app.state.ai_gateway


def get_redis(request: Request) -> redis.Redis:
    return request.app.state.redis


def get_buffer(request: Request) -> MessageBuffer:
    return request.app.state.buffer
