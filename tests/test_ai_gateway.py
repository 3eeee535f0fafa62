import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from relay.errors import AIError
from relay.llm.breaker import BreakerState, CircuitBreaker
from relay.llm.gateway import AIGateway

FALLBACK = "Temporarily unavailable"


def _gateway(query=None, available: bool = True, **kwargs) -> AIGateway:
    client = MagicMock()
    client.query = query or AsyncMock(return_value="answer")
    client.is_available = AsyncMock(return_value=available)
    return AIGateway(client, CircuitBreaker(min_calls=3), fallback_message=FALLBACK, **kwargs)


async def test_query_returns_answer():
    gateway = _gateway()

    result = await gateway.query("q", "123", [])

    assert result.response_text == "answer"
    assert result.fallback is False


async def test_errors_propagate_and_count():
    gateway = _gateway(query=AsyncMock(side_effect=AIError(503, "down")))

    for _ in range(3):
        with pytest.raises(AIError):
            await gateway.query("q", "123", [])

    assert gateway.breaker_state is BreakerState.OPEN


async def test_open_breaker_returns_fallback_without_network():
    query = AsyncMock(side_effect=AIError(503, "down"))
    gateway = _gateway(query=query)
    for _ in range(3):
        with pytest.raises(AIError):
            await gateway.query("q", "123", [])

    result = await gateway.query("q", "123", [])

    assert result.fallback is True
    assert result.response_text == FALLBACK
    assert query.await_count == 3


async def test_timeout_becomes_ai_error():
    async def _slow(*args):
        await asyncio.sleep(10)

    gateway = _gateway(query=_slow, timeout=0.01)

    with pytest.raises(AIError) as exc_info:
        await gateway.query("q", "123", [])
    assert exc_info.value.status_code == 504


async def test_health_check_before_query():
    query = AsyncMock(return_value="answer")
    gateway = _gateway(query=query, available=False, check_health=True)

    with pytest.raises(AIError) as exc_info:
        await gateway.query("q", "123", [])

    assert exc_info.value.status_code == 503
    query.assert_not_awaited()
