import hashlib
import hmac
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakeredis import FakeAsyncRedis
from fastapi.testclient import TestClient

from relay.buffer.debounce import MessageBuffer
from relay.config import Settings
from relay.conversation.dead_letters import DeadLetterStore
from relay.conversation.store import ConversationStore
from relay.enablement.registry import EnablementRegistry
from relay.llm.breaker import CircuitBreaker
from relay.llm.client import AIServiceClient
from relay.llm.gateway import AIGateway
from relay.main import app
from relay.pipeline.pipeline import Pipeline, PipelineConfig

TEST_SETTINGS = Settings(
    whatsapp_access_token="test_token",
    whatsapp_phone_number_id="123456",
    whatsapp_verify_token="my_verify_token",
    whatsapp_app_secret="test_secret",
    ai_service_url="http://ai.test/rag/query",
    auto_enable_phrases=["talk to the bot"],
    redis_url="redis://localhost:6379/15",
)


@pytest.fixture
def settings() -> Settings:
    return TEST_SETTINGS


# --- Async fixtures for unit tests ---


@pytest.fixture
async def redis_client():
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def conversation_store(redis_client) -> ConversationStore:
    return ConversationStore(redis_client, max_turns=6, ttl_seconds=3600)


@pytest.fixture
def dead_letters(redis_client) -> DeadLetterStore:
    return DeadLetterStore(redis_client)


@pytest.fixture
async def registry(redis_client) -> EnablementRegistry:
    registry = EnablementRegistry(redis_client, refresh_backoff=0.0)
    await registry.load()
    return registry


# --- Sync fixture for TestClient-based integration tests ---


@pytest.fixture
def client(settings: Settings) -> TestClient:
    mock_response = MagicMock()
    mock_response.status_code = 200

    mock_http = AsyncMock()
    mock_http.post = AsyncMock(return_value=mock_response)
    mock_http.get = AsyncMock(return_value=mock_response)

    # Each TestClient request runs on its own event loop, so Redis is mocked here
    mock_redis = AsyncMock()
    mock_redis.ping = AsyncMock(return_value=True)
    mock_redis.lrange = AsyncMock(return_value=[])
    pipe = AsyncMock()
    pipe.__aenter__.return_value = pipe
    pipe.lrange = AsyncMock(return_value=[])
    pipe.multi = MagicMock()
    pipe.rpush = MagicMock()
    mock_redis.pipeline = MagicMock(return_value=pipe)

    registry = EnablementRegistry(mock_redis)
    dead_letters = DeadLetterStore(mock_redis)
    ai_gateway = AIGateway(
        AIServiceClient(
            http_client=mock_http,
            service_url=settings.ai_service_url,
            health_url=settings.resolved_ai_health_url,
        ),
        CircuitBreaker(),
        fallback_message=settings.ai_fallback_message,
    )

    app.state.settings = settings
    app.state.http_client = mock_http
    app.state.redis = mock_redis
    app.state.registry = registry
    app.state.dead_letters = dead_letters
    app.state.ai_gateway = ai_gateway
    app.state.pipeline = Pipeline(
        PipelineConfig.from_settings(settings),
        ai_gateway,
        ConversationStore(mock_redis),
        dead_letters,
    )
    app.state.buffer = MessageBuffer(
        registry, ConversationStore(mock_redis), submit=app.state.pipeline.submit_processing
    )

    return TestClient(app, raise_server_exceptions=False)


def make_whatsapp_payload(
    from_number: str = "5491112345678",
    message_id: str = "wamid.test123",
    text: str = "Hello!",
    msg_type: str = "text",
    caption: str | None = None,
) -> dict:
    msg: dict = {
        "from": from_number,
        "id": message_id,
        "timestamp": "1700000000",
        "type": msg_type,
    }
    if msg_type == "text":
        msg["text"] = {"body": text}
    elif msg_type == "image":
        img: dict = {"id": "image_media_id", "mime_type": "image/jpeg"}
        if caption:
            img["caption"] = caption
        msg["image"] = img
    elif msg_type == "audio":
        msg["audio"] = {"id": "audio_media_id", "mime_type": "audio/ogg"}

    return make_change_payload({"messages": [msg]})


def make_status_payload(
    recipient_id: str = "5491112345678",
    status: str = "failed",
    message_id: str = "wamid.out1",
) -> dict:
    return make_change_payload(
        {
            "statuses": [
                {
                    "id": message_id,
                    "status": status,
                    "timestamp": "1700000000",
                    "recipient_id": recipient_id,
                }
            ]
        }
    )


def make_change_payload(value: dict, field: str = "messages") -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "BIZ_ID",
                "changes": [
                    {
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {
                                "display_phone_number": "1234567890",
                                "phone_number_id": "123456",
                            },
                            **value,
                        },
                        "field": field,
                    }
                ],
            }
        ],
    }


def sign_payload(payload_bytes: bytes, secret: str = "test_secret") -> str:
    sig = hmac.new(secret.encode(), payload_bytes, hashlib.sha256).hexdigest()
    return f"sha256={sig}"
