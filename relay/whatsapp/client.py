from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com/v22.0"


@dataclass
class SendResult:
    status_code: int
    body: str
    retry_after: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class WhatsAppClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        phone_number_id: str,
        api_url: str = GRAPH_API_URL,
    ):
        self._http = http_client
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._api_url = api_url.rstrip("/")

    @property
    def _messages_url(self) -> str:
        return f"{self._api_url}/{self._phone_number_id}/messages"

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

    async def send_text(self, to: str, text: str) -> SendResult:
        """POST a text message. Transport errors propagate as httpx.HTTPError."""
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }
        resp = await self._http.post(self._messages_url, json=payload, headers=self._headers)
        if resp.status_code == 401:
            logger.error(
                "WhatsApp API auth failed (401): access token expired or invalid. "
                "Renew it in the Meta developer console under WhatsApp API Setup"
            )
        return SendResult(
            status_code=resp.status_code,
            body=resp.text,
            retry_after=resp.headers.get("retry-after"),
        )
