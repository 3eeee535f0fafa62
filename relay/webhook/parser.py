from relay.models import WhatsAppMessage, WhatsAppStatus

WHATSAPP_OBJECT = "whatsapp_business_account"


def _message_values(payload: dict):
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") != "messages":
                continue
            yield change.get("value") or {}


def extract_messages(payload: dict) -> list[WhatsAppMessage]:
    """Extract text messages (body or image caption) from a WhatsApp webhook payload."""
    messages: list[WhatsAppMessage] = []
    for value in _message_values(payload):
        for msg in value.get("messages") or []:
            text = (msg.get("text") or {}).get("body") or (msg.get("image") or {}).get("caption")
            if not text or "from" not in msg:
                continue
            messages.append(
                WhatsAppMessage(
                    from_number=msg["from"],
                    message_id=msg.get("id", ""),
                    timestamp=str(msg.get("timestamp", "")),
                    text=text,
                    type=msg.get("type", "text"),
                )
            )
    return messages


def extract_statuses(payload: dict) -> list[WhatsAppStatus]:
    """Extract delivery status events for messages we sent earlier."""
    statuses: list[WhatsAppStatus] = []
    for value in _message_values(payload):
        for status in value.get("statuses") or []:
            recipient = status.get("recipient_id")
            if not recipient or not status.get("status"):
                continue
            statuses.append(
                WhatsAppStatus(
                    message_id=status.get("id", ""),
                    status=status["status"],
                    recipient_id=recipient,
                )
            )
    return statuses
